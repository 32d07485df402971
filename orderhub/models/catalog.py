"""
Catalog domain models.

Models:
    - Service:           a unit of work a team performs (task or asking flow)
    - OrderType:         a product offering; bundles a set of services
    - OrderTypeService:  OrderType ↔ Service association

Architecture:
    Team ──1:N──▶ Service
    OrderType ──N:M──▶ Service  (via OrderTypeService)

At order creation each associated service fans out into exactly one
work item: SERVICE_TASK → Task, ASKING_SERVICE → AskingTask.
"""

from datetime import datetime, timezone

from orderhub.models import db


# ── Constants ────────────────────────────────────────────────────────────────

SERVICE_TYPE_TASK = "SERVICE_TASK"
SERVICE_TYPE_ASKING = "ASKING_SERVICE"

SERVICE_TYPES = {SERVICE_TYPE_TASK, SERVICE_TYPE_ASKING}


# ═════════════════════════════════════════════════════════════════════════════
# 1. Service
# ═════════════════════════════════════════════════════════════════════════════


class Service(db.Model):
    __tablename__ = "services"
    __table_args__ = (
        db.CheckConstraint(
            "type IN ('SERVICE_TASK','ASKING_SERVICE')", name="ck_services_type",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    type = db.Column(
        db.String(20), nullable=False, default=SERVICE_TYPE_TASK,
        comment="SERVICE_TASK | ASKING_SERVICE",
    )
    description = db.Column(db.Text, default="")
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    is_mandatory = db.Column(db.Boolean, nullable=False, default=False)
    time_limit_days = db.Column(db.Integer, nullable=True)
    auto_assign_enabled = db.Column(db.Boolean, nullable=False, default=False)
    auto_assign_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Assignee used once the order has a folder link",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    team = db.relationship("Team")
    auto_assign_user = db.relationship("User", foreign_keys=[auto_assign_user_id])

    @property
    def auto_assign_target(self):
        """User id to auto-assign to, or None when auto-assignment is off."""
        if self.auto_assign_enabled and self.auto_assign_user_id:
            return self.auto_assign_user_id
        return None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "type": self.type,
            "description": self.description,
            "team_id": self.team_id,
            "team_name": self.team.name if self.team else None,
            "is_mandatory": self.is_mandatory,
            "time_limit_days": self.time_limit_days,
            "auto_assign_enabled": self.auto_assign_enabled,
            "auto_assign_user_id": self.auto_assign_user_id,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Service {self.id}: {self.slug} ({self.type})>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. OrderType
# ═════════════════════════════════════════════════════════════════════════════


class OrderType(db.Model):
    __tablename__ = "order_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    description = db.Column(db.Text, default="")
    time_limit_days = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    service_links = db.relationship(
        "OrderTypeService", back_populates="order_type",
        cascade="all, delete-orphan", lazy="selectin",
    )

    @property
    def services(self):
        return [link.service for link in self.service_links]

    def to_dict(self, include_services=True):
        d = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "time_limit_days": self.time_limit_days,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_services:
            d["services"] = [s.to_dict() for s in self.services]
        return d

    def __repr__(self):
        return f"<OrderType {self.id}: {self.slug}>"


class OrderTypeService(db.Model):
    __tablename__ = "order_type_services"
    __table_args__ = (
        db.UniqueConstraint("order_type_id", "service_id", name="uq_order_type_service"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_type_id = db.Column(
        db.Integer, db.ForeignKey("order_types.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    service_id = db.Column(
        db.Integer, db.ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True,
    )

    order_type = db.relationship("OrderType", back_populates="service_links")
    service = db.relationship("Service")
