"""
Order domain models.

Models:
    - Order:            a customer work order (or a revision of one)
    - OrderService:     snapshot of the catalog services an order was created with
    - Task:             team work item spawned from a SERVICE_TASK (or added manually)
    - AskingTask:       staged confirmation flow spawned from an ASKING_SERVICE
    - AskingTaskStage:  append-only history row per AskingTask stage update

Architecture:
    OrderType ──1:N──▶ Order ──1:N──▶ OrderService
                       Order ──1:N──▶ Task
                       Order ──1:N──▶ AskingTask ──1:N──▶ AskingTaskStage
    Order ──1:N──▶ Order  (revision_order_id → origin)

Lifecycle states:
    Order:       PENDING → IN_PROGRESS → COMPLETED   (deliver also from PENDING)
    Task:        NOT_ASSIGNED → ASSIGNED → IN_PROGRESS ⇄ PAUSED → COMPLETED
    AskingTask:  ASKED → SHARED → VERIFIED → INFORMED_TEAM
"""

import json
from datetime import datetime, timezone

from orderhub.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ORDER_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED")

TASK_STATUSES = ("NOT_ASSIGNED", "ASSIGNED", "IN_PROGRESS", "PAUSED", "COMPLETED")

TASK_PRIORITIES = ("LOW", "MEDIUM", "HIGH", "URGENT")

ASKING_STAGES = ("ASKED", "SHARED", "VERIFIED", "INFORMED_TEAM")

DISCARD_MARKER = "[DISCARDED]"


# ── Lifecycle Transition Guards ──────────────────────────────────────────────
# action → {"from": allowed source statuses, "to": target status}

ORDER_TRANSITIONS = {
    "verify":  {"from": {"PENDING"}, "to": "IN_PROGRESS"},
    "deliver": {"from": {"PENDING", "IN_PROGRESS"}, "to": "COMPLETED"},
}

TASK_TRANSITIONS = {
    "assign":   {"from": {"NOT_ASSIGNED"}, "to": "ASSIGNED"},
    "reassign": {"from": {"ASSIGNED", "IN_PROGRESS", "PAUSED"}, "to": "ASSIGNED"},
    "discard":  {"from": {"NOT_ASSIGNED", "ASSIGNED", "IN_PROGRESS", "PAUSED"}, "to": "NOT_ASSIGNED"},
    "start":    {"from": {"ASSIGNED"}, "to": "IN_PROGRESS"},
    "pause":    {"from": {"IN_PROGRESS"}, "to": "PAUSED"},
    "resume":   {"from": {"PAUSED"}, "to": "IN_PROGRESS"},
    "complete": {"from": {"IN_PROGRESS"}, "to": "COMPLETED"},
}


def validate_transition(transitions: dict, current: str, action: str) -> dict:
    """
    Validate whether *action* is legal from *current* in a transition table.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = transitions.get(action)
    if not rule:
        return {"valid": False, "from": current, "to": None,
                "reason": f"Unknown action: {action}"}
    if current not in rule["from"]:
        return {"valid": False, "from": current, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{current}'"}
    return {"valid": True, "from": current, "to": rule["to"], "reason": None}


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Order
# ═════════════════════════════════════════════════════════════════════════════


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('PENDING','IN_PROGRESS','COMPLETED')", name="ck_orders_status",
        ),
        db.Index("idx_orders_status", "status"),
        db.Index("idx_orders_revision_of", "revision_order_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(80), unique=True, nullable=False)
    order_type_id = db.Column(
        db.Integer, db.ForeignKey("order_types.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    customer_name = db.Column(db.String(200), nullable=False)
    customer_email = db.Column(db.String(200), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    order_date = db.Column(db.DateTime(timezone=True), nullable=False)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=False)
    delivery_time = db.Column(db.String(5), nullable=True, comment="HH:MM on delivery_date")
    notes = db.Column(db.Text, nullable=True)
    folder_link = db.Column(
        db.String(500), nullable=True,
        comment="Shared folder URL; gates service auto-assignment",
    )
    status = db.Column(db.String(20), nullable=False, default="PENDING")
    is_customized = db.Column(db.Boolean, nullable=False, default=False)
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_stats_json = db.Column(
        db.Text, nullable=True,
        comment="JSON completion statistics captured at delivery",
    )

    # Revision branch
    is_revision = db.Column(db.Boolean, nullable=False, default=False)
    revision_order_id = db.Column(
        db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True,
        comment="Origin order this revision was cloned from",
    )
    revision_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    order_type = db.relationship("OrderType")
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    origin = db.relationship("Order", remote_side=[id], backref=db.backref("revisions", lazy="dynamic"))
    order_services = db.relationship(
        "OrderService", back_populates="order",
        cascade="all, delete-orphan", lazy="dynamic",
    )
    tasks = db.relationship(
        "Task", back_populates="order",
        cascade="all, delete-orphan", lazy="dynamic",
    )
    asking_tasks = db.relationship(
        "AskingTask", back_populates="order",
        cascade="all, delete-orphan", lazy="dynamic",
    )

    @property
    def delivery_stats(self) -> dict | None:
        if not self.delivery_stats_json:
            return None
        try:
            return json.loads(self.delivery_stats_json)
        except (json.JSONDecodeError, TypeError):
            return None

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "order_number": self.order_number,
            "order_type_id": self.order_type_id,
            "order_type_name": self.order_type.name if self.order_type else None,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "amount": str(self.amount) if self.amount is not None else None,
            "order_date": _iso(self.order_date),
            "delivery_date": _iso(self.delivery_date),
            "delivery_time": self.delivery_time,
            "notes": self.notes,
            "folder_link": self.folder_link,
            "status": self.status,
            "is_customized": self.is_customized,
            "created_by_id": self.created_by_id,
            "completed_at": _iso(self.completed_at),
            "delivery_stats": self.delivery_stats,
            "is_revision": self.is_revision,
            "revision_order_id": self.revision_order_id,
            "revision_completed_at": _iso(self.revision_completed_at),
            "created_at": _iso(self.created_at),
        }
        if include_children:
            d["services"] = [s.to_dict() for s in self.order_services]
            d["tasks"] = [t.to_dict() for t in self.tasks.order_by(Task.id)]
            d["asking_tasks"] = [a.to_dict() for a in self.asking_tasks.order_by(AskingTask.id)]
        return d

    def __repr__(self):
        return f"<Order {self.id}: {self.order_number} [{self.status}]>"


class OrderService(db.Model):
    __tablename__ = "order_services"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    service_id = db.Column(
        db.Integer, db.ForeignKey("services.id", ondelete="RESTRICT"), nullable=False,
    )
    target_name = db.Column(db.String(200), nullable=True)
    description = db.Column(db.Text, nullable=True)

    order = db.relationship("Order", back_populates="order_services")
    service = db.relationship("Service")

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "service_id": self.service_id,
            "service_name": self.service.name if self.service else None,
            "target_name": self.target_name,
            "description": self.description,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 2. Task
# ═════════════════════════════════════════════════════════════════════════════


class Task(db.Model):
    __tablename__ = "tasks"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('NOT_ASSIGNED','ASSIGNED','IN_PROGRESS','PAUSED','COMPLETED')",
            name="ck_tasks_status",
        ),
        db.CheckConstraint(
            "priority IN ('LOW','MEDIUM','HIGH','URGENT')", name="ck_tasks_priority",
        ),
        db.Index("idx_tasks_assignee_status", "assigned_to_id", "status"),
        db.Index("idx_tasks_team_status", "team_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    service_id = db.Column(
        db.Integer, db.ForeignKey("services.id", ondelete="SET NULL"), nullable=True,
        comment="NULL for custom and revision tasks",
    )
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    assigned_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    status = db.Column(db.String(20), nullable=False, default="NOT_ASSIGNED")
    priority = db.Column(db.String(10), nullable=False, default="MEDIUM")
    deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    is_mandatory = db.Column(db.Boolean, nullable=False, default=False)
    is_revision_task = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    elapsed_seconds = db.Column(db.Integer, nullable=True)
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    order = db.relationship("Order", back_populates="tasks")
    service = db.relationship("Service")
    team = db.relationship("Team")
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "service_id": self.service_id,
            "team_id": self.team_id,
            "title": self.title,
            "description": self.description,
            "assigned_to_id": self.assigned_to_id,
            "assigned_to_name": self.assigned_to.display_name if self.assigned_to else None,
            "status": self.status,
            "priority": self.priority,
            "deadline": _iso(self.deadline),
            "is_mandatory": self.is_mandatory,
            "is_revision_task": self.is_revision_task,
            "notes": self.notes,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "elapsed_seconds": self.elapsed_seconds,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Task {self.id}: order={self.order_id} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. AskingTask + stage history
# ═════════════════════════════════════════════════════════════════════════════


class AskingTask(db.Model):
    __tablename__ = "asking_tasks"
    __table_args__ = (
        db.CheckConstraint(
            "current_stage IN ('ASKED','SHARED','VERIFIED','INFORMED_TEAM')",
            name="ck_asking_tasks_stage",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    service_id = db.Column(
        db.Integer, db.ForeignKey("services.id", ondelete="SET NULL"), nullable=True,
    )
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    assigned_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    current_stage = db.Column(db.String(20), nullable=False, default="ASKED")
    priority = db.Column(db.String(10), nullable=False, default="MEDIUM")
    deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    is_mandatory = db.Column(db.Boolean, nullable=False, default=False)
    is_flagged = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)
    notes_updated_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    notes_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    order = db.relationship("Order", back_populates="asking_tasks")
    service = db.relationship("Service")
    team = db.relationship("Team")
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])
    stages = db.relationship(
        "AskingTaskStage", back_populates="asking_task",
        cascade="all, delete-orphan", lazy="dynamic",
        order_by="AskingTaskStage.id",
    )

    def to_dict(self, include_stages=False):
        d = {
            "id": self.id,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "service_id": self.service_id,
            "team_id": self.team_id,
            "title": self.title,
            "description": self.description,
            "assigned_to_id": self.assigned_to_id,
            "current_stage": self.current_stage,
            "priority": self.priority,
            "deadline": _iso(self.deadline),
            "is_mandatory": self.is_mandatory,
            "is_flagged": self.is_flagged,
            "notes": self.notes,
            "notes_updated_by_id": self.notes_updated_by_id,
            "notes_updated_at": _iso(self.notes_updated_at),
            "completed_at": _iso(self.completed_at),
            "completed_by_id": self.completed_by_id,
            "created_at": _iso(self.created_at),
        }
        if include_stages:
            d["stages"] = [s.to_dict() for s in self.stages]
        return d

    def __repr__(self):
        return f"<AskingTask {self.id}: order={self.order_id} [{self.current_stage}]>"


class AskingTaskStage(db.Model):
    """Insert-only: one row per stage update on an AskingTask."""

    __tablename__ = "asking_task_stages"

    id = db.Column(db.Integer, primary_key=True)
    asking_task_id = db.Column(
        db.Integer, db.ForeignKey("asking_tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    previous_stage = db.Column(db.String(20), nullable=True)
    stage = db.Column(db.String(20), nullable=False)

    initial_confirmation = db.Column(db.Boolean, nullable=True)
    initial_confirmation_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    initial_confirmation_at = db.Column(db.DateTime(timezone=True), nullable=True)
    update_request = db.Column(db.Boolean, nullable=True)
    update_request_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    update_request_at = db.Column(db.DateTime(timezone=True), nullable=True)
    initial_staff = db.Column(db.String(200), nullable=True)
    update_staff = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    updated_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    asking_task = db.relationship("AskingTask", back_populates="stages")

    def to_dict(self):
        return {
            "id": self.id,
            "asking_task_id": self.asking_task_id,
            "previous_stage": self.previous_stage,
            "stage": self.stage,
            "initial_confirmation": self.initial_confirmation,
            "initial_confirmation_by_id": self.initial_confirmation_by_id,
            "initial_confirmation_at": _iso(self.initial_confirmation_at),
            "update_request": self.update_request,
            "update_request_by_id": self.update_request_by_id,
            "update_request_at": _iso(self.update_request_at),
            "initial_staff": self.initial_staff,
            "update_staff": self.update_staff,
            "notes": self.notes,
            "updated_by_id": self.updated_by_id,
            "created_at": _iso(self.created_at),
        }
