"""
Auth Models — users and the closed role set.

Login/sign-up flows live outside this application; a User row is the
identity a bearer token resolves to.
"""

from datetime import datetime, timezone

from orderhub.models import db


class Role:
    """Closed set of caller roles."""

    ADMIN = "ADMIN"
    ORDER_CREATOR = "ORDER_CREATOR"
    MEMBER = "MEMBER"
    REVISION_MANAGER = "REVISION_MANAGER"

    ALL = frozenset({ADMIN, ORDER_CREATOR, MEMBER, REVISION_MANAGER})


# ═══════════════════════════════════════════════════════════════
# USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint(
            "role IN ('ADMIN','ORDER_CREATOR','MEMBER','REVISION_MANAGER')",
            name="ck_users_role",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(30), nullable=False, default=Role.MEMBER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    memberships = db.relationship(
        "TeamMember", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
