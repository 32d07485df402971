"""
OrderHub
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for every mutation.

Snapshots are typed per entity: ``AUDIT_SNAPSHOT_FIELDS`` declares which
fields an old/new value may carry for each entity_type, and
``write_audit`` rejects anything outside that set.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

from orderhub.models import db


# ── Snapshot schema per entity type ──────────────────────────────────────────

AUDIT_SNAPSHOT_FIELDS = {
    "order": {
        "order_number", "order_type_id", "customer_name", "customer_email",
        "customer_phone", "amount", "order_date", "delivery_date", "delivery_time",
        "notes", "folder_link", "status", "completed_at", "is_customized",
        "is_revision", "revision_order_id", "revision_completed_at",
        "completion_stats", "auto_assigned", "service_ids",
    },
    "task": {
        "order_id", "service_id", "team_id", "title", "assigned_to_id", "status",
        "priority", "deadline", "is_mandatory", "is_revision_task", "notes",
        "started_at", "completed_at", "elapsed_seconds",
    },
    "asking_task": {
        "order_id", "service_id", "assigned_to_id", "current_stage", "is_flagged",
        "notes", "completed_at", "completed_by_id", "stage_entry_id",
    },
    "team": {"name", "description", "leader_id", "is_active"},
    "team_member": {"team_id", "user_id", "is_active"},
    "user": {"email", "display_name", "role", "is_active"},
    "service": {
        "name", "slug", "type", "description", "team_id", "is_mandatory",
        "time_limit_days", "auto_assign_enabled", "auto_assign_user_id", "is_active",
    },
    "order_type": {
        "name", "slug", "description", "time_limit_days", "is_active", "service_ids",
    },
}

AUDIT_ENTITY_TYPES = set(AUDIT_SNAPSHOT_FIELDS)


def snapshot(entity_type: str, obj, fields=None) -> dict:
    """Build a snapshot dict for *obj* restricted to the entity's declared fields."""
    allowed = AUDIT_SNAPSHOT_FIELDS[entity_type]
    names = allowed if fields is None else [f for f in fields if f in allowed]
    out = {}
    for name in sorted(names):
        if hasattr(obj, name):
            out[name] = _jsonable(getattr(obj, name))
    return out


def _jsonable(value):
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


class AuditLog(db.Model):
    """
    Immutable audit trail row.

    ``old_value_json`` / ``new_value_json`` carry typed snapshots of the
    fields that changed; ``description`` is a human-readable summary.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_performed_by", "performed_by_id"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="order | task | asking_task | team | team_member | user | service | order_type",
    )
    entity_id = db.Column(db.String(36), nullable=False)

    action = db.Column(
        db.String(60), nullable=False,
        comment="order.create | task.assign | asking_task.stage | …",
    )
    performed_by_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="NULL for system entries",
    )

    old_value_json = db.Column(db.Text, nullable=True)
    new_value_json = db.Column(db.Text, nullable=True)
    description = db.Column(db.String(500), nullable=True)

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    performed_by = db.relationship("User", foreign_keys=[performed_by_id])

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _load(raw):
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None

    @property
    def old_value(self) -> dict | None:
        return self._load(self.old_value_json)

    @property
    def new_value(self) -> dict | None:
        return self._load(self.new_value_json)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "performed_by_id": self.performed_by_id,
            "performed_by": self.performed_by.display_name if self.performed_by else "system",
            "old_value": self.old_value,
            "new_value": self.new_value,
            "description": self.description,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def _check_fields(entity_type: str, value: dict | None, label: str) -> None:
    if not value:
        return
    unknown = set(value) - AUDIT_SNAPSHOT_FIELDS[entity_type]
    if unknown:
        raise ValueError(
            f"Audit {label} for {entity_type} has undeclared field(s): {sorted(unknown)}"
        )


def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    performed_by_id: int | None = None,
    old_value: dict | None = None,
    new_value: dict | None = None,
    description: str | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control; the row commits or rolls back with the mutation.

    Raises ValueError for an unknown entity_type or a snapshot field
    outside ``AUDIT_SNAPSHOT_FIELDS``.
    """
    if entity_type not in AUDIT_SNAPSHOT_FIELDS:
        raise ValueError(f"Unknown audit entity_type: {entity_type}")
    _check_fields(entity_type, old_value, "old_value")
    _check_fields(entity_type, new_value, "new_value")

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        performed_by_id=performed_by_id,
        old_value_json=json.dumps(old_value, default=str) if old_value is not None else None,
        new_value_json=json.dumps(new_value, default=str) if new_value is not None else None,
        description=(description or "")[:500] or None,
    )
    db.session.add(log)
    db.session.flush()
    return log
