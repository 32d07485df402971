"""Initial OrderHub schema: users, teams, catalog, orders, work items, audit.

Revision ID: 0a1b2c3d4e01
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect

revision = "0a1b2c3d4e01"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, **kw):
    return sa.Column(name, sa.DateTime(timezone=True), **kw)


def upgrade():
    existing = set(sa_inspect(op.get_bind()).get_table_names())

    # ── Users & teams ──
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("email", sa.String(200), nullable=False, unique=True, index=True),
            sa.Column("display_name", sa.String(200), nullable=False),
            sa.Column("role", sa.String(30), nullable=False, server_default="MEMBER"),
            sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
            _ts("created_at", server_default=sa.func.now()),
            _ts("updated_at", server_default=sa.func.now()),
            sa.CheckConstraint(
                "role IN ('ADMIN','ORDER_CREATOR','MEMBER','REVISION_MANAGER')",
                name="ck_users_role",
            ),
        )

    if "teams" not in existing:
        op.create_table(
            "teams",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("name", sa.String(150), nullable=False, unique=True),
            sa.Column("description", sa.Text, server_default=""),
            sa.Column("leader_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True),
            sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
            _ts("created_at", server_default=sa.func.now()),
        )

    if "team_members" not in existing:
        op.create_table(
            "team_members",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("team_id", sa.Integer,
                      sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True),
            sa.Column("user_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
            sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
            _ts("joined_at", server_default=sa.func.now()),
            sa.UniqueConstraint("team_id", "user_id", name="uq_team_member"),
        )

    # ── Catalog ──
    if "services" not in existing:
        op.create_table(
            "services",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("slug", sa.String(200), nullable=False, unique=True),
            sa.Column("type", sa.String(20), nullable=False, server_default="SERVICE_TASK"),
            sa.Column("description", sa.Text, server_default=""),
            sa.Column("team_id", sa.Integer,
                      sa.ForeignKey("teams.id", ondelete="RESTRICT"), nullable=False, index=True),
            sa.Column("is_mandatory", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("time_limit_days", sa.Integer, nullable=True),
            sa.Column("auto_assign_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("auto_assign_user_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
            _ts("created_at", server_default=sa.func.now()),
            sa.CheckConstraint("type IN ('SERVICE_TASK','ASKING_SERVICE')", name="ck_services_type"),
        )

    if "order_types" not in existing:
        op.create_table(
            "order_types",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("slug", sa.String(200), nullable=False, unique=True),
            sa.Column("description", sa.Text, server_default=""),
            sa.Column("time_limit_days", sa.Integer, nullable=True),
            sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
            _ts("created_at", server_default=sa.func.now()),
        )

    if "order_type_services" not in existing:
        op.create_table(
            "order_type_services",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("order_type_id", sa.Integer,
                      sa.ForeignKey("order_types.id", ondelete="CASCADE"), nullable=False, index=True),
            sa.Column("service_id", sa.Integer,
                      sa.ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True),
            sa.UniqueConstraint("order_type_id", "service_id", name="uq_order_type_service"),
        )

    # ── Orders ──
    if "orders" not in existing:
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("order_number", sa.String(80), nullable=False, unique=True),
            sa.Column("order_type_id", sa.Integer,
                      sa.ForeignKey("order_types.id", ondelete="RESTRICT"), nullable=False, index=True),
            sa.Column("customer_name", sa.String(200), nullable=False),
            sa.Column("customer_email", sa.String(200), nullable=True),
            sa.Column("customer_phone", sa.String(50), nullable=True),
            sa.Column("amount", sa.Numeric(12, 2), nullable=False),
            _ts("order_date", nullable=False),
            _ts("delivery_date", nullable=False),
            sa.Column("delivery_time", sa.String(5), nullable=True),
            sa.Column("notes", sa.Text, nullable=True),
            sa.Column("folder_link", sa.String(500), nullable=True),
            sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
            sa.Column("is_customized", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("created_by_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("completed_at", nullable=True),
            sa.Column("delivery_stats_json", sa.Text, nullable=True),
            sa.Column("is_revision", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("revision_order_id", sa.Integer,
                      sa.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True),
            _ts("revision_completed_at", nullable=True),
            _ts("created_at", server_default=sa.func.now()),
            _ts("updated_at", server_default=sa.func.now()),
            sa.CheckConstraint("status IN ('PENDING','IN_PROGRESS','COMPLETED')",
                               name="ck_orders_status"),
        )
        op.create_index("idx_orders_status", "orders", ["status"])
        op.create_index("idx_orders_revision_of", "orders", ["revision_order_id"])

    if "order_services" not in existing:
        op.create_table(
            "order_services",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("order_id", sa.Integer,
                      sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
            sa.Column("service_id", sa.Integer,
                      sa.ForeignKey("services.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("target_name", sa.String(200), nullable=True),
            sa.Column("description", sa.Text, nullable=True),
        )

    # ── Work items ──
    if "tasks" not in existing:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("order_id", sa.Integer,
                      sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
            sa.Column("service_id", sa.Integer,
                      sa.ForeignKey("services.id", ondelete="SET NULL"), nullable=True),
            sa.Column("team_id", sa.Integer,
                      sa.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True),
            sa.Column("title", sa.String(300), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("assigned_to_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("status", sa.String(20), nullable=False, server_default="NOT_ASSIGNED"),
            sa.Column("priority", sa.String(10), nullable=False, server_default="MEDIUM"),
            _ts("deadline", nullable=True),
            sa.Column("is_mandatory", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("is_revision_task", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("notes", sa.Text, nullable=True),
            _ts("started_at", nullable=True),
            _ts("completed_at", nullable=True),
            sa.Column("elapsed_seconds", sa.Integer, nullable=True),
            sa.Column("created_by_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at", server_default=sa.func.now()),
            _ts("updated_at", server_default=sa.func.now()),
            sa.CheckConstraint(
                "status IN ('NOT_ASSIGNED','ASSIGNED','IN_PROGRESS','PAUSED','COMPLETED')",
                name="ck_tasks_status",
            ),
            sa.CheckConstraint("priority IN ('LOW','MEDIUM','HIGH','URGENT')",
                               name="ck_tasks_priority"),
        )
        op.create_index("idx_tasks_assignee_status", "tasks", ["assigned_to_id", "status"])
        op.create_index("idx_tasks_team_status", "tasks", ["team_id", "status"])

    if "asking_tasks" not in existing:
        op.create_table(
            "asking_tasks",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("order_id", sa.Integer,
                      sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
            sa.Column("service_id", sa.Integer,
                      sa.ForeignKey("services.id", ondelete="SET NULL"), nullable=True),
            sa.Column("team_id", sa.Integer,
                      sa.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True),
            sa.Column("title", sa.String(300), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("assigned_to_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("current_stage", sa.String(20), nullable=False, server_default="ASKED"),
            sa.Column("priority", sa.String(10), nullable=False, server_default="MEDIUM"),
            _ts("deadline", nullable=True),
            sa.Column("is_mandatory", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("is_flagged", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("notes", sa.Text, nullable=True),
            sa.Column("notes_updated_by_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("notes_updated_at", nullable=True),
            _ts("completed_at", nullable=True),
            sa.Column("completed_by_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at", server_default=sa.func.now()),
            sa.CheckConstraint(
                "current_stage IN ('ASKED','SHARED','VERIFIED','INFORMED_TEAM')",
                name="ck_asking_tasks_stage",
            ),
        )

    if "asking_task_stages" not in existing:
        op.create_table(
            "asking_task_stages",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("asking_task_id", sa.Integer,
                      sa.ForeignKey("asking_tasks.id", ondelete="CASCADE"), nullable=False, index=True),
            sa.Column("previous_stage", sa.String(20), nullable=True),
            sa.Column("stage", sa.String(20), nullable=False),
            sa.Column("initial_confirmation", sa.Boolean, nullable=True),
            sa.Column("initial_confirmation_by_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("initial_confirmation_at", nullable=True),
            sa.Column("update_request", sa.Boolean, nullable=True),
            sa.Column("update_request_by_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("update_request_at", nullable=True),
            sa.Column("initial_staff", sa.String(200), nullable=True),
            sa.Column("update_staff", sa.String(200), nullable=True),
            sa.Column("notes", sa.Text, nullable=True),
            sa.Column("updated_by_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at", server_default=sa.func.now()),
        )

    # ── Audit ──
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("entity_type", sa.String(30), nullable=False),
            sa.Column("entity_id", sa.String(36), nullable=False),
            sa.Column("action", sa.String(60), nullable=False),
            sa.Column("performed_by_id", sa.Integer,
                      sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("old_value_json", sa.Text, nullable=True),
            sa.Column("new_value_json", sa.Text, nullable=True),
            sa.Column("description", sa.String(500), nullable=True),
            _ts("timestamp", nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_performed_by", "audit_logs", ["performed_by_id"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for table in (
        "audit_logs", "asking_task_stages", "asking_tasks", "tasks",
        "order_services", "orders", "order_type_services", "order_types",
        "services", "team_members", "teams", "users",
    ):
        op.drop_table(table)
