"""
Audit trail and role capability tests.

Every mutation writes exactly one AuditLog row with typed snapshots;
role gates come from the CAPABILITIES table.
"""

import pytest

from orderhub.auth import Caller
from orderhub.core.exceptions import (
    ConflictError,
    DuplicateError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from orderhub.models.audit import AUDIT_ENTITY_TYPES, AuditLog, write_audit
from orderhub.models.auth import Role
from orderhub.services import order_service
from orderhub.services.permission import (
    CAPABILITIES,
    can_access_asking_task,
    can_assign_task,
    can_extend_delivery,
    can_verify_order,
    check,
    has_capability,
)


# ═════════════════════════════════════════════════════════════════════════
# Audit writer
# ═════════════════════════════════════════════════════════════════════════

class TestWriteAudit:
    def test_writes_typed_snapshot(self, make_user):
        admin = make_user(Role.ADMIN)
        log = write_audit(
            entity_type="team", entity_id=7, action="team.update",
            performed_by_id=admin.id,
            old_value={"name": "Old"}, new_value={"name": "New"},
        )
        assert log.entity_id == "7"
        assert log.old_value == {"name": "Old"}
        assert log.to_dict()["performed_by"] == admin.display_name

    def test_unknown_entity_type(self):
        with pytest.raises(ValueError):
            write_audit(entity_type="invoice", entity_id=1, action="invoice.create")

    def test_undeclared_field_rejected(self):
        with pytest.raises(ValueError, match="undeclared"):
            write_audit(entity_type="team", entity_id=1, action="team.update",
                        new_value={"budget": 10})

    def test_system_entry_has_no_actor(self):
        log = write_audit(entity_type="order", entity_id=1, action="order.create")
        assert log.to_dict()["performed_by"] == "system"

    def test_entity_types_cover_domain(self):
        assert {"order", "task", "asking_task", "team", "team_member", "user"} <= AUDIT_ENTITY_TYPES


class TestOneEntryPerMutation:
    def test_order_lifecycle_writes_one_row_per_call(self, catalog, make_order):
        order = make_order()
        creator = Caller.from_user(catalog.creator)
        order_service.attach_folder_link(creator, order.id, "https://files.example.com/o/1")
        order_service.verify_order(creator, order.id)
        order_service.deliver_order(creator, order.id)

        rows = AuditLog.query.filter_by(entity_type="order", entity_id=str(order.id)) \
            .order_by(AuditLog.id).all()
        assert [r.action for r in rows] == [
            "order.create", "order.folder_link", "order.verify", "order.deliver",
        ]
        assert rows[-1].new_value["status"] == "COMPLETED"
        assert "completion_stats" in rows[-1].new_value

    def test_rejected_call_writes_nothing(self, catalog, make_order):
        order = make_order()
        before = AuditLog.query.count()
        with pytest.raises(ForbiddenError):
            order_service.deliver_order(Caller.from_user(catalog.writer), order.id)
        assert AuditLog.query.count() == before


class TestAuditApi:
    def test_admin_lists_and_filters(self, client, catalog, make_order, auth_headers):
        make_order()
        rv = client.get("/api/v1/audit?entity_type=order", headers=auth_headers(catalog.admin))
        assert rv.status_code == 200
        body = rv.get_json()
        assert body["total"] == 1
        assert body["audit_logs"][0]["action"] == "order.create"

        log_id = body["audit_logs"][0]["id"]
        rv = client.get(f"/api/v1/audit/{log_id}", headers=auth_headers(catalog.admin))
        assert rv.get_json()["entity_type"] == "order"

    def test_action_prefix_filter(self, client, catalog, make_order, auth_headers):
        order = make_order()
        order_service.attach_folder_link(Caller.from_user(catalog.creator), order.id,
                                         "https://files.example.com/o/2")
        rv = client.get("/api/v1/audit?action=order.folder", headers=auth_headers(catalog.admin))
        logs = rv.get_json()["audit_logs"]
        assert [log["action"] for log in logs] == ["order.folder_link"]
        assert len(logs[0]["new_value"]["auto_assigned"]["tasks"]) == 1

    def test_non_admin_forbidden(self, client, catalog, auth_headers):
        rv = client.get("/api/v1/audit", headers=auth_headers(catalog.creator))
        assert rv.status_code == 403


# ═════════════════════════════════════════════════════════════════════════
# Capability table
# ═════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("capability,role,allowed", [
    ("order.create", Role.ORDER_CREATOR, True),
    ("order.create", Role.REVISION_MANAGER, False),
    ("order.create", Role.MEMBER, False),
    ("order.deliver", Role.ADMIN, True),
    ("order.delete", Role.ORDER_CREATOR, False),
    ("revision.manage", Role.REVISION_MANAGER, True),
    ("revision.manage", Role.ORDER_CREATOR, False),
    ("task.assign", Role.MEMBER, False),
    ("asking_task.view_all", Role.ORDER_CREATOR, True),
    ("admin", Role.REVISION_MANAGER, False),
    ("no.such.capability", Role.ADMIN, False),
])
def test_capability_table(capability, role, allowed):
    assert has_capability(role, capability) is allowed


def test_admin_holds_every_capability():
    assert all(Role.ADMIN in roles for roles in CAPABILITIES.values())


def test_ownership_grants():
    assert can_verify_order(Role.MEMBER, is_team_leader=True)
    assert not can_verify_order(Role.MEMBER, is_team_leader=False)
    assert can_assign_task(Role.MEMBER, is_owning_team_leader=True)
    assert can_extend_delivery(Role.MEMBER, is_team_leader=True)
    assert not can_extend_delivery(Role.ORDER_CREATOR, is_team_leader=False)
    assert can_access_asking_task(Role.MEMBER, is_assignee=True, in_owning_team=False)
    assert not can_access_asking_task(Role.REVISION_MANAGER, False, False)


def test_check_raises_forbidden():
    caller = Caller(user_id=1, role=Role.MEMBER)
    with pytest.raises(ForbiddenError) as exc:
        check(False, "order.delete", caller)
    assert exc.value.action == "order.delete"
    assert exc.value.role == Role.MEMBER
    check(True, "order.delete", caller)


# ═════════════════════════════════════════════════════════════════════════
# Exception hierarchy
# ═════════════════════════════════════════════════════════════════════════

class TestExceptions:
    def test_messages(self):
        assert str(NotFoundError("Order", 5)) == "Order id=5 not found"
        assert str(NotFoundError("Order")) == "Order not found"
        assert str(DuplicateError("Order", "order_number", "A-1")) == \
            "Order with order_number='A-1' already exists"

    def test_transition_error_is_conflict(self):
        err = InvalidTransitionError("Task", 3, "pause", "ASSIGNED")
        assert isinstance(err, ConflictError)
        assert err.details == {"action": "pause", "current_status": "ASSIGNED"}

    def test_validation_details_default(self):
        assert ValidationError("bad").details == {}
