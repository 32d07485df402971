"""
Order Lifecycle Engine tests.

Covers:
    - create_order: validation, fan-out into Task / AskingTask, atomicity,
      duplicate order numbers, role gate
    - attach_folder_link: auto-assignment, idempotence, manual assignments kept
    - verify / deliver transitions and completion statistics
    - extend_delivery, update_order, add_custom_task, delete_order
    - update_order_services: add / remove catalog services on an open order
    - HTTP surface for the same operations
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from orderhub.auth import Caller
from orderhub.core.exceptions import (
    ConflictError,
    DuplicateError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from orderhub.models import db
from orderhub.models.audit import AuditLog
from orderhub.models.auth import Role
from orderhub.models.catalog import SERVICE_TYPE_TASK, Service
from orderhub.models.order import AskingTask, Order, OrderService, Task
from orderhub.services import asking_task_service, order_service, task_service

BASE = "/api/v1/orders"


def _as(user):
    return Caller.from_user(user)


def _future(days=5):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def _task_for(order, service):
    return Task.query.filter_by(order_id=order.id, service_id=service.id).one()


def _asking_for(order, service):
    return AskingTask.query.filter_by(order_id=order.id, service_id=service.id).one()


# ═════════════════════════════════════════════════════════════════════════
# create_order
# ═════════════════════════════════════════════════════════════════════════

class TestCreateOrder:
    def test_fans_out_one_item_per_service(self, catalog, make_order):
        order = make_order()
        assert order.status == "PENDING"
        assert order.tasks.count() == 2
        assert order.asking_tasks.count() == 1
        assert order.order_services.count() == 3

        logo = _task_for(order, catalog.logo)
        assert logo.status == "NOT_ASSIGNED"
        assert logo.assigned_to_id is None
        assert logo.is_mandatory is True
        assert logo.team_id == catalog.design.id

        brief = _asking_for(order, catalog.brief)
        assert brief.current_stage == "ASKED"
        assert brief.is_mandatory is True
        assert brief.team_id == catalog.content.id

    def test_without_folder_link_nothing_is_auto_assigned(self, catalog, make_order):
        order = make_order()
        layout = _task_for(order, catalog.layout)
        assert layout.assigned_to_id is None
        assert layout.status == "NOT_ASSIGNED"

    def test_with_folder_link_auto_assigns(self, catalog, make_order):
        order = make_order(folder_link="https://drive.example.com/f/1")
        layout = _task_for(order, catalog.layout)
        assert layout.assigned_to_id == catalog.designer.id
        assert layout.status == "ASSIGNED"
        # services without auto-assign stay in the pool
        assert _task_for(order, catalog.logo).status == "NOT_ASSIGNED"

    def test_auto_assign_records_ids_in_audit(self, catalog, make_order):
        order = make_order(folder_link="https://drive.example.com/f/1")
        entry = AuditLog.query.filter_by(entity_type="order", action="order.create").one()
        layout = _task_for(order, catalog.layout)
        assert entry.entity_id == str(order.id)
        assert entry.new_value["auto_assigned"]["tasks"] == [layout.id]

    def test_inactive_auto_assign_target_is_skipped(self, catalog, make_order):
        catalog.designer.is_active = False
        db.session.commit()
        order = make_order(folder_link="https://drive.example.com/f/1")
        assert _task_for(order, catalog.layout).status == "NOT_ASSIGNED"

    def test_member_cannot_create(self, catalog, order_data):
        with pytest.raises(ForbiddenError):
            order_service.create_order(_as(catalog.designer), order_data())
        assert Order.query.count() == 0

    @pytest.mark.parametrize("missing", [
        "order_number", "customer_name", "order_type_id", "amount", "order_date", "delivery_date",
    ])
    def test_required_fields(self, catalog, order_data, missing):
        data = order_data()
        data.pop(missing)
        with pytest.raises(ValidationError) as exc:
            order_service.create_order(_as(catalog.creator), data)
        assert exc.value.details == {missing: "required"}

    @pytest.mark.parametrize("amount", ["0", "-5", "abc"])
    def test_amount_must_be_positive_number(self, catalog, order_data, amount):
        with pytest.raises(ValidationError):
            order_service.create_order(_as(catalog.creator), order_data(amount=amount))

    def test_delivery_before_order_date_rejected(self, catalog, order_data):
        now = datetime.now(timezone.utc)
        data = order_data(
            order_date=now.isoformat(),
            delivery_date=(now - timedelta(days=1)).isoformat(),
        )
        with pytest.raises(ValidationError):
            order_service.create_order(_as(catalog.creator), data)

    def test_bad_delivery_time_rejected(self, catalog, order_data):
        with pytest.raises(ValidationError):
            order_service.create_order(_as(catalog.creator), order_data(delivery_time="25:00"))

    def test_unknown_order_type(self, catalog, order_data):
        with pytest.raises(NotFoundError):
            order_service.create_order(_as(catalog.creator), order_data(order_type_id=9999))

    def test_inactive_service_blocks_creation(self, catalog, order_data):
        catalog.brief.is_active = False
        db.session.commit()
        with pytest.raises(NotFoundError):
            order_service.create_order(_as(catalog.creator), order_data())
        assert Order.query.count() == 0

    def test_duplicate_order_number(self, catalog, make_order):
        make_order(order_number="ORD-DUP")
        with pytest.raises(DuplicateError):
            make_order(order_number="ORD-DUP")
        assert Order.query.filter_by(order_number="ORD-DUP").count() == 1

    def test_failure_mid_fan_out_leaves_nothing(self, catalog, order_data, monkeypatch):
        real_spawn = order_service._spawn_work_item
        calls = {"n": 0}

        def flaky_spawn(order, svc, caller):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("storage hiccup")
            return real_spawn(order, svc, caller)

        monkeypatch.setattr(order_service, "_spawn_work_item", flaky_spawn)
        with pytest.raises(RuntimeError):
            order_service.create_order(_as(catalog.creator), order_data())

        assert Order.query.count() == 0
        assert Task.query.count() == 0
        assert AskingTask.query.count() == 0
        assert OrderService.query.count() == 0
        assert AuditLog.query.filter_by(entity_type="order").count() == 0

    def test_other_integrity_errors_are_not_duplicates(self, catalog, order_data, monkeypatch):
        def broken_audit(**kwargs):
            raise IntegrityError(
                "INSERT INTO audit_logs", {},
                Exception("NOT NULL constraint failed: audit_logs.action"),
            )

        monkeypatch.setattr(order_service, "write_audit", broken_audit)
        with pytest.raises(IntegrityError):
            order_service.create_order(_as(catalog.creator), order_data(order_number="ORD-INT"))
        assert Order.query.count() == 0

    def test_order_number_integrity_error_is_duplicate(self, catalog, order_data, monkeypatch):
        def racing_audit(**kwargs):
            raise IntegrityError(
                "INSERT INTO orders", {},
                Exception("UNIQUE constraint failed: orders.order_number"),
            )

        monkeypatch.setattr(order_service, "write_audit", racing_audit)
        with pytest.raises(DuplicateError):
            order_service.create_order(_as(catalog.creator), order_data(order_number="ORD-RACE"))


# ═════════════════════════════════════════════════════════════════════════
# Folder link
# ═════════════════════════════════════════════════════════════════════════

class TestFolderLink:
    def test_attach_assigns_pending_items(self, catalog, make_order):
        order = make_order()
        order_service.attach_folder_link(_as(catalog.creator), order.id, "https://drive/x")
        assert order.folder_link == "https://drive/x"
        layout = _task_for(order, catalog.layout)
        assert layout.assigned_to_id == catalog.designer.id
        assert layout.status == "ASSIGNED"

    def test_attach_twice_is_idempotent(self, catalog, make_order):
        order = make_order()
        creator = _as(catalog.creator)
        order_service.attach_folder_link(creator, order.id, "https://drive/x")
        order_service.attach_folder_link(creator, order.id, "https://drive/x")

        entries = (AuditLog.query.filter_by(action="order.folder_link")
                   .order_by(AuditLog.id).all())
        assert len(entries) == 2
        assert entries[1].new_value["auto_assigned"] == {"tasks": [], "asking_tasks": []}
        assert Task.query.filter_by(order_id=order.id, assigned_to_id=catalog.designer.id).count() == 1

    def test_manual_assignment_is_not_overridden(self, catalog, make_order):
        order = make_order()
        layout = _task_for(order, catalog.layout)
        task_service.assign_task(
            _as(catalog.design_lead), layout.id,
            assigned_to=catalog.design_lead.id, deadline=_future(), priority="LOW",
        )
        order_service.attach_folder_link(_as(catalog.creator), order.id, "https://drive/x")
        assert layout.assigned_to_id == catalog.design_lead.id

    def test_asking_task_auto_assign_keeps_stage(self, catalog, make_order):
        catalog.brief.auto_assign_enabled = True
        catalog.brief.auto_assign_user_id = catalog.writer.id
        db.session.commit()
        order = make_order(folder_link="https://drive/x")
        brief = _asking_for(order, catalog.brief)
        assert brief.assigned_to_id == catalog.writer.id
        assert brief.current_stage == "ASKED"

    def test_clearing_link(self, catalog, make_order):
        order = make_order(folder_link="https://drive/x")
        order_service.attach_folder_link(_as(catalog.creator), order.id, "  ")
        assert order.folder_link is None

    def test_member_cannot_attach(self, catalog, make_order):
        order = make_order()
        with pytest.raises(ForbiddenError):
            order_service.attach_folder_link(_as(catalog.designer), order.id, "https://drive/x")


# ═════════════════════════════════════════════════════════════════════════
# verify / deliver
# ═════════════════════════════════════════════════════════════════════════

class TestVerifyDeliver:
    def test_verify_moves_to_in_progress(self, catalog, make_order):
        order = make_order()
        order_service.verify_order(_as(catalog.creator), order.id)
        assert order.status == "IN_PROGRESS"

    def test_team_leader_may_verify(self, catalog, make_order):
        order = make_order()
        order_service.verify_order(_as(catalog.design_lead), order.id)
        assert order.status == "IN_PROGRESS"

    def test_plain_member_may_not_verify(self, catalog, make_order):
        order = make_order()
        with pytest.raises(ForbiddenError):
            order_service.verify_order(_as(catalog.designer), order.id)
        assert order.status == "PENDING"

    def test_verify_twice_conflicts(self, catalog, make_order):
        order = make_order()
        order_service.verify_order(_as(catalog.creator), order.id)
        with pytest.raises(InvalidTransitionError) as exc:
            order_service.verify_order(_as(catalog.creator), order.id)
        assert exc.value.current_status == "IN_PROGRESS"

    def test_deliver_from_pending(self, catalog, make_order):
        order = make_order()
        order_service.deliver_order(_as(catalog.creator), order.id)
        assert order.status == "COMPLETED"
        assert order.completed_at is not None

    def test_deliver_twice_conflicts(self, catalog, make_order):
        order = make_order()
        order_service.deliver_order(_as(catalog.creator), order.id)
        with pytest.raises(ConflictError):
            order_service.deliver_order(_as(catalog.creator), order.id)

    def test_verify_after_delivery_conflicts(self, catalog, make_order):
        order = make_order()
        order_service.deliver_order(_as(catalog.creator), order.id)
        with pytest.raises(InvalidTransitionError):
            order_service.verify_order(_as(catalog.creator), order.id)

    def test_deliver_records_outstanding_mandatory_items(self, catalog, make_order):
        order = make_order()
        logo = _task_for(order, catalog.logo)
        task_service.assign_task(
            _as(catalog.design_lead), logo.id,
            assigned_to=catalog.designer.id, deadline=_future(), priority="HIGH",
        )
        task_service.start_task(_as(catalog.designer), logo.id)
        task_service.complete_task(_as(catalog.designer), logo.id)

        order_service.deliver_order(_as(catalog.creator), order.id)
        stats = order.delivery_stats
        assert stats["total"] == 3
        assert stats["completed"] == 1
        assert stats["mandatory_total"] == 2
        assert stats["mandatory_remaining"] == 1

        entry = AuditLog.query.filter_by(action="order.deliver").one()
        assert entry.new_value["completion_stats"]["mandatory_remaining"] == 1

    def test_completed_asking_task_counts_as_done(self, catalog, make_order):
        order = make_order()
        brief = _asking_for(order, catalog.brief)
        asking_task_service.update_stage(_as(catalog.writer), brief.id, {"stage": "INFORMED_TEAM"})
        stats = order_service.get_completion_stats(order.id)
        assert stats["asking_tasks"]["completed"] == 1
        assert stats["mandatory_remaining"] == 1

    def test_member_cannot_deliver(self, catalog, make_order):
        order = make_order()
        with pytest.raises(ForbiddenError):
            order_service.deliver_order(_as(catalog.design_lead), order.id)


# ═════════════════════════════════════════════════════════════════════════
# Maintenance operations
# ═════════════════════════════════════════════════════════════════════════

class TestOrderMaintenance:
    def test_extend_delivery_by_admin(self, catalog, make_order):
        order = make_order()
        new_date = datetime.now(timezone.utc) + timedelta(days=30)
        order_service.extend_delivery(_as(catalog.admin), order.id, new_date.isoformat(), "14:30")
        assert order.delivery_time == "14:30"
        assert order_service.delivery_moment(order).date() == new_date.date()

    def test_extend_delivery_by_team_leader(self, catalog, make_order):
        order = make_order()
        order_service.extend_delivery(_as(catalog.content_lead), order.id, _future(20))

    def test_order_creator_cannot_extend(self, catalog, make_order):
        order = make_order()
        with pytest.raises(ForbiddenError):
            order_service.extend_delivery(_as(catalog.creator), order.id, _future(20))

    def test_extend_before_order_date_rejected(self, catalog, make_order):
        order = make_order()
        past = (datetime.now(timezone.utc) - timedelta(days=3)).isoformat()
        with pytest.raises(ValidationError):
            order_service.extend_delivery(_as(catalog.admin), order.id, past)

    def test_extend_completed_order_conflicts(self, catalog, make_order):
        order = make_order()
        order_service.deliver_order(_as(catalog.creator), order.id)
        with pytest.raises(InvalidTransitionError):
            order_service.extend_delivery(_as(catalog.admin), order.id, _future(20))

    def test_update_order_fields(self, catalog, make_order):
        order = make_order()
        order_service.update_order(_as(catalog.creator), order.id,
                                   {"customer_name": "Beta GmbH", "amount": "99.50"})
        assert order.customer_name == "Beta GmbH"
        assert str(order.amount) == "99.50"
        entry = AuditLog.query.filter_by(action="order.update").one()
        assert entry.old_value == {"customer_name": "Acme Ltd", "amount": "250.00"}

    def test_custom_task_marks_order_customized(self, catalog, make_order):
        order = make_order()
        task = order_service.add_custom_task(
            _as(catalog.creator), order.id, {"title": "Extra banner", "team_id": catalog.design.id},
        )
        assert task.service_id is None
        assert task.status == "NOT_ASSIGNED"
        assert order.is_customized is True

    def test_custom_task_by_owning_leader_preassigned(self, catalog, make_order):
        order = make_order()
        task = order_service.add_custom_task(
            _as(catalog.design_lead), order.id,
            {"title": "Extra banner", "team_id": catalog.design.id,
             "assigned_to": catalog.designer.id},
        )
        assert task.status == "ASSIGNED"
        assert task.assigned_to_id == catalog.designer.id

    def test_custom_task_other_team_leader_forbidden(self, catalog, make_order):
        order = make_order()
        with pytest.raises(ForbiddenError):
            order_service.add_custom_task(
                _as(catalog.content_lead), order.id,
                {"title": "Extra banner", "team_id": catalog.design.id},
            )

    def test_delete_order_cascades(self, catalog, make_order):
        order = make_order()
        order_id = order.id
        order_service.delete_order(_as(catalog.admin), order_id)
        assert db.session.get(Order, order_id) is None
        assert Task.query.filter_by(order_id=order_id).count() == 0
        assert AskingTask.query.filter_by(order_id=order_id).count() == 0
        assert AuditLog.query.filter_by(action="order.delete", entity_id=str(order_id)).count() == 1

    def test_only_admin_deletes(self, catalog, make_order):
        order = make_order()
        with pytest.raises(ForbiddenError):
            order_service.delete_order(_as(catalog.creator), order.id)

    def test_orders_missing_folder_link(self, catalog, make_order):
        waiting = make_order()
        make_order(folder_link="https://files.example.com/orders/9")
        missing = order_service.list_orders_query(has_folder_link=False).all()
        linked = order_service.list_orders_query(has_folder_link=True).all()
        assert [o.id for o in missing] == [waiting.id]
        assert waiting.id not in [o.id for o in linked]
        assert len(order_service.list_orders_query().all()) == 2


# ═════════════════════════════════════════════════════════════════════════
# Service set edits
# ═════════════════════════════════════════════════════════════════════════

class TestOrderServices:
    @pytest.fixture()
    def copywriting(self, catalog):
        svc = Service(name="Copywriting", slug="copywriting", type=SERVICE_TYPE_TASK,
                      team_id=catalog.content.id, is_mandatory=False,
                      auto_assign_enabled=True, auto_assign_user_id=catalog.writer.id)
        db.session.add(svc)
        db.session.commit()
        return svc

    def test_added_service_fans_out_and_auto_assigns(self, catalog, make_order, copywriting):
        order = make_order(folder_link="https://files.example.com/orders/3")
        ids = [catalog.logo.id, catalog.layout.id, catalog.brief.id, copywriting.id]
        order_service.update_order_services(_as(catalog.creator), order.id, ids)

        task = _task_for(order, copywriting)
        assert task.title == "Copywriting"
        assert task.team_id == catalog.content.id
        assert task.assigned_to_id == catalog.writer.id
        assert task.status == "ASSIGNED"
        assert order.is_customized is True
        assert order.order_services.count() == 4
        assert order.tasks.count() == 3

    def test_removing_unassigned_service_deletes_its_items(self, catalog, make_order):
        order = make_order()
        order_service.update_order_services(_as(catalog.creator), order.id, [catalog.layout.id])

        assert Task.query.filter_by(order_id=order.id, service_id=catalog.logo.id).count() == 0
        assert AskingTask.query.filter_by(order_id=order.id).count() == 0
        assert [s.service_id for s in order.order_services] == [catalog.layout.id]
        assert _task_for(order, catalog.layout).status == "NOT_ASSIGNED"

    def test_removing_assigned_service_is_refused(self, catalog, make_order):
        # folder link present, so "layout" is auto-assigned to the designer
        order = make_order(folder_link="https://files.example.com/orders/4")
        with pytest.raises(ValidationError, match="assigned tasks"):
            order_service.update_order_services(
                _as(catalog.creator), order.id, [catalog.logo.id, catalog.brief.id],
            )

        assert _task_for(order, catalog.layout).assigned_to_id == catalog.designer.id
        assert order.order_services.count() == 3
        assert order.is_customized is False
        assert AuditLog.query.filter_by(action="order.update_services").count() == 0

    def test_one_audit_row_with_old_and_new_service_ids(self, catalog, make_order, copywriting):
        order = make_order()
        order_service.update_order_services(
            _as(catalog.admin), order.id, [catalog.logo.id, catalog.layout.id, copywriting.id],
        )

        rows = AuditLog.query.filter_by(entity_id=str(order.id), action="order.update_services").all()
        assert len(rows) == 1
        assert sorted(rows[0].old_value["service_ids"]) == sorted(
            [catalog.logo.id, catalog.layout.id, catalog.brief.id]
        )
        assert sorted(rows[0].new_value["service_ids"]) == sorted(
            [catalog.logo.id, catalog.layout.id, copywriting.id]
        )
        assert rows[0].old_value["is_customized"] is False
        assert rows[0].performed_by_id == catalog.admin.id

    def test_inactive_service_rejected(self, catalog, make_order, copywriting):
        copywriting.is_active = False
        db.session.commit()
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.update_order_services(
                _as(catalog.creator), order.id,
                [catalog.logo.id, catalog.layout.id, catalog.brief.id, copywriting.id],
            )
        assert order.order_services.count() == 3

    @pytest.mark.parametrize("service_ids", [None, "1,2", [1, "x"]])
    def test_malformed_ids_rejected(self, catalog, make_order, service_ids):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.update_order_services(_as(catalog.creator), order.id, service_ids)

    def test_completed_order_conflicts(self, catalog, make_order):
        order = make_order()
        order_service.deliver_order(_as(catalog.creator), order.id)
        with pytest.raises(InvalidTransitionError):
            order_service.update_order_services(_as(catalog.admin), order.id, [catalog.logo.id])

    def test_only_admin_or_own_creator(self, catalog, make_order, make_user):
        order = make_order()
        other_creator = make_user(Role.ORDER_CREATOR)
        ids = [catalog.logo.id, catalog.layout.id]
        for user in (other_creator, catalog.design_lead, catalog.revision_manager):
            with pytest.raises(ForbiddenError):
                order_service.update_order_services(_as(user), order.id, ids)
        order_service.update_order_services(_as(catalog.admin), order.id, ids)
        assert order.order_services.count() == 2

    def test_overview_flags_removable_services(self, catalog, make_order, copywriting):
        order = make_order(folder_link="https://files.example.com/orders/5")
        overview = order_service.get_order_services(_as(catalog.creator), order.id)

        current = {s["service_id"]: s for s in overview["current_services"]}
        assert current[catalog.layout.id]["can_remove"] is False
        assert current[catalog.logo.id]["can_remove"] is True
        assert current[catalog.logo.id]["item_count"] == 1
        available = {s["id"] for s in overview["available_services"]}
        assert available == {catalog.logo.id, catalog.layout.id, catalog.brief.id}
        assert overview["order"]["is_customized"] is False


# ═════════════════════════════════════════════════════════════════════════
# HTTP surface
# ═════════════════════════════════════════════════════════════════════════

class TestOrderApi:
    def test_create_returns_201_with_children(self, client, catalog, order_data, auth_headers):
        rv = client.post(BASE, json=order_data(), headers=auth_headers(catalog.creator))
        assert rv.status_code == 201
        body = rv.get_json()
        assert body["status"] == "PENDING"
        assert len(body["tasks"]) == 2
        assert len(body["asking_tasks"]) == 1

    def test_duplicate_returns_409(self, client, catalog, order_data, auth_headers):
        data = order_data(order_number="ORD-API-1")
        headers = auth_headers(catalog.creator)
        assert client.post(BASE, json=data, headers=headers).status_code == 201
        rv = client.post(BASE, json=data, headers=headers)
        assert rv.status_code == 409
        assert rv.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_validation_returns_400(self, client, catalog, order_data, auth_headers):
        data = order_data()
        data.pop("customer_name")
        rv = client.post(BASE, json=data, headers=auth_headers(catalog.creator))
        assert rv.status_code == 400
        body = rv.get_json()
        assert body["code"] == "ERR_VALIDATION_REQUIRED"
        assert body["details"] == {"customer_name": "required"}

    def test_member_gets_403(self, client, catalog, order_data, auth_headers):
        rv = client.post(BASE, json=order_data(), headers=auth_headers(catalog.designer))
        assert rv.status_code == 403
        assert rv.get_json()["code"] == "ERR_FORBIDDEN"

    def test_verify_then_deliver(self, client, catalog, make_order, auth_headers):
        order = make_order()
        headers = auth_headers(catalog.creator)
        rv = client.patch(f"{BASE}/{order.id}/verify", headers=headers)
        assert rv.status_code == 200
        assert rv.get_json()["order"]["status"] == "IN_PROGRESS"

        rv = client.post(f"{BASE}/{order.id}/deliver", json={}, headers=headers)
        assert rv.status_code == 200
        assert rv.get_json()["statistics"]["total"] == 3

        rv = client.post(f"{BASE}/{order.id}/deliver", json={}, headers=headers)
        assert rv.status_code == 409
        assert rv.get_json()["details"]["current_status"] == "COMPLETED"

    def test_folder_link_endpoint(self, client, catalog, make_order, auth_headers):
        order = make_order()
        rv = client.patch(f"{BASE}/{order.id}/folder-link",
                          json={"folder_link": "https://drive/x"},
                          headers=auth_headers(catalog.creator))
        assert rv.status_code == 200
        tasks = {t["service_id"]: t for t in rv.get_json()["tasks"]}
        assert tasks[catalog.layout.id]["assigned_to_id"] == catalog.designer.id

    def test_list_and_filter(self, client, catalog, make_order, auth_headers):
        make_order(customer_name="Alpha")
        second = make_order(customer_name="Beta")
        order_service.verify_order(_as(catalog.creator), second.id)
        headers = auth_headers(catalog.designer)

        rv = client.get(BASE, headers=headers)
        assert rv.get_json()["total"] == 2
        rv = client.get(f"{BASE}?status=IN_PROGRESS", headers=headers)
        assert [o["customer_name"] for o in rv.get_json()["items"]] == ["Beta"]
        rv = client.get(f"{BASE}?q=alp", headers=headers)
        assert rv.get_json()["total"] == 1

    def test_get_missing_order_404(self, client, catalog, auth_headers):
        rv = client.get(f"{BASE}/9999", headers=auth_headers(catalog.creator))
        assert rv.status_code == 404
        assert rv.get_json()["code"] == "ERR_NOT_FOUND"

    def test_missing_folder_link_filter(self, client, catalog, make_order, auth_headers):
        waiting = make_order()
        make_order(folder_link="https://files.example.com/orders/7")
        rv = client.get(f"{BASE}?has_folder_link=false", headers=auth_headers(catalog.admin))
        assert [o["id"] for o in rv.get_json()["items"]] == [waiting.id]

    def test_services_endpoint(self, client, catalog, make_order, auth_headers):
        order = make_order()
        headers = auth_headers(catalog.creator)
        rv = client.get(f"{BASE}/{order.id}/services", headers=headers)
        assert rv.status_code == 200
        assert len(rv.get_json()["current_services"]) == 3

        rv = client.patch(f"{BASE}/{order.id}/services",
                          json={"service_ids": [catalog.logo.id, catalog.brief.id]},
                          headers=headers)
        assert rv.status_code == 200
        body = rv.get_json()
        assert body["is_customized"] is True
        assert {s["service_id"] for s in body["services"]} == {catalog.logo.id, catalog.brief.id}
        assert [t["service_id"] for t in body["tasks"]] == [catalog.logo.id]

    def test_services_endpoint_refuses_assigned_removal(self, client, catalog, make_order,
                                                         auth_headers):
        order = make_order(folder_link="https://files.example.com/orders/8")
        rv = client.patch(f"{BASE}/{order.id}/services",
                          json={"service_ids": [catalog.logo.id]},
                          headers=auth_headers(catalog.admin))
        assert rv.status_code == 400
        assert rv.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_services_endpoint_other_creator_403(self, client, catalog, make_order, make_user,
                                                 auth_headers):
        order = make_order()
        rv = client.get(f"{BASE}/{order.id}/services",
                        headers=auth_headers(make_user(Role.ORDER_CREATOR)))
        assert rv.status_code == 403
