"""
Asking-task flow tests: stage history, completion on INFORMED_TEAM,
flag / notes side channels and visibility.
"""

import pytest

from orderhub.auth import Caller
from orderhub.core.exceptions import ConflictError, ForbiddenError, ValidationError
from orderhub.models.audit import AuditLog
from orderhub.models.order import AskingTask, AskingTaskStage
from orderhub.services import asking_task_service

BASE = "/api/v1/asking-tasks"


def _as(user):
    return Caller.from_user(user)


@pytest.fixture()
def brief(catalog, make_order):
    order = make_order()
    return AskingTask.query.filter_by(order_id=order.id).one()


class TestStages:
    def test_stage_update_appends_history(self, catalog, brief):
        entry = asking_task_service.update_stage(_as(catalog.writer), brief.id, {
            "stage": "SHARED", "initial_confirmation": True, "initial_staff": "Ayse",
        })
        assert entry.previous_stage == "ASKED"
        assert entry.stage == "SHARED"
        assert entry.initial_confirmation is True
        assert entry.initial_confirmation_by_id == catalog.writer.id
        assert entry.initial_confirmation_at is not None
        assert entry.update_request is None
        assert brief.current_stage == "SHARED"
        assert brief.completed_at is None

    def test_informed_team_completes(self, catalog, brief):
        asking_task_service.update_stage(_as(catalog.writer), brief.id, {"stage": "INFORMED_TEAM"})
        assert brief.completed_at is not None
        assert brief.completed_by_id == catalog.writer.id

    def test_stages_may_go_backwards(self, catalog, brief):
        writer = _as(catalog.writer)
        asking_task_service.update_stage(writer, brief.id, {"stage": "VERIFIED"})
        entry = asking_task_service.update_stage(writer, brief.id, {"stage": "ASKED"})
        assert entry.previous_stage == "VERIFIED"
        assert brief.current_stage == "ASKED"
        assert AskingTaskStage.query.filter_by(asking_task_id=brief.id).count() == 2

    def test_stage_defaults_to_current(self, catalog, brief):
        entry = asking_task_service.update_stage(_as(catalog.writer), brief.id,
                                                 {"update_request": False})
        assert entry.stage == "ASKED"
        assert entry.update_request is False

    def test_invalid_stage(self, catalog, brief):
        with pytest.raises(ValidationError):
            asking_task_service.update_stage(_as(catalog.writer), brief.id, {"stage": "DONE"})

    def test_outsider_forbidden(self, catalog, brief):
        with pytest.raises(ForbiddenError):
            asking_task_service.update_stage(_as(catalog.outsider), brief.id, {"stage": "SHARED"})

    def test_order_creator_has_access(self, catalog, brief):
        asking_task_service.update_stage(_as(catalog.creator), brief.id, {"stage": "SHARED"})
        assert brief.current_stage == "SHARED"

    def test_each_update_audited_once(self, catalog, brief):
        asking_task_service.update_stage(_as(catalog.writer), brief.id, {"stage": "SHARED"})
        entry = AuditLog.query.filter_by(entity_type="asking_task").one()
        assert entry.action == "asking_task.stage"
        assert entry.old_value["current_stage"] == "ASKED"
        assert entry.new_value["current_stage"] == "SHARED"
        assert entry.new_value["stage_entry_id"] is not None


class TestSideChannels:
    def test_flag_and_unflag(self, catalog, brief):
        writer = _as(catalog.writer)
        asking_task_service.set_flag(writer, brief.id, True)
        assert brief.is_flagged is True
        asking_task_service.set_flag(writer, brief.id, False)
        assert brief.is_flagged is False
        assert brief.current_stage == "ASKED"
        actions = [e.action for e in AuditLog.query.filter_by(entity_type="asking_task")
                   .order_by(AuditLog.id)]
        assert actions == ["asking_task.flag", "asking_task.unflag"]

    def test_notes_record_author(self, catalog, brief):
        asking_task_service.update_notes(_as(catalog.content_lead), brief.id, "Call back Monday")
        assert brief.notes == "Call back Monday"
        assert brief.notes_updated_by_id == catalog.content_lead.id
        assert brief.notes_updated_at is not None

    def test_notes_required(self, catalog, brief):
        with pytest.raises(ValidationError):
            asking_task_service.update_notes(_as(catalog.writer), brief.id, None)

    def test_complete_once(self, catalog, brief):
        writer = _as(catalog.writer)
        asking_task_service.complete_asking_task(writer, brief.id)
        with pytest.raises(ConflictError):
            asking_task_service.complete_asking_task(writer, brief.id)


class TestVisibility:
    def test_list_scoped_to_team(self, catalog, brief):
        assert [a.id for a in asking_task_service.list_asking_tasks(_as(catalog.writer))] == [brief.id]
        assert asking_task_service.list_asking_tasks(_as(catalog.outsider)) == []
        assert len(asking_task_service.list_asking_tasks(_as(catalog.creator))) == 1

    def test_filter_flagged(self, catalog, brief):
        asking_task_service.set_flag(_as(catalog.writer), brief.id, True)
        flagged = asking_task_service.list_asking_tasks(_as(catalog.admin), flagged=True)
        assert [a.id for a in flagged] == [brief.id]
        assert asking_task_service.list_asking_tasks(_as(catalog.admin), flagged=False) == []


class TestAskingTaskApi:
    def test_stage_endpoint(self, client, catalog, brief, auth_headers):
        headers = auth_headers(catalog.writer)
        rv = client.post(f"{BASE}/{brief.id}/stage", headers=headers,
                         json={"stage": "VERIFIED", "update_staff": "Mert"})
        assert rv.status_code == 201
        body = rv.get_json()
        assert body["stage"]["previous_stage"] == "ASKED"
        assert body["asking_task"]["current_stage"] == "VERIFIED"

        rv = client.get(f"{BASE}/{brief.id}", headers=headers)
        assert len(rv.get_json()["stages"]) == 1

    def test_outsider_gets_403(self, client, catalog, brief, auth_headers):
        rv = client.get(f"{BASE}/{brief.id}", headers=auth_headers(catalog.outsider))
        assert rv.status_code == 403

    def test_flag_endpoint(self, client, catalog, brief, auth_headers):
        rv = client.patch(f"{BASE}/{brief.id}/flag", json={"is_flagged": True},
                          headers=auth_headers(catalog.writer))
        assert rv.get_json()["is_flagged"] is True
