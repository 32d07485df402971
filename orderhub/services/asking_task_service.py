"""
Asking Task — Service Layer.

Staged confirmation flow: ASKED → SHARED → VERIFIED → INFORMED_TEAM.

Each ``update_stage`` call appends one AskingTaskStage history row and
moves ``current_stage``; reaching INFORMED_TEAM completes the parent.
Stage order is not enforced: any stage may follow any other, and the
history row records the stage it came from.

Flag and notes updates are side channels and never touch the stage.
"""

import logging

from sqlalchemy import or_, select

from orderhub.core.exceptions import ConflictError, ValidationError
from orderhub.models import db
from orderhub.models.audit import write_audit
from orderhub.models.order import ASKING_STAGES, AskingTask, AskingTaskStage
from orderhub.models.team import Team, TeamMember
from orderhub.services.permission import (
    can_access_asking_task,
    check,
    has_capability,
    is_active_member,
    is_team_leader,
)
from orderhub.utils.helpers import as_bool, get_for_update, get_or_raise, utcnow

logger = logging.getLogger(__name__)

FINAL_STAGE = "INFORMED_TEAM"


def _require_access(caller, at: AskingTask, action: str) -> None:
    in_team = is_active_member(caller.user_id, at.team_id) or is_team_leader(caller.user_id, at.team_id)
    check(
        can_access_asking_task(caller.role, at.assigned_to_id == caller.user_id, in_team),
        f"asking_task.{action}", caller,
    )


def get_asking_task(caller, asking_task_id) -> AskingTask:
    at = get_or_raise(AskingTask, asking_task_id, "AskingTask")
    _require_access(caller, at, "view")
    return at


def list_asking_tasks(
    caller,
    *,
    order_id: int | None = None,
    stage: str | None = None,
    flagged: bool | None = None,
) -> list[AskingTask]:
    """Asking tasks visible to the caller, oldest first."""
    stmt = select(AskingTask)
    if not has_capability(caller.role, "asking_task.view_all"):
        team_ids = select(TeamMember.team_id).where(
            TeamMember.user_id == caller.user_id, TeamMember.is_active.is_(True),
        )
        led_ids = select(Team.id).where(Team.leader_id == caller.user_id)
        stmt = stmt.where(or_(
            AskingTask.assigned_to_id == caller.user_id,
            AskingTask.team_id.in_(team_ids),
            AskingTask.team_id.in_(led_ids),
        ))
    if order_id is not None:
        stmt = stmt.where(AskingTask.order_id == order_id)
    if stage:
        if stage not in ASKING_STAGES:
            raise ValidationError(f"stage must be one of {list(ASKING_STAGES)}",
                                  details={"stage": "invalid"})
        stmt = stmt.where(AskingTask.current_stage == stage)
    if flagged is not None:
        stmt = stmt.where(AskingTask.is_flagged.is_(flagged))
    return list(db.session.execute(stmt.order_by(AskingTask.id)).scalars())


def update_stage(caller, asking_task_id, data: dict) -> AskingTaskStage:
    """
    Record a stage update.

    ``data`` keys (all optional): stage, initial_confirmation, update_request,
    initial_staff, update_staff, notes. ``stage`` defaults to the current stage.

    Returns the new AskingTaskStage history row.
    """
    at = get_for_update(AskingTask, asking_task_id, "AskingTask")
    _require_access(caller, at, "stage")

    stage = data.get("stage") or at.current_stage
    if stage not in ASKING_STAGES:
        raise ValidationError(f"stage must be one of {list(ASKING_STAGES)}",
                              details={"stage": "invalid"})

    now = utcnow()
    entry = AskingTaskStage(
        asking_task_id=at.id,
        previous_stage=at.current_stage,
        stage=stage,
        initial_staff=data.get("initial_staff"),
        update_staff=data.get("update_staff"),
        notes=data.get("notes"),
        updated_by_id=caller.user_id,
    )
    if data.get("initial_confirmation") is not None:
        entry.initial_confirmation = as_bool(data["initial_confirmation"])
        entry.initial_confirmation_by_id = caller.user_id
        entry.initial_confirmation_at = now
    if data.get("update_request") is not None:
        entry.update_request = as_bool(data["update_request"])
        entry.update_request_by_id = caller.user_id
        entry.update_request_at = now
    db.session.add(entry)

    old = {"current_stage": at.current_stage,
           "completed_at": at.completed_at.isoformat() if at.completed_at else None}
    at.current_stage = stage
    if stage == FINAL_STAGE and at.completed_at is None:
        at.completed_at = now
        at.completed_by_id = caller.user_id
    db.session.flush()

    write_audit(
        entity_type="asking_task", entity_id=at.id, action="asking_task.stage",
        performed_by_id=caller.user_id, old_value=old,
        new_value={
            "current_stage": at.current_stage,
            "completed_at": at.completed_at.isoformat() if at.completed_at else None,
            "stage_entry_id": entry.id,
        },
        description=f"Stage {old['current_stage']} → {stage}",
    )
    db.session.commit()
    return entry


def set_flag(caller, asking_task_id, flagged) -> AskingTask:
    at = get_for_update(AskingTask, asking_task_id, "AskingTask")
    _require_access(caller, at, "flag")
    old = {"is_flagged": at.is_flagged}
    at.is_flagged = as_bool(flagged)
    write_audit(
        entity_type="asking_task", entity_id=at.id,
        action="asking_task.flag" if at.is_flagged else "asking_task.unflag",
        performed_by_id=caller.user_id, old_value=old, new_value={"is_flagged": at.is_flagged},
    )
    db.session.commit()
    return at


def update_notes(caller, asking_task_id, notes) -> AskingTask:
    if notes is None:
        raise ValidationError("notes is required", details={"notes": "required"})
    at = get_for_update(AskingTask, asking_task_id, "AskingTask")
    _require_access(caller, at, "notes")
    old = {"notes": at.notes}
    at.notes = notes
    at.notes_updated_by_id = caller.user_id
    at.notes_updated_at = utcnow()
    write_audit(
        entity_type="asking_task", entity_id=at.id, action="asking_task.notes",
        performed_by_id=caller.user_id, old_value=old, new_value={"notes": at.notes},
    )
    db.session.commit()
    return at


def complete_asking_task(caller, asking_task_id) -> AskingTask:
    at = get_for_update(AskingTask, asking_task_id, "AskingTask")
    _require_access(caller, at, "complete")
    if at.completed_at is not None:
        raise ConflictError("Asking task is already completed",
                            details={"completed_at": at.completed_at.isoformat()})
    at.completed_at = utcnow()
    at.completed_by_id = caller.user_id
    write_audit(
        entity_type="asking_task", entity_id=at.id, action="asking_task.complete",
        performed_by_id=caller.user_id, old_value={"completed_at": None},
        new_value={"completed_at": at.completed_at.isoformat(),
                   "completed_by_id": at.completed_by_id},
    )
    db.session.commit()
    return at
