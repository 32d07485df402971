"""
Task Assignment & Progress Tracker — Service Layer.

Task lifecycle (TASK_TRANSITIONS):

    NOT_ASSIGNED --assign--> ASSIGNED --start--> IN_PROGRESS --complete--> COMPLETED
                                                 IN_PROGRESS <--pause/resume--> PAUSED
    reassign:  ASSIGNED | IN_PROGRESS | PAUSED → ASSIGNED
    discard:   any non-COMPLETED → NOT_ASSIGNED

Assignment is done by the leader of the task's owning team (or an admin);
progress actions only by the current assignee. Each transition re-reads
the task under a row lock and re-checks the source status in the same
transaction as the write.
"""

import logging

from sqlalchemy import select

from orderhub.core.exceptions import ForbiddenError, InvalidTransitionError, ValidationError
from orderhub.models import db
from orderhub.models.audit import snapshot, write_audit
from orderhub.models.order import (
    DISCARD_MARKER,
    TASK_PRIORITIES,
    TASK_STATUSES,
    TASK_TRANSITIONS,
    Task,
    validate_transition,
)
from orderhub.models.team import Team
from orderhub.services.order_service import delivery_moment
from orderhub.services.permission import can_assign_task, check, is_active_member, is_team_leader
from orderhub.utils.helpers import ensure_utc, get_for_update, get_or_raise, parse_datetime, utcnow

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = (
    "assigned_to_id", "status", "priority", "deadline", "notes",
    "started_at", "completed_at", "elapsed_seconds",
)


def get_task(task_id) -> Task:
    return get_or_raise(Task, task_id, "Task")


def _lock(task_id) -> Task:
    return get_for_update(Task, task_id, "Task")


def _transition(task: Task, action: str) -> str:
    validation = validate_transition(TASK_TRANSITIONS, task.status, action)
    if not validation["valid"]:
        raise InvalidTransitionError("task", task.id, action, task.status, validation["reason"])
    previous = task.status
    task.status = validation["to"]
    return previous


def _audit(caller, task: Task, action: str, old: dict, description: str | None = None):
    write_audit(
        entity_type="task", entity_id=task.id, action=f"task.{action}",
        performed_by_id=caller.user_id, old_value=old,
        new_value=snapshot("task", task, _AUDIT_FIELDS),
        description=description,
    )


def _require_leader(caller, task: Task, action: str) -> None:
    check(
        can_assign_task(caller.role, is_team_leader(caller.user_id, task.team_id)),
        f"task.{action}", caller,
        "Only the leader of the task's team can do this",
    )


def _require_assignee(caller, task: Task, action: str) -> None:
    if task.assigned_to_id is None or task.assigned_to_id != caller.user_id:
        raise ForbiddenError(f"task.{action}", caller.role, "Only the assignee can do this")


def _validate_assignment(task: Task, assigned_to, deadline, priority):
    """Check assignee / deadline / priority; return (assignee_id, deadline, priority)."""
    if assigned_to is None:
        raise ValidationError("assigned_to is required", details={"assigned_to": "required"})
    if deadline is None:
        raise ValidationError("deadline is required", details={"deadline": "required"})
    if priority not in TASK_PRIORITIES:
        raise ValidationError(
            f"priority must be one of {list(TASK_PRIORITIES)}", details={"priority": "invalid"},
        )
    if not is_active_member(assigned_to, task.team_id):
        raise ValidationError(
            "Assignee must be an active member of the task's team",
            details={"assigned_to": "not a team member"},
        )
    deadline = parse_datetime(deadline, "deadline")
    if deadline >= delivery_moment(task.order):
        raise ValidationError(
            "Deadline must be before the order's delivery date",
            details={"deadline": "not before delivery"},
        )
    return assigned_to, deadline, priority


# ── Leader actions ───────────────────────────────────────────────────────────


def assign_task(caller, task_id, *, assigned_to, deadline, priority) -> Task:
    task = _lock(task_id)
    _require_leader(caller, task, "assign")
    validation = validate_transition(TASK_TRANSITIONS, task.status, "assign")
    if not validation["valid"]:
        raise InvalidTransitionError("task", task.id, "assign", task.status, validation["reason"])
    assignee_id, deadline, priority = _validate_assignment(task, assigned_to, deadline, priority)

    old = snapshot("task", task, _AUDIT_FIELDS)
    _transition(task, "assign")
    task.assigned_to_id = assignee_id
    task.deadline = deadline
    task.priority = priority
    _audit(caller, task, "assign", old, f"Task assigned to user {assignee_id}")
    db.session.commit()
    return task


def reassign_task(caller, task_id, *, assigned_to, deadline=None, priority=None) -> Task:
    """Move an active task to another member; progress restarts from ASSIGNED."""
    task = _lock(task_id)
    _require_leader(caller, task, "reassign")
    validation = validate_transition(TASK_TRANSITIONS, task.status, "reassign")
    if not validation["valid"]:
        raise InvalidTransitionError("task", task.id, "reassign", task.status, validation["reason"])
    assignee_id, deadline, priority = _validate_assignment(
        task,
        assigned_to,
        deadline if deadline is not None else task.deadline,
        priority or task.priority,
    )

    old = snapshot("task", task, _AUDIT_FIELDS)
    _transition(task, "reassign")
    task.assigned_to_id = assignee_id
    task.deadline = deadline
    task.priority = priority
    task.started_at = None
    _audit(caller, task, "reassign", old,
           f"Task reassigned from user {old['assigned_to_id']} to user {assignee_id}")
    db.session.commit()
    return task


def discard_task(caller, task_id, reason: str | None = None) -> Task:
    """Return a task to the unassigned pool, marking its notes."""
    task = _lock(task_id)
    _require_leader(caller, task, "discard")
    old = snapshot("task", task, _AUDIT_FIELDS)
    _transition(task, "discard")

    note = (reason or task.notes or "").strip()
    if note.startswith(DISCARD_MARKER):
        note = note[len(DISCARD_MARKER):].strip()
    task.notes = f"{DISCARD_MARKER} {note or 'Task returned to unassigned status'}"
    task.assigned_to_id = None
    task.started_at = None
    _audit(caller, task, "discard", old, "Task discarded")
    db.session.commit()
    return task


# ── Assignee actions ─────────────────────────────────────────────────────────


def start_task(caller, task_id) -> Task:
    task = _lock(task_id)
    _require_assignee(caller, task, "start")
    old = snapshot("task", task, _AUDIT_FIELDS)
    _transition(task, "start")
    task.started_at = utcnow()
    _audit(caller, task, "start", old)
    db.session.commit()
    return task


def pause_task(caller, task_id) -> Task:
    task = _lock(task_id)
    _require_assignee(caller, task, "pause")
    old = snapshot("task", task, _AUDIT_FIELDS)
    _transition(task, "pause")
    _audit(caller, task, "pause", old)
    db.session.commit()
    return task


def resume_task(caller, task_id) -> Task:
    task = _lock(task_id)
    _require_assignee(caller, task, "resume")
    old = snapshot("task", task, _AUDIT_FIELDS)
    _transition(task, "resume")
    _audit(caller, task, "resume", old)
    db.session.commit()
    return task


def toggle_pause(caller, task_id) -> Task:
    """Pause an IN_PROGRESS task or resume a PAUSED one."""
    task = _lock(task_id)
    _require_assignee(caller, task, "pause")
    action = "resume" if task.status == "PAUSED" else "pause"
    old = snapshot("task", task, _AUDIT_FIELDS)
    _transition(task, action)
    _audit(caller, task, action, old)
    db.session.commit()
    return task


def complete_task(caller, task_id, notes: str | None = None) -> Task:
    """IN_PROGRESS → COMPLETED; records completed_at and elapsed time."""
    task = _lock(task_id)
    _require_assignee(caller, task, "complete")
    if task.status == "ASSIGNED":
        raise InvalidTransitionError("task", task.id, "complete", task.status,
                                     "Please start the task before completing it")
    old = snapshot("task", task, _AUDIT_FIELDS)
    _transition(task, "complete")

    now = utcnow()
    task.completed_at = now
    started = ensure_utc(task.started_at) or now
    task.elapsed_seconds = max(int((now - started).total_seconds()), 0)
    if notes:
        task.notes = notes
    _audit(caller, task, "complete", old)
    db.session.commit()
    logger.info("Task %s completed by user %s in %ss", task.id, caller.user_id, task.elapsed_seconds)
    return task


def time_spent(task: Task) -> dict | None:
    """Elapsed time of a completed task split into hours / minutes."""
    if task.elapsed_seconds is None:
        return None
    total = task.elapsed_seconds
    return {"hours": total // 3600, "minutes": (total % 3600) // 60, "total_seconds": total}


# ── Listings ─────────────────────────────────────────────────────────────────


def _status_filter(stmt, status: str | None):
    if status:
        if status not in TASK_STATUSES:
            raise ValidationError(f"status must be one of {list(TASK_STATUSES)}",
                                  details={"status": "invalid"})
        stmt = stmt.where(Task.status == status)
    return stmt


def list_my_tasks(caller, status: str | None = None) -> list[Task]:
    stmt = select(Task).where(Task.assigned_to_id == caller.user_id)
    stmt = _status_filter(stmt, status).order_by(Task.deadline, Task.id)
    return list(db.session.execute(stmt).scalars())


def list_team_tasks(caller, team_id: int | None = None, status: str | None = None) -> list[Task]:
    """Tasks of every team the caller leads (or of *team_id*; admins see all)."""
    if caller.is_admin:
        team_ids = None if team_id is None else [team_id]
    else:
        led = list(db.session.execute(
            select(Team.id).where(Team.leader_id == caller.user_id)
        ).scalars())
        if team_id is not None:
            if team_id not in led:
                raise ForbiddenError("task.list_team", caller.role, "You do not lead this team")
            led = [team_id]
        team_ids = led
    stmt = select(Task)
    if team_ids is not None:
        stmt = stmt.where(Task.team_id.in_(team_ids))
    stmt = _status_filter(stmt, status).order_by(Task.deadline, Task.id)
    return list(db.session.execute(stmt).scalars())
