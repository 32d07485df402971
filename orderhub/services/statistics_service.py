"""
Task statistics — read-only aggregates for the admin dashboard.

    teams:    per-team task counts by status + overdue
    members:  per-member totals, in progress, paused, completed, overdue,
              and completed asking tasks

``start`` / ``end`` bound the task creation date (inclusive / exclusive).
"""

from sqlalchemy import and_, case, func, select

from orderhub.models import db
from orderhub.models.auth import Role, User
from orderhub.models.order import TASK_STATUSES, AskingTask, Task
from orderhub.models.team import Team
from orderhub.utils.helpers import parse_datetime, utcnow


def _window(column, start, end) -> list:
    clauses = []
    if start is not None:
        clauses.append(column >= start)
    if end is not None:
        clauses.append(column < end)
    return clauses


def task_statistics(start=None, end=None) -> dict:
    start = parse_datetime(start, "start")
    end = parse_datetime(end, "end")
    now = utcnow()
    # window goes into the join so teams/members without tasks still appear
    task_window = _window(Task.created_at, start, end)
    overdue = and_(Task.deadline.is_not(None), Task.deadline < now, Task.status != "COMPLETED")

    status_cols = [
        func.sum(case((Task.status == s, 1), else_=0)).label(s) for s in TASK_STATUSES
    ]
    team_stmt = (
        select(
            Team.id, Team.name,
            func.count(Task.id).label("total"),
            func.sum(case((overdue, 1), else_=0)).label("overdue"),
            *status_cols,
        )
        .select_from(Team)
        .outerjoin(Task, and_(Task.team_id == Team.id, *task_window))
        .where(Team.is_active.is_(True))
        .group_by(Team.id, Team.name)
        .order_by(Team.name)
    )

    teams = []
    for row in db.session.execute(team_stmt):
        m = row._mapping
        teams.append({
            "team_id": m["id"],
            "team_name": m["name"],
            "total": m["total"] or 0,
            "overdue": m["overdue"] or 0,
            "by_status": {s: m[s] or 0 for s in TASK_STATUSES},
        })

    member_stmt = (
        select(
            User.id, User.display_name,
            func.count(Task.id).label("total"),
            func.sum(case((Task.status == "IN_PROGRESS", 1), else_=0)).label("in_progress"),
            func.sum(case((Task.status == "PAUSED", 1), else_=0)).label("paused"),
            func.sum(case((Task.status == "COMPLETED", 1), else_=0)).label("completed"),
            func.sum(case((overdue, 1), else_=0)).label("overdue"),
        )
        .select_from(User)
        .outerjoin(Task, and_(Task.assigned_to_id == User.id, *task_window))
        .where(User.role == Role.MEMBER, User.is_active.is_(True))
        .group_by(User.id, User.display_name)
        .order_by(User.display_name)
    )

    asking_stmt = (
        select(AskingTask.completed_by_id, func.count(AskingTask.id))
        .where(AskingTask.completed_at.is_not(None),
               *_window(AskingTask.completed_at, start, end))
        .group_by(AskingTask.completed_by_id)
    )
    asking_done = dict(db.session.execute(asking_stmt).all())

    members = []
    for row in db.session.execute(member_stmt):
        m = row._mapping
        members.append({
            "user_id": m["id"],
            "display_name": m["display_name"],
            "total": m["total"] or 0,
            "in_progress": m["in_progress"] or 0,
            "paused": m["paused"] or 0,
            "completed": m["completed"] or 0,
            "overdue": m["overdue"] or 0,
            "asking_completed": asking_done.get(m["id"], 0),
        })

    return {
        "generated_at": now.isoformat(),
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
        "teams": teams,
        "members": members,
    }
