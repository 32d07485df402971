"""
Role capability table.

Every role check in the service layer goes through one of the ``can_*``
predicates below, and ``check`` turns a failed predicate into a
ForbiddenError. Ownership facts (is the caller a team leader, the owning
team's leader, the assignee) are looked up by the services and passed in.

Usage:
    from orderhub.services.permission import can_deliver_order, check

    check(can_deliver_order(caller.role), "order.deliver", caller)
"""

from sqlalchemy import select

from orderhub.core.exceptions import ForbiddenError
from orderhub.models import db
from orderhub.models.auth import Role
from orderhub.models.team import Team, TeamMember


# ── Capability table ─────────────────────────────────────────────────────────
# capability → roles granted unconditionally

CAPABILITIES = {
    "order.create":          {Role.ADMIN, Role.ORDER_CREATOR},
    "order.modify":          {Role.ADMIN, Role.ORDER_CREATOR},
    "order.verify":          {Role.ADMIN, Role.ORDER_CREATOR},
    "order.deliver":         {Role.ADMIN, Role.ORDER_CREATOR},
    "order.delete":          {Role.ADMIN},
    "order.services":        {Role.ADMIN},
    "order.extend_delivery": {Role.ADMIN},
    "order.custom_task":     {Role.ADMIN, Role.ORDER_CREATOR},
    "revision.manage":       {Role.ADMIN, Role.REVISION_MANAGER},
    "task.assign":           {Role.ADMIN},
    "asking_task.view_all":  {Role.ADMIN, Role.ORDER_CREATOR},
    "admin":                 {Role.ADMIN},
}


def has_capability(role: str, capability: str) -> bool:
    return role in CAPABILITIES.get(capability, set())


def can_create_order(role: str) -> bool:
    return has_capability(role, "order.create")


def can_modify_order(role: str) -> bool:
    return has_capability(role, "order.modify")


def can_verify_order(role: str, is_team_leader: bool) -> bool:
    return has_capability(role, "order.verify") or is_team_leader


def can_deliver_order(role: str) -> bool:
    return has_capability(role, "order.deliver")


def can_delete_order(role: str) -> bool:
    return has_capability(role, "order.delete")


def can_edit_order_services(role: str, is_order_creator: bool) -> bool:
    """Admins, or the order creator who placed this order."""
    return has_capability(role, "order.services") or (
        role == Role.ORDER_CREATOR and is_order_creator
    )


def can_manage_revisions(role: str) -> bool:
    return has_capability(role, "revision.manage")


def can_assign_task(role: str, is_owning_team_leader: bool) -> bool:
    return has_capability(role, "task.assign") or is_owning_team_leader


def can_extend_delivery(role: str, is_team_leader: bool) -> bool:
    return has_capability(role, "order.extend_delivery") or is_team_leader


def can_add_custom_task(role: str, leads_team: bool) -> bool:
    return has_capability(role, "order.custom_task") or leads_team


def can_access_asking_task(role: str, is_assignee: bool, in_owning_team: bool) -> bool:
    return has_capability(role, "asking_task.view_all") or is_assignee or in_owning_team


def can_administer(role: str) -> bool:
    return has_capability(role, "admin")


def check(allowed: bool, action: str, caller, reason: str | None = None) -> None:
    """Raise ForbiddenError unless *allowed*."""
    if not allowed:
        raise ForbiddenError(action, caller.role, reason)


# ── Ownership lookups ────────────────────────────────────────────────────────


def is_any_team_leader(user_id: int) -> bool:
    return db.session.execute(
        select(Team.id).where(Team.leader_id == user_id, Team.is_active.is_(True)).limit(1)
    ).first() is not None


def is_team_leader(user_id: int, team_id: int | None) -> bool:
    if team_id is None:
        return False
    return db.session.execute(
        select(Team.id).where(
            Team.id == team_id,
            Team.leader_id == user_id,
            Team.is_active.is_(True),
        )
    ).first() is not None


def is_active_member(user_id: int, team_id: int | None) -> bool:
    if team_id is None:
        return False
    return db.session.execute(
        select(TeamMember.id).where(
            TeamMember.team_id == team_id,
            TeamMember.user_id == user_id,
            TeamMember.is_active.is_(True),
        )
    ).first() is not None
