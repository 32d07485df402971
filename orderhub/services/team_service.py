"""
Teams & Users — Service Layer (ADMIN only).

    Users:        create / update / activate-deactivate / list
    Teams:        create / update (leader change) / activate-deactivate / list
    Memberships:  add (reactivates a soft-deleted row) / remove (soft delete)
"""

import logging

from sqlalchemy import select

from orderhub.core.exceptions import ConflictError, DuplicateError, NotFoundError, ValidationError
from orderhub.models import db
from orderhub.models.audit import snapshot, write_audit
from orderhub.models.auth import Role, User
from orderhub.models.team import Team, TeamMember
from orderhub.services.permission import can_administer, check
from orderhub.utils.helpers import as_bool, get_or_raise, require_fields, utcnow, validate_email

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Users
# ═════════════════════════════════════════════════════════════════════════════


def _validate_role(role):
    if role not in Role.ALL:
        raise ValidationError(f"role must be one of {sorted(Role.ALL)}", details={"role": "invalid"})
    return role


def list_users(*, role: str | None = None, include_inactive: bool = True) -> list[User]:
    stmt = select(User).order_by(User.display_name)
    if role:
        stmt = stmt.where(User.role == _validate_role(role))
    if not include_inactive:
        stmt = stmt.where(User.is_active.is_(True))
    return list(db.session.execute(stmt).scalars())


def create_user(caller, data: dict) -> User:
    check(can_administer(caller.role), "user.create", caller)
    require_fields(data, "email", "display_name")
    email = validate_email(str(data["email"]).strip().lower())
    role = _validate_role(data.get("role") or Role.MEMBER)
    if db.session.execute(select(User.id).where(User.email == email)).first() is not None:
        raise DuplicateError("User", "email", email)

    user = User(email=email, display_name=str(data["display_name"]).strip(), role=role)
    db.session.add(user)
    db.session.flush()
    write_audit(
        entity_type="user", entity_id=user.id, action="user.create",
        performed_by_id=caller.user_id, new_value=snapshot("user", user),
    )
    db.session.commit()
    logger.info("User %s created with role %s", user.email, user.role)
    return user


def update_user(caller, user_id, data: dict) -> User:
    check(can_administer(caller.role), "user.update", caller)
    user = get_or_raise(User, user_id, "User")
    old = snapshot("user", user)
    if "role" in data:
        user.role = _validate_role(data["role"])
    if "display_name" in data:
        if not data["display_name"] or not str(data["display_name"]).strip():
            raise ValidationError("display_name is required", details={"display_name": "required"})
        user.display_name = str(data["display_name"]).strip()
    write_audit(
        entity_type="user", entity_id=user.id, action="user.update",
        performed_by_id=caller.user_id, old_value=old, new_value=snapshot("user", user),
    )
    db.session.commit()
    return user


def set_user_active(caller, user_id, active) -> User:
    check(can_administer(caller.role), "user.set_active", caller)
    user = get_or_raise(User, user_id, "User")
    if user.id == caller.user_id and not as_bool(active):
        raise ValidationError("You cannot deactivate yourself", details={"user_id": "self"})
    old = {"is_active": user.is_active}
    user.is_active = as_bool(active)
    write_audit(
        entity_type="user", entity_id=user.id,
        action="user.activate" if user.is_active else "user.deactivate",
        performed_by_id=caller.user_id, old_value=old, new_value={"is_active": user.is_active},
    )
    db.session.commit()
    return user


# ═════════════════════════════════════════════════════════════════════════════
# Teams
# ═════════════════════════════════════════════════════════════════════════════


def list_teams(*, include_inactive: bool = False) -> list[Team]:
    stmt = select(Team).order_by(Team.name)
    if not include_inactive:
        stmt = stmt.where(Team.is_active.is_(True))
    return list(db.session.execute(stmt).scalars())


def get_team(team_id) -> Team:
    return get_or_raise(Team, team_id, "Team")


def _validate_leader(leader_id):
    if leader_id is None:
        return None
    leader = db.session.get(User, leader_id)
    if leader is None:
        raise NotFoundError("User", leader_id)
    if not leader.is_active:
        raise ValidationError("Team leader must be an active user", details={"leader_id": "inactive"})
    return leader.id


def create_team(caller, data: dict) -> Team:
    check(can_administer(caller.role), "team.create", caller)
    require_fields(data, "name")
    name = str(data["name"]).strip()
    if db.session.execute(select(Team.id).where(Team.name == name)).first() is not None:
        raise DuplicateError("Team", "name", name)

    team = Team(
        name=name,
        description=data.get("description", ""),
        leader_id=_validate_leader(data.get("leader_id")),
    )
    db.session.add(team)
    db.session.flush()
    write_audit(
        entity_type="team", entity_id=team.id, action="team.create",
        performed_by_id=caller.user_id, new_value=snapshot("team", team),
    )
    db.session.commit()
    return team


def update_team(caller, team_id, data: dict) -> Team:
    check(can_administer(caller.role), "team.update", caller)
    team = get_team(team_id)
    old = snapshot("team", team)
    if "name" in data:
        name = str(data["name"] or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        clash = db.session.execute(
            select(Team.id).where(Team.name == name, Team.id != team.id)
        ).first()
        if clash is not None:
            raise DuplicateError("Team", "name", name)
        team.name = name
    if "description" in data:
        team.description = data["description"] or ""
    if "leader_id" in data:
        team.leader_id = _validate_leader(data["leader_id"])
    write_audit(
        entity_type="team", entity_id=team.id, action="team.update",
        performed_by_id=caller.user_id, old_value=old, new_value=snapshot("team", team),
    )
    db.session.commit()
    return team


def set_team_active(caller, team_id, active) -> Team:
    check(can_administer(caller.role), "team.set_active", caller)
    team = get_team(team_id)
    old = {"is_active": team.is_active}
    team.is_active = as_bool(active)
    write_audit(
        entity_type="team", entity_id=team.id,
        action="team.activate" if team.is_active else "team.deactivate",
        performed_by_id=caller.user_id, old_value=old, new_value={"is_active": team.is_active},
    )
    db.session.commit()
    return team


# ── Memberships ──────────────────────────────────────────────────────────────


def add_member(caller, team_id, user_id) -> TeamMember:
    """
    Add *user_id* to the team. A previously removed membership is
    reactivated; an already active one raises ConflictError.
    """
    check(can_administer(caller.role), "team_member.add", caller)
    if user_id is None:
        raise ValidationError("user_id is required", details={"user_id": "required"})
    team = get_team(team_id)
    user = get_or_raise(User, user_id, "User")
    if not user.is_active:
        raise ValidationError("User is not active", details={"user_id": "inactive"})

    membership = db.session.execute(
        select(TeamMember).where(TeamMember.team_id == team.id, TeamMember.user_id == user.id)
    ).scalar_one_or_none()
    if membership is not None and membership.is_active:
        raise ConflictError("User is already a member of this team",
                            details={"membership_id": membership.id})

    if membership is not None:
        membership.is_active = True
        membership.joined_at = utcnow()
        action = "team_member.reactivate"
    else:
        membership = TeamMember(team_id=team.id, user_id=user.id)
        db.session.add(membership)
        action = "team_member.add"
    db.session.flush()
    write_audit(
        entity_type="team_member", entity_id=membership.id, action=action,
        performed_by_id=caller.user_id,
        old_value={"is_active": False} if action == "team_member.reactivate" else None,
        new_value=snapshot("team_member", membership),
    )
    db.session.commit()
    return membership


def remove_member(caller, team_id, membership_id) -> TeamMember:
    check(can_administer(caller.role), "team_member.remove", caller)
    membership = db.session.get(TeamMember, membership_id)
    if membership is None or membership.team_id != int(team_id):
        raise NotFoundError("TeamMember", membership_id)
    if not membership.is_active:
        raise ConflictError("Membership is already inactive",
                            details={"membership_id": membership.id})
    membership.is_active = False
    write_audit(
        entity_type="team_member", entity_id=membership.id, action="team_member.remove",
        performed_by_id=caller.user_id,
        old_value={"is_active": True}, new_value={"is_active": False},
    )
    db.session.commit()
    return membership
