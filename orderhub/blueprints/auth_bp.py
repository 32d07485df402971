"""
Auth & catalog lookup blueprint.

Endpoints:
    GET /api/v1/auth/me              — the resolved caller, teams led / joined
    GET /api/v1/catalog/order-types  — active order types with their services
"""

from flask import Blueprint, jsonify
from sqlalchemy import select

from orderhub.auth import current_caller
from orderhub.models import db
from orderhub.models.team import Team, TeamMember
from orderhub.services import catalog_service

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1")


@auth_bp.route("/auth/me", methods=["GET"])
def me():
    caller = current_caller()
    led = db.session.execute(
        select(Team.id).where(Team.leader_id == caller.user_id, Team.is_active.is_(True))
    ).scalars().all()
    joined = db.session.execute(
        select(TeamMember.team_id).where(
            TeamMember.user_id == caller.user_id, TeamMember.is_active.is_(True),
        )
    ).scalars().all()
    return jsonify({**caller.to_dict(), "leads_team_ids": led, "member_team_ids": joined})


@auth_bp.route("/catalog/order-types", methods=["GET"])
def catalog_order_types():
    current_caller()
    items = catalog_service.list_order_types()
    return jsonify({"items": [o.to_dict() for o in items], "total": len(items)})
