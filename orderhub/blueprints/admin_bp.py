"""
Admin Blueprint — catalog, teams, users and statistics (ADMIN only).

Endpoints:
  Services:     GET/POST /admin/services, GET/PATCH /admin/services/<id>
                PATCH /admin/services/<id>/active
  Order types:  GET/POST /admin/order-types, GET/PATCH /admin/order-types/<id>
                PATCH /admin/order-types/<id>/active
  Teams:        GET/POST /admin/teams, GET/PATCH /admin/teams/<id>
                PATCH /admin/teams/<id>/active
                GET/POST /admin/teams/<id>/members
                DELETE /admin/teams/<id>/members/<membership_id>
  Users:        GET/POST /admin/users, PATCH /admin/users/<id>
                PATCH /admin/users/<id>/active
  Statistics:   GET /admin/statistics/tasks?start=&end=
"""

from flask import Blueprint, jsonify, request

from orderhub.auth import current_caller, require_role
from orderhub.blueprints import bool_arg, json_body
from orderhub.models.auth import Role
from orderhub.services import catalog_service, statistics_service, team_service

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")


@admin_bp.before_request
@require_role(Role.ADMIN)
def _admin_only():
    return None


# ═════════════════════════════════════════════════════════════════════════════
# Services
# ═════════════════════════════════════════════════════════════════════════════

@admin_bp.route("/services", methods=["GET"])
def list_services():
    items = catalog_service.list_services(
        include_inactive=bool_arg("include_inactive") or False,
        team_id=request.args.get("team_id", type=int),
    )
    return jsonify({"items": [s.to_dict() for s in items], "total": len(items)})


@admin_bp.route("/services", methods=["POST"])
def create_service():
    svc = catalog_service.create_service(current_caller(), json_body())
    return jsonify(svc.to_dict()), 201


@admin_bp.route("/services/<int:service_id>", methods=["GET"])
def get_service(service_id):
    return jsonify(catalog_service.get_service(service_id).to_dict())


@admin_bp.route("/services/<int:service_id>", methods=["PATCH"])
def update_service(service_id):
    svc = catalog_service.update_service(current_caller(), service_id, json_body())
    return jsonify(svc.to_dict())


@admin_bp.route("/services/<int:service_id>/active", methods=["PATCH"])
def set_service_active(service_id):
    data = json_body()
    svc = catalog_service.set_service_active(current_caller(), service_id, data.get("is_active", True))
    return jsonify(svc.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Order types
# ═════════════════════════════════════════════════════════════════════════════

@admin_bp.route("/order-types", methods=["GET"])
def list_order_types():
    items = catalog_service.list_order_types(include_inactive=bool_arg("include_inactive") or False)
    return jsonify({"items": [o.to_dict() for o in items], "total": len(items)})


@admin_bp.route("/order-types", methods=["POST"])
def create_order_type():
    ot = catalog_service.create_order_type(current_caller(), json_body())
    return jsonify(ot.to_dict()), 201


@admin_bp.route("/order-types/<int:order_type_id>", methods=["GET"])
def get_order_type(order_type_id):
    return jsonify(catalog_service.get_order_type(order_type_id).to_dict())


@admin_bp.route("/order-types/<int:order_type_id>", methods=["PATCH"])
def update_order_type(order_type_id):
    ot = catalog_service.update_order_type(current_caller(), order_type_id, json_body())
    return jsonify(ot.to_dict())


@admin_bp.route("/order-types/<int:order_type_id>/active", methods=["PATCH"])
def set_order_type_active(order_type_id):
    data = json_body()
    ot = catalog_service.set_order_type_active(
        current_caller(), order_type_id, data.get("is_active", True),
    )
    return jsonify(ot.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Teams & memberships
# ═════════════════════════════════════════════════════════════════════════════

@admin_bp.route("/teams", methods=["GET"])
def list_teams():
    items = team_service.list_teams(include_inactive=bool_arg("include_inactive") or False)
    return jsonify({"items": [t.to_dict() for t in items], "total": len(items)})


@admin_bp.route("/teams", methods=["POST"])
def create_team():
    team = team_service.create_team(current_caller(), json_body())
    return jsonify(team.to_dict()), 201


@admin_bp.route("/teams/<int:team_id>", methods=["GET"])
def get_team(team_id):
    return jsonify(team_service.get_team(team_id).to_dict(include_members=True))


@admin_bp.route("/teams/<int:team_id>", methods=["PATCH"])
def update_team(team_id):
    team = team_service.update_team(current_caller(), team_id, json_body())
    return jsonify(team.to_dict())


@admin_bp.route("/teams/<int:team_id>/active", methods=["PATCH"])
def set_team_active(team_id):
    data = json_body()
    team = team_service.set_team_active(current_caller(), team_id, data.get("is_active", True))
    return jsonify(team.to_dict())


@admin_bp.route("/teams/<int:team_id>/members", methods=["GET"])
def list_members(team_id):
    team = team_service.get_team(team_id)
    members = [m.to_dict() for m in team.members.filter_by(is_active=True)]
    return jsonify({"items": members, "total": len(members)})


@admin_bp.route("/teams/<int:team_id>/members", methods=["POST"])
def add_member(team_id):
    data = json_body()
    membership = team_service.add_member(current_caller(), team_id, data.get("user_id"))
    return jsonify(membership.to_dict()), 201


@admin_bp.route("/teams/<int:team_id>/members/<int:membership_id>", methods=["DELETE"])
def remove_member(team_id, membership_id):
    membership = team_service.remove_member(current_caller(), team_id, membership_id)
    return jsonify(membership.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Users
# ═════════════════════════════════════════════════════════════════════════════

@admin_bp.route("/users", methods=["GET"])
def list_users():
    include_inactive = bool_arg("include_inactive")
    items = team_service.list_users(
        role=request.args.get("role"),
        include_inactive=True if include_inactive is None else include_inactive,
    )
    return jsonify({"items": [u.to_dict() for u in items], "total": len(items)})


@admin_bp.route("/users", methods=["POST"])
def create_user():
    user = team_service.create_user(current_caller(), json_body())
    return jsonify(user.to_dict()), 201


@admin_bp.route("/users/<int:user_id>", methods=["PATCH"])
def update_user(user_id):
    user = team_service.update_user(current_caller(), user_id, json_body())
    return jsonify(user.to_dict())


@admin_bp.route("/users/<int:user_id>/active", methods=["PATCH"])
def set_user_active(user_id):
    data = json_body()
    user = team_service.set_user_active(current_caller(), user_id, data.get("is_active", True))
    return jsonify(user.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Statistics
# ═════════════════════════════════════════════════════════════════════════════

@admin_bp.route("/statistics/tasks", methods=["GET"])
def task_statistics():
    return jsonify(statistics_service.task_statistics(
        request.args.get("start"), request.args.get("end"),
    ))
