"""
Orders Blueprint — intake, lifecycle and revisions.

Endpoints:
  Order:      GET/POST /orders, GET/PATCH/DELETE /orders/<id>
  Lifecycle:  PATCH /orders/<id>/folder-link
              PATCH /orders/<id>/verify
              POST  /orders/<id>/deliver
              PATCH /orders/<id>/extend-delivery
              GET   /orders/<id>/completion
              POST  /orders/<id>/custom-task
  Services:   GET/PATCH /orders/<id>/services
  Revision:   POST  /orders/<id>/convert-to-revision
              POST  /orders/<id>/complete-revision
              POST  /orders/<id>/revision-tasks
              GET   /orders/<id>/revisions
"""

import logging

from flask import Blueprint, jsonify, request

from orderhub.auth import current_caller
from orderhub.blueprints import bool_arg, json_body, paginate_query
from orderhub.models.order import Order
from orderhub.services import order_service, revision_service

logger = logging.getLogger(__name__)

order_bp = Blueprint("orders", __name__, url_prefix="/api/v1/orders")


# ═════════════════════════════════════════════════════════════════════════════
# Order CRUD
# ═════════════════════════════════════════════════════════════════════════════

@order_bp.route("", methods=["GET"])
def list_orders():
    """List orders (newest first) with status, type, revision, folder-link and search filters."""
    current_caller()
    q = order_service.list_orders_query(
        status=request.args.get("status"),
        order_type_id=request.args.get("order_type_id", type=int),
        is_revision=bool_arg("is_revision"),
        has_folder_link=bool_arg("has_folder_link"),
        search=request.args.get("q"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [o.to_dict() for o in items], "total": total})


@order_bp.route("", methods=["POST"])
def create_order():
    """Create an order and fan out its work items."""
    order = order_service.create_order(current_caller(), json_body())
    return jsonify(order.to_dict(include_children=True)), 201


@order_bp.route("/<int:order_id>", methods=["GET"])
def get_order(order_id):
    current_caller()
    order = order_service.get_order(order_id)
    return jsonify(order.to_dict(include_children=True))


@order_bp.route("/<int:order_id>", methods=["PATCH"])
def update_order(order_id):
    order = order_service.update_order(current_caller(), order_id, json_body())
    return jsonify(order.to_dict())


@order_bp.route("/<int:order_id>", methods=["DELETE"])
def delete_order(order_id):
    order_service.delete_order(current_caller(), order_id)
    return jsonify({"deleted": True})


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════

@order_bp.route("/<int:order_id>/folder-link", methods=["PATCH"])
def attach_folder_link(order_id):
    data = json_body()
    order = order_service.attach_folder_link(current_caller(), order_id, data.get("folder_link"))
    return jsonify(order.to_dict(include_children=True))


@order_bp.route("/<int:order_id>/verify", methods=["PATCH"])
def verify_order(order_id):
    order = order_service.verify_order(current_caller(), order_id)
    return jsonify({"message": "Order verified", "order": order.to_dict()})


@order_bp.route("/<int:order_id>/deliver", methods=["POST"])
def deliver_order(order_id):
    data = json_body()
    order = order_service.deliver_order(current_caller(), order_id, notes=data.get("notes"))
    return jsonify({
        "message": "Order delivered",
        "order": order.to_dict(),
        "statistics": order.delivery_stats,
    })


@order_bp.route("/<int:order_id>/extend-delivery", methods=["PATCH"])
def extend_delivery(order_id):
    data = json_body()
    order = order_service.extend_delivery(
        current_caller(), order_id,
        data.get("delivery_date"), data.get("delivery_time"),
    )
    return jsonify(order.to_dict())


@order_bp.route("/<int:order_id>/completion", methods=["GET"])
def completion_stats(order_id):
    current_caller()
    return jsonify(order_service.get_completion_stats(order_id))


@order_bp.route("/<int:order_id>/custom-task", methods=["POST"])
def add_custom_task(order_id):
    task = order_service.add_custom_task(current_caller(), order_id, json_body())
    return jsonify(task.to_dict()), 201


@order_bp.route("/<int:order_id>/services", methods=["GET"])
def get_order_services(order_id):
    return jsonify(order_service.get_order_services(current_caller(), order_id))


@order_bp.route("/<int:order_id>/services", methods=["PATCH"])
def update_order_services(order_id):
    """Replace the order's service set; body: {"service_ids": [...]}."""
    data = json_body()
    order = order_service.update_order_services(current_caller(), order_id, data.get("service_ids"))
    return jsonify(order.to_dict(include_children=True))


# ═════════════════════════════════════════════════════════════════════════════
# Revisions
# ═════════════════════════════════════════════════════════════════════════════

@order_bp.route("/<int:order_id>/convert-to-revision", methods=["POST"])
def convert_to_revision(order_id):
    revision = revision_service.convert_to_revision(current_caller(), order_id)
    return jsonify(revision.to_dict(include_children=True)), 201


@order_bp.route("/<int:order_id>/complete-revision", methods=["POST"])
def complete_revision(order_id):
    order = revision_service.complete_revision(current_caller(), order_id)
    return jsonify({"message": "Revision completed", "order": order.to_dict()})


@order_bp.route("/<int:order_id>/revision-tasks", methods=["POST"])
def add_revision_task(order_id):
    task = revision_service.add_revision_task(current_caller(), order_id, json_body())
    return jsonify(task.to_dict()), 201


@order_bp.route("/<int:order_id>/revisions", methods=["GET"])
def list_revisions(order_id):
    current_caller()
    origin = order_service.get_order(order_id)
    revisions = origin.revisions.order_by(Order.created_at.desc(), Order.id.desc()).all()
    return jsonify({"items": [r.to_dict() for r in revisions], "total": len(revisions)})
