"""
Asking Tasks Blueprint.

Endpoints:
    GET   /asking-tasks                 — visible asking tasks (?order_id, ?stage, ?flagged)
    GET   /asking-tasks/<id>            — with stage history
    POST  /asking-tasks/<id>/stage      — append a stage update
    PATCH /asking-tasks/<id>/flag
    PATCH /asking-tasks/<id>/notes
    PATCH /asking-tasks/<id>/complete
"""

from flask import Blueprint, jsonify, request

from orderhub.auth import current_caller
from orderhub.blueprints import bool_arg, json_body
from orderhub.services import asking_task_service

asking_task_bp = Blueprint("asking_tasks", __name__, url_prefix="/api/v1/asking-tasks")


@asking_task_bp.route("", methods=["GET"])
def list_asking_tasks():
    items = asking_task_service.list_asking_tasks(
        current_caller(),
        order_id=request.args.get("order_id", type=int),
        stage=request.args.get("stage"),
        flagged=bool_arg("flagged"),
    )
    return jsonify({"items": [a.to_dict() for a in items], "total": len(items)})


@asking_task_bp.route("/<int:asking_task_id>", methods=["GET"])
def get_asking_task(asking_task_id):
    at = asking_task_service.get_asking_task(current_caller(), asking_task_id)
    return jsonify(at.to_dict(include_stages=True))


@asking_task_bp.route("/<int:asking_task_id>/stage", methods=["POST"])
def update_stage(asking_task_id):
    entry = asking_task_service.update_stage(current_caller(), asking_task_id, json_body())
    return jsonify({
        "stage": entry.to_dict(),
        "asking_task": entry.asking_task.to_dict(),
    }), 201


@asking_task_bp.route("/<int:asking_task_id>/flag", methods=["PATCH"])
def set_flag(asking_task_id):
    data = json_body()
    at = asking_task_service.set_flag(current_caller(), asking_task_id, data.get("is_flagged", True))
    return jsonify(at.to_dict())


@asking_task_bp.route("/<int:asking_task_id>/notes", methods=["PATCH"])
def update_notes(asking_task_id):
    data = json_body()
    at = asking_task_service.update_notes(current_caller(), asking_task_id, data.get("notes"))
    return jsonify(at.to_dict())


@asking_task_bp.route("/<int:asking_task_id>/complete", methods=["PATCH"])
def complete(asking_task_id):
    at = asking_task_service.complete_asking_task(current_caller(), asking_task_id)
    return jsonify(at.to_dict())
