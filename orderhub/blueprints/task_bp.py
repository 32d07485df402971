"""
Tasks Blueprint — assignment and progress tracking.

Endpoints:
  Leader:    POST   /tasks/<id>/assign
             PATCH  /tasks/<id>/reassign
             DELETE /tasks/<id>/discard
  Assignee:  POST   /tasks/<id>/start
             POST   /tasks/<id>/pause     (toggles IN_PROGRESS ⇄ PAUSED)
             POST   /tasks/<id>/resume
             PATCH  /tasks/<id>/complete
  Views:     GET    /tasks/<id>, /tasks/mine, /tasks/team
"""

from flask import Blueprint, jsonify, request

from orderhub.auth import current_caller
from orderhub.blueprints import json_body
from orderhub.services import task_service

task_bp = Blueprint("tasks", __name__, url_prefix="/api/v1/tasks")


@task_bp.route("/mine", methods=["GET"])
def my_tasks():
    tasks = task_service.list_my_tasks(current_caller(), status=request.args.get("status"))
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)})


@task_bp.route("/team", methods=["GET"])
def team_tasks():
    tasks = task_service.list_team_tasks(
        current_caller(),
        team_id=request.args.get("team_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)})


@task_bp.route("/<int:task_id>", methods=["GET"])
def get_task(task_id):
    current_caller()
    return jsonify(task_service.get_task(task_id).to_dict())


# ── Leader actions ───────────────────────────────────────────────────────────

@task_bp.route("/<int:task_id>/assign", methods=["POST"])
def assign_task(task_id):
    data = json_body()
    task = task_service.assign_task(
        current_caller(), task_id,
        assigned_to=data.get("assigned_to"),
        deadline=data.get("deadline"),
        priority=data.get("priority"),
    )
    return jsonify(task.to_dict())


@task_bp.route("/<int:task_id>/reassign", methods=["PATCH"])
def reassign_task(task_id):
    data = json_body()
    task = task_service.reassign_task(
        current_caller(), task_id,
        assigned_to=data.get("assigned_to"),
        deadline=data.get("deadline"),
        priority=data.get("priority"),
    )
    return jsonify(task.to_dict())


@task_bp.route("/<int:task_id>/discard", methods=["DELETE"])
def discard_task(task_id):
    data = json_body()
    task = task_service.discard_task(current_caller(), task_id, reason=data.get("notes"))
    return jsonify(task.to_dict())


# ── Assignee actions ─────────────────────────────────────────────────────────

@task_bp.route("/<int:task_id>/start", methods=["POST"])
def start_task(task_id):
    return jsonify(task_service.start_task(current_caller(), task_id).to_dict())


@task_bp.route("/<int:task_id>/pause", methods=["POST"])
def pause_task(task_id):
    return jsonify(task_service.toggle_pause(current_caller(), task_id).to_dict())


@task_bp.route("/<int:task_id>/resume", methods=["POST"])
def resume_task(task_id):
    return jsonify(task_service.resume_task(current_caller(), task_id).to_dict())


@task_bp.route("/<int:task_id>/complete", methods=["PATCH"])
def complete_task(task_id):
    data = json_body()
    task = task_service.complete_task(
        current_caller(), task_id, notes=data.get("completion_notes") or data.get("notes"),
    )
    return jsonify({
        "message": "Task completed",
        "task": task.to_dict(),
        "time_spent": task_service.time_spent(task),
    })
