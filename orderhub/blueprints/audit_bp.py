"""
Audit trail blueprint (ADMIN only).

Endpoints:
    GET  /api/v1/audit               — list / filter audit logs
    GET  /api/v1/audit/<int:log_id>  — single audit entry
"""

from flask import Blueprint, jsonify, request

from orderhub.auth import require_role
from orderhub.models.audit import AuditLog
from orderhub.models.auth import Role
from orderhub.utils.helpers import get_or_raise

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


@audit_bp.route("/audit", methods=["GET"])
@require_role(Role.ADMIN)
def list_audit_logs():
    """
    Return paginated audit logs with optional filters.

    Query params:
        entity_type   — filter by entity type
        entity_id     — filter by entity PK
        action        — filter by action string (prefix match)
        performed_by  — filter by acting user id
        page          — page number (default 1)
        per_page      — items per page (default 50, max 200)
    """
    q = AuditLog.query

    entity_type = request.args.get("entity_type")
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)

    entity_id = request.args.get("entity_id")
    if entity_id:
        q = q.filter(AuditLog.entity_id == entity_id)

    action = request.args.get("action")
    if action:
        q = q.filter(AuditLog.action.startswith(action))

    performed_by = request.args.get("performed_by", type=int)
    if performed_by is not None:
        q = q.filter(AuditLog.performed_by_id == performed_by)

    q = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())

    page = max(1, request.args.get("page", 1, type=int))
    per_page = min(200, max(1, request.args.get("per_page", 50, type=int)))

    paginated = q.paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        "audit_logs": [log.to_dict() for log in paginated.items],
        "total": paginated.total,
        "page": paginated.page,
        "per_page": paginated.per_page,
        "pages": paginated.pages,
    })


@audit_bp.route("/audit/<int:log_id>", methods=["GET"])
@require_role(Role.ADMIN)
def get_audit_log(log_id):
    return jsonify(get_or_raise(AuditLog, log_id, "AuditLog").to_dict())
