"""
OrderHub
Caller identity & authentication gate.

Provides:
    - Caller: immutable identity value passed explicitly into every service
    - init_auth: before_request hook that turns the verified JWT subject
      into ``g.caller`` and rejects anonymous API calls with 401
    - current_caller: read ``g.caller`` in a view (raises UnauthorizedError)
    - require_role: view decorator for role-gated admin endpoints

Services never read ``g``; blueprints call ``current_caller()`` and hand
the result down.
"""

import functools
import logging
from dataclasses import dataclass

from flask import g, jsonify, request

from orderhub.core.exceptions import ForbiddenError, UnauthorizedError
from orderhub.models import db
from orderhub.models.auth import Role, User

logger = logging.getLogger(__name__)

# Paths reachable without a caller identity
PUBLIC_PREFIXES = ("/api/v1/health",)


@dataclass(frozen=True)
class Caller:
    user_id: int
    role: str
    email: str = ""
    display_name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Caller":
        return cls(
            user_id=user.id,
            role=user.role,
            email=user.email,
            display_name=user.display_name,
        )

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "email": self.email,
            "display_name": self.display_name,
        }


def current_caller() -> Caller:
    caller = getattr(g, "caller", None)
    if caller is None:
        raise UnauthorizedError()
    return caller


def require_role(*roles: str):
    """
    Decorator: restrict a view to the given roles.

    Usage:
        @admin_bp.route("/users", methods=["POST"])
        @require_role(Role.ADMIN)
        def create_user(): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            caller = current_caller()
            if caller.role not in roles:
                raise ForbiddenError(request.endpoint or request.path, caller.role)
            return f(*args, **kwargs)
        return decorated
    return decorator


def _check_content_type():
    """Mutating requests with a body must send JSON (lightweight CSRF guard)."""
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


def init_auth(app):
    """
    Install the authentication gate on the Flask app.

    Must be registered after ``init_jwt_middleware`` so ``g.jwt_user_id``
    is already populated.
    """
    @app.before_request
    def _before_request_auth():
        g.caller = None
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith(PUBLIC_PREFIXES):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        user_id = getattr(g, "jwt_user_id", None)
        if user_id is None:
            return jsonify({
                "error": "Authentication required. Provide a Bearer token.",
                "code": "ERR_UNAUTHORIZED",
            }), 401

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            logger.warning("Token for unknown or inactive user %s on %s", user_id, request.path)
            return jsonify({"error": "User is not active", "code": "ERR_UNAUTHORIZED"}), 401

        g.caller = Caller.from_user(user)
        return None
