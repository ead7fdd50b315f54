# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import ValidationError
from .services import permission_service


ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_EMAIL_HEADER = "X-Actor-Email"
ACTOR_NAME_HEADER = "X-Actor-Name"
ACTOR_ROLES_HEADER = "X-Actor-Roles"


def _is_authenticated() -> bool:
    return hasattr(g, 'actor')


def require_auth(f):
    """
    Require an externally authenticated actor.

    Identity is issued upstream (gateway / identity provider) and forwarded
    in trusted headers; this service performs no authentication of its own.
    Sets g.actor (permission_service.Actor).

    SECURITY: Returns 401 if:
    - X-Actor-Id is missing
    - X-Actor-Roles is missing or empty
    - X-Actor-Roles names an unknown role
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = (request.headers.get(ACTOR_ID_HEADER) or "").strip()
        roles_header = request.headers.get(ACTOR_ROLES_HEADER) or ""
        roles = [r for r in roles_header.split(",") if r.strip()]

        if not user_id or not roles:
            return jsonify({"error": "Authentication required"}), 401

        try:
            g.actor = permission_service.make_actor(
                user_id=user_id,
                email=(request.headers.get(ACTOR_EMAIL_HEADER) or "").strip() or None,
                name=(request.headers.get(ACTOR_NAME_HEADER) or "").strip() or None,
                roles=roles,
            )
        except ValidationError as e:
            return jsonify({"error": "Invalid actor", "message": str(e)}), 401

        return f(*args, **kwargs)

    return decorated_function


def require_permission(resource: str, action: str):
    """
    Require a (resource, action) capability for any of the actor's roles.

    Denials are logged by permission_service.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(g.actor, resource, action)
            except permission_service.PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": f"{resource}:{action}",
                    "message": str(e)
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
