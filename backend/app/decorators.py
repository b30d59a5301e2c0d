# Overview: Request decorators for device-authenticated API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def require_auth(f):
    """
    Require a device token and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.org_id: The organization ID (tenant context)
    - g.store_id: The branch the device session is bound to
    - g.employee_id: The employee operating the device
    - g.actor_role: The employee's role at issue time
    - g.device_context: The full DeviceContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, revoked or expired token
    - Organization deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()

        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.org_id = context.org_id
        g.store_id = context.store_id
        g.employee_id = context.employee_id
        g.actor_role = context.actor_role
        g.device_context = context

        return f(*args, **kwargs)

    return decorated_function
