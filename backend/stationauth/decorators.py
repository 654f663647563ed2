# Overview: Request authentication and role-gate decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .roles import CAPABILITIES, MatchMode, parse_roles
from .services import audit_service
from .services.context import get_services
from .services.route_guard import GuardState, RouteRequirement


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def load_session_manager(token: str | None = None):
    """Build this request's SessionManager and RouteGuard and store them on g."""
    services = get_services()
    manager = services.session_for(
        token,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    g.session_manager = manager
    g.guard = services.guard_for(manager)
    return manager


def _is_authenticated() -> bool:
    return hasattr(g, "session_manager") and g.session_manager.is_authenticated()


def require_auth(f):
    """
    Require a live session.

    Sets the following Flask g attributes:
    - g.session_manager: this request's SessionManager (roles and profile loaded)
    - g.guard: RouteGuard over that manager
    - g.current_user_id: the signed-in identity id
    - g.station_ids: stations the user holds a scoped role in

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired, idle or revoked token
    - Identity deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        manager = load_session_manager(token)
        if not manager.is_authenticated():
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user_id = manager.identity.id
        g.station_ids = manager.resolver.station_ids
        return f(*args, **kwargs)

    return decorated_function


def _deny(result):
    """Audit and answer a guard result that is not AUTHORIZED."""
    if result.state is GuardState.PENDING_APPROVAL:
        audit_service.log_security_event(
            user_id=g.current_user_id,
            event_type="PENDING_APPROVAL_BLOCKED",
            success=False,
            resource=request.path,
            action=request.method,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({
            "error": "Account pending approval",
            "state": result.state.value,
            "message": result.message,
        }), 403

    if result.state is GuardState.ACCESS_DENIED:
        missing = [r.value for r in result.missing_roles]
        audit_service.log_security_event(
            user_id=g.current_user_id,
            event_type="ACCESS_DENIED",
            success=False,
            resource=request.path,
            action=f"{result.match_mode.value.upper()}_OF:{','.join(r.value for r in result.required_roles)}",
            reason=f"Missing: {', '.join(missing)}",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({
            "error": "Permission denied",
            "state": result.state.value,
            "required_roles": [r.value for r in result.required_roles],
            "missing_roles": missing,
            "message": result.message,
        }), 403

    # LOADING / UNAUTHENTICATED cannot follow require_auth
    return jsonify({"error": "Authentication required", "state": result.state.value}), 401


def require_roles(*role_names, match: MatchMode = MatchMode.ANY):
    """
    Gate a route on the caller's roles, the same way the RouteGuard gates a view.

    With no role names, any approved user (at least one role) passes.
    Must be stacked under @require_auth.
    """
    requirement = RouteRequirement(parse_roles(role_names), match)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            result = g.guard.evaluate(requirement)
            if result.state is not GuardState.AUTHORIZED:
                return _deny(result)

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_capability(name: str):
    """Gate a route on one derived capability (see roles.CAPABILITIES)."""
    if name not in CAPABILITIES:
        raise ValueError(f"Unknown capability: {name}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            result = g.guard.evaluate(RouteRequirement())
            if result.state is not GuardState.AUTHORIZED:
                return _deny(result)

            if not CAPABILITIES[name](g.session_manager.roles):
                audit_service.log_security_event(
                    user_id=g.current_user_id,
                    event_type="ACCESS_DENIED",
                    success=False,
                    resource=request.path,
                    action=name,
                    reason=f"Missing capability: {name}",
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                )
                return jsonify({
                    "error": "Permission denied",
                    "state": GuardState.ACCESS_DENIED.value,
                    "required_capability": name,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
