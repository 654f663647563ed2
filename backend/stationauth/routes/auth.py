# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Self-service sign-up (optionally naming the station the user works at)
- Email confirmation (creates the profile)
- Sign-in / sign-out with bearer tokens
- /me: identity, roles, capabilities, profile and approval state
- Requesting station admin access
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, load_session_manager
from ..services import audit_service, profile_service, station_service
from ..services.context import get_services
from ..validation import ValidationError, sanitize_input
from .errors import HANDLED_ERRORS, error_response, json_body


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_payload(manager) -> dict:
    profile = manager.profile
    return {
        "user": {"id": manager.identity.id, "email": manager.identity.email},
        "roles": sorted(role.value for role in manager.roles),
        "capabilities": manager.resolver.capabilities(),
        "station_ids": sorted(manager.resolver.station_ids),
        "profile": profile.to_dict() if profile else None,
        "pending_approval": manager.roles_loaded and not manager.roles,
    }


@auth_bp.post("/signup")
def signup_route():
    """
    Create an identity with no roles.

    Request body:
    - email, password: str (required)
    - full_name, username: str (optional)
    - station_id + station_name: str (optional, must match an existing station)

    The account stays pending approval until an administrator assigns a role.
    """
    try:
        data = json_body()
        email = data.get("email")
        password = data.get("password")
        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        metadata = {
            "full_name": sanitize_input(data.get("full_name"), max_length=255),
            "username": sanitize_input(data.get("username"), max_length=255),
        }
        if data.get("station_id") or data.get("station_name"):
            station = station_service.validate_station(data.get("station_id"), data.get("station_name"))
            metadata["station_id"] = station.id
            metadata["station_name"] = station.name

        manager = load_session_manager()
        result = manager.sign_up(email, password, {k: v for k, v in metadata.items() if v})
        if not result.ok:
            return jsonify({"error": result.error}), 400

        body = {
            "user": {"id": result.identity.id, "email": result.identity.email},
            "confirmation_required": result.session is None,
        }
        if result.session is not None:
            body["token"] = result.session.access_token
            body["session"] = result.session.to_dict()
            body.update(_session_payload(manager))
        elif current_app.debug or current_app.testing:
            # Email delivery is external; dev and test builds hand the token back
            body["confirmation_token"] = result.confirmation_token
        return jsonify(body), 201

    except ValidationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sign up user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/confirm")
def confirm_route():
    """Confirm an email address and create the account's profile."""
    try:
        data = json_body()
        provider = get_services().provider
        result = provider.confirm_email(data.get("token"))
        if not result.ok:
            return jsonify({"error": result.error}), 400

        identity = provider.get_identity(result.identity.id)
        profile = profile_service.ensure_profile(identity)
        return jsonify({
            "user": {"id": identity.id, "email": identity.email},
            "profile": profile.to_dict(),
            "message": "Email confirmed",
        }), 200

    except ValidationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm email")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    Token must be included in Authorization header for protected routes.
    A successful login with no roles still succeeds; the response says the
    account is pending approval.
    """
    try:
        data = json_body()
        email = data.get("email")
        password = data.get("password")
        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        manager = load_session_manager()
        result = manager.sign_in(email, password)
        if not result.ok:
            audit_service.log_security_event(
                user_id=result.identity.id if result.identity else None,
                event_type="SIGN_IN_FAILED",
                success=False,
                resource=request.path,
                reason=result.error,
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
            )
            return jsonify({"error": result.error}), 401

        body = _session_payload(manager)
        body.update({
            "token": result.session.access_token,
            "session": result.session.to_dict(),
            "message": "Login successful",
        })
        return jsonify(body), 200

    except ValidationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    user_id = g.current_user_id
    g.session_manager.sign_out()
    audit_service.log_security_event(
        user_id=user_id,
        event_type="SIGN_OUT",
        success=True,
        resource=request.path,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify(_session_payload(g.session_manager)), 200


@auth_bp.post("/station-admin-request")
@require_auth
def request_station_admin_route():
    """
    Ask to become station admin of a station.

    Creates an uncountersigned station_admin grant; a super admin must
    countersign it before it has any effect.
    """
    try:
        data = json_body()
        grant = get_services().workflow.request_station_admin(g.current_user_id, data.get("station_id"))
        return jsonify({"grant": grant.to_dict()}), 201
    except HANDLED_ERRORS as e:
        return error_response(e)
