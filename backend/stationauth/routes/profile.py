# Overview: Flask API routes for the caller's own profile.

from flask import Blueprint, jsonify, g

from ..decorators import require_auth, require_roles
from ..services import profile_service
from .errors import HANDLED_ERRORS, error_response, json_body


profile_bp = Blueprint("profile", __name__, url_prefix="/api/profile")


@profile_bp.get("")
@require_auth
@require_roles()
def get_profile():
    profile = g.session_manager.profile
    return jsonify({"profile": profile.to_dict() if profile else None}), 200


@profile_bp.patch("")
@require_auth
@require_roles()
def update_profile():
    """
    Request body (all optional): username, full_name, avatar_url.
    station_id is rejected; only administrators place users in stations.
    """
    try:
        profile = profile_service.update_own_profile(g.current_user_id, json_body())
        return jsonify({"profile": profile.to_dict()}), 200
    except HANDLED_ERRORS as exc:
        return error_response(exc)
