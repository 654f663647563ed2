# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

"""
Admin routes for users, role grants and station-admin countersignature.

Role grants:
- super_admin manages every grant
- station_admin manages admin/technician/front_desk inside their stations

Changing someone else's roles never changes the caller's own session.
"""

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..models import Identity, Profile, RoleGrant
from ..roles import Role
from ..decorators import require_auth, require_roles, require_capability
from ..services import audit_service
from ..services.context import get_services
from ..validation import ValidationError
from .errors import HANDLED_ERRORS, error_response, json_body


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _user_dict(identity: Identity, profile: Profile | None) -> dict:
    user_dict = identity.to_dict()
    user_dict["profile"] = profile.to_dict() if profile else None
    grants = get_services().workflow.list_user_grants(identity.id)
    user_dict["grants"] = [grant.to_dict() for grant in grants]
    user_dict["roles"] = sorted({grant.role for grant in grants if grant.is_effective})
    return user_dict


def _placed_in(user_id: str, station_ids: frozenset[str]) -> bool:
    """True if the user has a profile or any grant in one of station_ids."""
    if not station_ids:
        return False
    profile = db.session.get(Profile, user_id)
    if profile and profile.station_id in station_ids:
        return True
    grant = (
        db.session.query(RoleGrant.id)
        .filter(RoleGrant.user_id == user_id, RoleGrant.station_id.in_(station_ids))
        .first()
    )
    return grant is not None


# =============================================================================
# USER MANAGEMENT
# =============================================================================

@admin_bp.get("/users")
@require_auth
@require_capability("can_manage_users")
def list_users():
    """
    List users with their grants.

    Query params:
    - station_id: str - only users placed in that station

    Station admins only see their own stations' users and must pass one
    of them as station_id.
    """
    station_id = request.args.get("station_id")
    is_super_admin = g.session_manager.resolver.is_super_admin()
    administered = g.session_manager.resolver.stations_for(Role.STATION_ADMIN)

    if not is_super_admin and (not station_id or station_id not in administered):
        return jsonify({"error": "station_id of a station you administer is required"}), 403

    query = db.session.query(Identity, Profile).outerjoin(Profile, Profile.id == Identity.id)
    if station_id:
        query = query.filter(Profile.station_id == station_id)

    result = [_user_dict(identity, profile) for identity, profile in query.order_by(Identity.email).all()]
    return jsonify({"users": result, "count": len(result)})


@admin_bp.get("/users/pending")
@require_auth
@require_roles("super_admin")
def list_pending_users():
    """Identities with no effective grant (the pending-approval queue)."""
    result = []
    for identity in db.session.query(Identity).order_by(Identity.created_at.asc()).all():
        grants = get_services().workflow.list_user_grants(identity.id)
        if not any(grant.is_effective for grant in grants):
            result.append(_user_dict(identity, db.session.get(Profile, identity.id)))
    return jsonify({"users": result, "count": len(result)})


@admin_bp.get("/users/<user_id>/roles")
@require_auth
@require_capability("can_manage_users")
def get_user_roles(user_id: str):
    """
    Fresh role set of a user; for the caller this also refreshes their session.

    Station admins only see users placed in a station they administer.
    Anyone else answers 404, the same as an unknown user.
    """
    resolver = g.session_manager.resolver
    if (
        not resolver.is_super_admin()
        and user_id != g.current_user_id
        and not _placed_in(user_id, resolver.stations_for(Role.STATION_ADMIN))
    ):
        return jsonify({"error": "User not found"}), 404

    roles = g.session_manager.fetch_user_roles(user_id)
    grants = get_services().workflow.list_user_grants(user_id)
    return jsonify({
        "user_id": user_id,
        "roles": sorted(role.value for role in roles),
        "grants": [grant.to_dict() for grant in grants],
    })


@admin_bp.post("/users/<user_id>/roles")
@require_auth
@require_capability("can_manage_users")
def assign_role(user_id: str):
    """
    Assign a role.

    Request body:
    - role: str (required)
    - station_id: str (required for every role except super_admin)
    """
    try:
        data = json_body()
        if not data.get("role"):
            raise ValidationError("role required")

        grant = get_services().workflow.assign_role(
            user_id,
            data.get("role"),
            data.get("station_id"),
            assigned_by=g.current_user_id,
        )
        return jsonify({"grant": grant.to_dict(), "message": "Role assigned"}), 201

    except HANDLED_ERRORS as e:
        return error_response(e)


@admin_bp.delete("/roles/<grant_id>")
@require_auth
@require_capability("can_manage_users")
def remove_role(grant_id: str):
    try:
        grant = get_services().workflow.remove_role(grant_id, removed_by=g.current_user_id)
        return jsonify({"grant": grant.to_dict(), "message": "Role removed"}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)


# =============================================================================
# STATION-ADMIN COUNTERSIGNATURE
# =============================================================================

@admin_bp.get("/station-admin-requests")
@require_auth
@require_roles("super_admin")
def list_station_admin_requests():
    requests_ = get_services().workflow.list_pending_station_admin_requests()
    return jsonify({"requests": [grant.to_dict() for grant in requests_], "count": len(requests_)})


@admin_bp.post("/station-admin-requests/<grant_id>/countersign")
@require_auth
@require_roles("super_admin")
def countersign_station_admin(grant_id: str):
    try:
        grant = get_services().workflow.countersign(grant_id, g.current_user_id)
        return jsonify({"grant": grant.to_dict(), "message": "Station admin approved"}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)


@admin_bp.delete("/station-admin-requests/<grant_id>")
@require_auth
@require_roles("super_admin")
def reject_station_admin(grant_id: str):
    try:
        grant = get_services().workflow.reject_station_admin_request(grant_id, g.current_user_id)
        return jsonify({"grant": grant.to_dict(), "message": "Station admin request rejected"}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)


# =============================================================================
# AUDIT
# =============================================================================

@admin_bp.get("/security-events")
@require_auth
@require_roles("super_admin")
def list_security_events():
    """
    Query params:
    - user_id, station_id, event_type: str
    - limit: int (default 100, max 500)
    """
    limit = min(request.args.get("limit", 100, type=int), 500)
    events = audit_service.list_security_events(
        user_id=request.args.get("user_id"),
        station_id=request.args.get("station_id"),
        event_type=request.args.get("event_type"),
        limit=limit,
    )
    return jsonify({"events": [event.to_dict() for event in events], "count": len(events)})
