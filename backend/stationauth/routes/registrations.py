# Overview: Flask API routes for station registration requests.

"""
Station registration

- POST /api/registrations is public: a prospective station applies
- Listing, approval and rejection are super-admin only
- Approval returns the new station admin's one-time password exactly once
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_roles
from ..services.approval_service import WorkflowIntegrityError
from ..services.context import get_services
from .errors import HANDLED_ERRORS, error_response, json_body


registrations_bp = Blueprint("registrations", __name__, url_prefix="/api/registrations")


@registrations_bp.post("")
def submit_registration():
    """
    Request body:
    - company_name, contact_person_name, contact_email: str (required)
    - business_type, contact_phone, address, city, state, zip_code, description: str (optional)
    """
    try:
        registration = get_services().workflow.submit_registration(json_body())
        return jsonify({"registration": registration.to_dict()}), 201
    except HANDLED_ERRORS as e:
        return error_response(e)


@registrations_bp.get("")
@require_auth
@require_roles("super_admin")
def list_registrations():
    try:
        registrations = get_services().workflow.list_registrations(request.args.get("status"))
        return jsonify({
            "registrations": [r.to_dict() for r in registrations],
            "count": len(registrations),
        }), 200
    except HANDLED_ERRORS as e:
        return error_response(e)


@registrations_bp.post("/<request_id>/approve")
@require_auth
@require_roles("super_admin")
def approve_registration(request_id: str):
    try:
        result = get_services().workflow.approve_registration(request_id, g.current_user_id)
        body = result.to_dict()
        body["message"] = "Station registration approved"
        return jsonify(body), 200
    except HANDLED_ERRORS as e:
        if isinstance(e, WorkflowIntegrityError):
            current_app.logger.error("Registration approval failed for %s: %s", request_id, e)
        return error_response(e)


@registrations_bp.post("/<request_id>/reject")
@require_auth
@require_roles("super_admin")
def reject_registration(request_id: str):
    """Request body: reason (required)."""
    try:
        data = json_body()
        registration = get_services().workflow.reject_registration(
            request_id,
            g.current_user_id,
            data.get("reason"),
        )
        return jsonify({"registration": registration.to_dict(), "message": "Registration rejected"}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
