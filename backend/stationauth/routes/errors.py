# Overview: Typed service errors -> JSON error responses.

from flask import jsonify, request

from ..services.approval_service import PermissionDeniedError, WorkflowIntegrityError
from ..validation import ConflictError, InvalidTransitionError, NotFoundError, ValidationError


# Checked in order
_STATUS_CODES = (
    (ValidationError, 400),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (WorkflowIntegrityError, 500),
)

HANDLED_ERRORS = tuple(cls for cls, _ in _STATUS_CODES)


def json_body() -> dict:
    """The request's JSON object; an absent body is {}."""
    data = request.get_json() or {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def error_response(exc: Exception):
    for cls, status in _STATUS_CODES:
        if isinstance(exc, cls):
            body = {"error": str(exc)}
            if isinstance(exc, InvalidTransitionError):
                body["invalid_transition"] = True
            return jsonify(body), status
    return jsonify({"error": "Internal server error"}), 500
