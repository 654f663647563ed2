# Overview: Flask API routes for stations operations; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request, g

from ..decorators import require_auth, require_roles
from ..services import audit_service, station_service
from .errors import HANDLED_ERRORS, error_response, json_body


stations_bp = Blueprint("stations", __name__, url_prefix="/api/stations")


@stations_bp.get("")
@require_auth
@require_roles()
def list_stations():
    """Super admins see every station; everyone else sees their own."""
    if g.session_manager.resolver.is_super_admin():
        stations = station_service.list_stations()
    else:
        stations = station_service.list_stations(set(g.station_ids))
    return jsonify([station.to_dict() for station in stations]), 200


@stations_bp.post("")
@require_auth
@require_roles("super_admin")
def create_station():
    try:
        data = json_body()
        station = station_service.create_station(
            data.get("name"),
            address=data.get("address"),
            phone=data.get("phone"),
            email=data.get("email"),
            created_by=g.current_user_id,
        )
        return jsonify(station.to_dict()), 201
    except HANDLED_ERRORS as exc:
        return error_response(exc)


@stations_bp.get("/<station_id>")
@require_auth
@require_roles()
def get_station(station_id: str):
    station = station_service.get_station(station_id)
    if not station:
        return jsonify({"error": "Station not found"}), 404
    if not g.session_manager.resolver.is_super_admin() and station_id not in g.station_ids:
        # Same answer as a missing station
        return jsonify({"error": "Station not found"}), 404
    return jsonify(station.to_dict()), 200


@stations_bp.patch("/<station_id>")
@require_auth
@require_roles("super_admin")
def update_station(station_id: str):
    """
    Request body (all optional): name, address, phone, email.
    """
    try:
        station = station_service.update_station(station_id, json_body())
        audit_service.log_security_event(
            user_id=g.current_user_id,
            event_type="STATION_UPDATED",
            success=True,
            resource=request.path,
            station_id=station_id,
        )
        return jsonify(station.to_dict()), 200
    except HANDLED_ERRORS as exc:
        return error_response(exc)


@stations_bp.delete("/<station_id>")
@require_auth
@require_roles("super_admin")
def delete_station(station_id: str):
    """409 while any grant or profile still points at the station."""
    try:
        station_service.delete_station(station_id)
        audit_service.log_security_event(
            user_id=g.current_user_id,
            event_type="STATION_DELETED",
            success=True,
            resource=request.path,
            station_id=station_id,
        )
        return jsonify({"id": station_id, "message": "Station deleted"}), 200
    except HANDLED_ERRORS as exc:
        return error_response(exc)


@stations_bp.post("/validate")
def validate_station():
    """Public: check a station id/name pair before self-service sign-up."""
    try:
        data = json_body()
        station = station_service.validate_station(data.get("station_id"), data.get("station_name"))
        return jsonify({"valid": True, "station": {"id": station.id, "name": station.name}}), 200
    except HANDLED_ERRORS as exc:
        return error_response(exc)
