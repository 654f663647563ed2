# Overview: Health check and route-guard evaluation endpoints.

"""
System endpoints.

- /health: database and session-table reachability
- /api/guard?path=/dashboard: the RouteGuard state a UI should render for
  that path with the caller's token (no token is a valid input and yields
  "unauthenticated")
- /api/routes: the declared route requirements
"""

import time
from flask import Blueprint, current_app, jsonify, request, g

from ..decorators import bearer_token, load_session_manager
from ..extensions import db
from ..models import Identity, SessionToken, Station
from ..services.route_guard import ROUTES
from stationauth.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        station_count = db.session.query(Station).count()
        identity_count = db.session.query(Identity).count()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at > utcnow(),
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stations": station_count,
                "identities": identity_count,
                "active_sessions": active_sessions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    status = 200 if database["status"] == "healthy" else 503
    return jsonify({"status": database["status"], "database": database}), status


@system_bp.get("/api/guard")
def evaluate_guard():
    path = request.args.get("path") or "/dashboard"
    load_session_manager(bearer_token())

    guard = g.guard
    guard.mount()
    result = guard.evaluate(path)
    return jsonify(result.to_dict()), 200


@system_bp.get("/api/routes")
def list_routes():
    return jsonify({
        path: {
            "required_roles": [role.value for role in requirement.required_roles],
            "match_mode": requirement.match_mode.value,
        }
        for path, requirement in ROUTES.items()
    }), 200
