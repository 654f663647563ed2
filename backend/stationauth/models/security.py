from __future__ import annotations

from ..extensions import db
from stationauth.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log with station context.

    WHY: Track role grants, approvals, failed sign-ins and guard denials.
    Critical for reviewing who elevated whom.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_station_occurred", "station_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Plain ids: events outlive the rows they describe
    station_id = db.Column(db.String(36), nullable=True, index=True)
    user_id = db.Column(db.String(36), nullable=True, index=True)  # Nullable for anonymous

    event_type = db.Column(db.String(64), nullable=False, index=True)  # ROLE_ASSIGNED, SIGN_IN_FAILED, ...
    resource = db.Column(db.String(128), nullable=True)  # e.g., "/api/admin/users/<id>/roles"
    action = db.Column(db.String(64), nullable=True)     # e.g., "technician", "POST"

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
