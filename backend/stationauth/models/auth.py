from __future__ import annotations

from ..extensions import db
from stationauth.time_utils import to_utc_z
from .identity import new_id


class RoleGrant(db.Model):
    """
    One role held by one user, optionally scoped to a station.

    DESIGN:
    - A user with no effective grants is pending approval
    - admin/technician/front_desk/station_admin carry a station_id
    - super_admin carries none
    - assigned_by/assigned_at record who granted it and when

    OVERLOADED SENTINEL: a station_admin row with assigned_by NULL is a
    promotion *request* awaiting countersignature, not a grant. It never
    counts towards the holder's roles (see is_effective).
    """
    __tablename__ = "user_roles"
    __table_args__ = (
        db.UniqueConstraint("user_id", "role", "station_id", name="uq_user_roles_user_role_station"),
        db.Index("ix_user_roles_user", "user_id"),
        db.Index("ix_user_roles_station", "station_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey("identities.id"), nullable=False)
    role = db.Column(db.String(32), nullable=False)
    station_id = db.Column(db.String(36), db.ForeignKey("stations.id"), nullable=True)

    assigned_by = db.Column(db.String(36), db.ForeignKey("identities.id"), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    station = db.relationship("Station", backref=db.backref("role_grants", lazy=True))

    @property
    def is_pending_request(self) -> bool:
        return self.role == "station_admin" and self.assigned_by is None

    @property
    def is_effective(self) -> bool:
        return not self.is_pending_request

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "role": self.role,
            "station_id": self.station_id,
            "assigned_by": self.assigned_by,
            "assigned_at": to_utc_z(self.assigned_at),
            "pending": self.is_pending_request,
        }
