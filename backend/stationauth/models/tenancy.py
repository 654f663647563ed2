from __future__ import annotations

from ..extensions import db
from stationauth.time_utils import to_utc_z
from .identity import new_id


REGISTRATION_PENDING = "pending"
REGISTRATION_APPROVED = "approved"
REGISTRATION_REJECTED = "rejected"
REGISTRATION_STATUSES = (REGISTRATION_PENDING, REGISTRATION_APPROVED, REGISTRATION_REJECTED)


class Station(db.Model):
    """
    Tenant boundary: a service station.

    DESIGN:
    - Profiles and station-scoped RoleGrants point here via station_id
    - Created by approving a registration request or directly by a super admin
    """
    __tablename__ = "stations"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False, index=True)
    address = db.Column(db.String(512), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(36), db.ForeignKey("identities.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Station id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class Profile(db.Model):
    """
    Display profile, one-to-one with Identity (same id).

    Created lazily: a freshly signed-up identity has no profile until its
    email is confirmed or an administrator places it in a station.
    station_id is the only field written on another user's behalf.
    """
    __tablename__ = "profiles"

    id = db.Column(db.String(36), db.ForeignKey("identities.id"), primary_key=True)
    username = db.Column(db.String(255), nullable=True)
    full_name = db.Column(db.String(255), nullable=True)
    avatar_url = db.Column(db.String(1000), nullable=True)
    station_id = db.Column(db.String(36), db.ForeignKey("stations.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    station = db.relationship("Station", backref=db.backref("profiles", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "avatar_url": self.avatar_url,
            "station_id": self.station_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class RegistrationRequest(db.Model):
    """
    A prospective station asking to join the platform.

    LIFECYCLE: pending -> approved | rejected, exactly once.
    - approved: one Station, one Identity, one station_admin grant exist,
      admin_user_id points at the new identity
    - rejected: only status, approved_by/approved_at and rejection_reason change

    approved_by/approved_at record the reviewer for both outcomes.
    """
    __tablename__ = "station_registration_requests"
    __table_args__ = (
        db.Index("ix_station_registration_requests_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    company_name = db.Column(db.String(255), nullable=False)
    business_type = db.Column(db.String(128), nullable=True)
    contact_person_name = db.Column(db.String(255), nullable=False)
    contact_email = db.Column(db.String(255), nullable=False)
    contact_phone = db.Column(db.String(64), nullable=True)
    address = db.Column(db.String(512), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(64), nullable=True)
    zip_code = db.Column(db.String(32), nullable=True)
    description = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=REGISTRATION_PENDING)
    approved_by = db.Column(db.String(36), db.ForeignKey("identities.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    admin_user_id = db.Column(db.String(36), db.ForeignKey("identities.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != REGISTRATION_PENDING

    def station_address(self) -> str:
        """Single-line address in the form used for the created station."""
        street = self.address or ""
        city = self.city or ""
        region = " ".join(part for part in (self.state, self.zip_code) if part)
        return ", ".join(part for part in (street, city, region) if part)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_name": self.company_name,
            "business_type": self.business_type,
            "contact_person_name": self.contact_person_name,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "description": self.description,
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "admin_user_id": self.admin_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
