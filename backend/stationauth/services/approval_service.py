# Overview: Administrative workflows that turn accounts and stations into role-bearing, station-scoped access.

"""
Approval Workflow

Three independent flows over the same RoleGrant / Station /
RegistrationRequest tables:

(a) Self-service signup -> assign_role()
    A new identity has no grants (pending approval) until an administrator
    assigns one. admin/technician/front_desk/station_admin need a station;
    super_admin never carries one.

(b) Station registration -> approve_registration() / reject_registration()
    Approval is a saga: station, identity, profile, station_admin grant,
    then the request is marked approved. Any failure undoes the completed
    steps newest first and surfaces one WorkflowIntegrityError.
    A request leaves "pending" exactly once.

(c) Station-admin promotion -> request_station_admin() / countersign()
    A station_admin row with assigned_by NULL is a request. Countersigning
    fills assigned_by/assigned_at on that row; rejecting deletes it.

PRECONDITIONS are checked before the first store write and raise
ValidationError / ConflictError / InvalidTransitionError / NotFoundError.

NO SELF-ESCALATION: the workflow only talks to stores. It never touches a
SessionManager, so the acting administrator's cached roles are unchanged by
anything done here.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass

from ..models import (
    Profile,
    RegistrationRequest,
    RoleGrant,
    Station,
    REGISTRATION_APPROVED,
    REGISTRATION_REJECTED,
    REGISTRATION_STATUSES,
)
from ..roles import Role, ROLES_REQUIRING_STATION, STATION_SCOPED_ROLES, parse_role
from ..validation import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    normalize_email,
    require_text,
    sanitize_input,
)
from stationauth.time_utils import utcnow
from . import audit_service
from .identity_provider import IdentityProvider, validate_password_strength
from .role_resolver import RoleResolver
from .saga import Saga, SagaFailed
from .stores import ProfileStore, RegistrationStore, RoleStore, StationStore


logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    """Raised when the acting user may not perform the operation."""
    pass


class WorkflowIntegrityError(Exception):
    """
    A multi-step workflow failed partway and was rolled back.

    clean is False when a compensation also failed and rows may need
    manual cleanup; the failed steps are logged.
    """

    def __init__(self, message: str, *, step: str | None = None, clean: bool = True):
        super().__init__(message)
        self.step = step
        self.clean = clean


# =============================================================================
# TEMPORARY PASSWORDS
# =============================================================================

_SYMBOLS = "!@#$%^&*"
_PASSWORD_CLASSES = (string.ascii_uppercase, string.ascii_lowercase, string.digits, _SYMBOLS)


def generate_temporary_password(length: int = 12) -> str:
    """
    One-time password for an account created on someone's behalf.

    Always contains an upper, lower, digit and symbol, so it passes
    validate_password_strength.
    """
    if length < 8:
        raise ValueError("Temporary passwords must be at least 8 characters")

    rng = secrets.SystemRandom()
    chars = [secrets.choice(cls) for cls in _PASSWORD_CLASSES]
    alphabet = "".join(_PASSWORD_CLASSES)
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    rng.shuffle(chars)

    password = "".join(chars)
    validate_password_strength(password)
    return password


@dataclass(frozen=True)
class ApprovalResult:
    request: RegistrationRequest
    station: Station
    admin_user_id: str
    # Shown once to the approving super admin; never stored in plaintext
    temporary_password: str

    def to_dict(self) -> dict:
        return {
            "request": self.request.to_dict(),
            "station": self.station.to_dict(),
            "admin_user_id": self.admin_user_id,
            "temporary_password": self.temporary_password,
        }


_OPTIONAL_REGISTRATION_FIELDS = {
    "business_type": 128,
    "contact_phone": 64,
    "address": 512,
    "city": 128,
    "state": 64,
    "zip_code": 32,
    "description": 2000,
}


class ApprovalWorkflow:
    def __init__(
        self,
        provider: IdentityProvider,
        *,
        role_store: RoleStore | None = None,
        profile_store: ProfileStore | None = None,
        station_store: StationStore | None = None,
        registration_store: RegistrationStore | None = None,
        temp_password_length: int = 12,
    ):
        self.provider = provider
        self.roles = role_store or RoleStore()
        self.profiles = profile_store or ProfileStore()
        self.stations = station_store or StationStore()
        self.registrations = registration_store or RegistrationStore()
        self.temp_password_length = temp_password_length

    # =========================================================================
    # AUTHORIZATION OF THE ACTING USER
    # =========================================================================

    def _actor_roles(self, actor_id: str):
        # Fresh read; a throwaway resolver so no session cache is involved
        return RoleResolver(self.roles).load_roles(actor_id)

    def require_super_admin(self, actor_id: str) -> None:
        roles, _ = self._actor_roles(actor_id)
        if Role.SUPER_ADMIN not in roles:
            raise PermissionDeniedError("Super admin role required")

    def ensure_can_manage(self, actor_id: str, role: Role, station_id: str | None) -> None:
        """
        May actor_id grant or revoke ``role`` in ``station_id``?

        - super_admin: any role, any station
        - station_admin: admin/technician/front_desk, only in stations they
          administer
        - anyone else: nothing
        """
        roles, scopes = self._actor_roles(actor_id)
        if Role.SUPER_ADMIN in roles:
            return
        if Role.STATION_ADMIN in roles:
            if role not in STATION_SCOPED_ROLES:
                raise PermissionDeniedError(f"Station admins cannot manage the {role.value} role")
            if station_id not in scopes.get(Role.STATION_ADMIN, frozenset()):
                raise PermissionDeniedError("Station admins can only manage roles in their own station")
            return
        raise PermissionDeniedError("Insufficient permissions to manage roles")

    # =========================================================================
    # (a) DIRECT ROLE ASSIGNMENT
    # =========================================================================

    def assign_role(self, user_id: str, role, station_id: str | None = None, *, assigned_by: str) -> RoleGrant:
        """
        Grant ``role`` to ``user_id``, recorded as assigned by ``assigned_by``.

        Re-assigning an identical grant returns the existing row. Also fills
        the target's profile station_id when it is still empty.
        """
        role = parse_role(role)
        station_id = (station_id or "").strip() or None

        if role in ROLES_REQUIRING_STATION and not station_id:
            raise ValidationError(f"The {role.value} role requires a station")
        if role is Role.SUPER_ADMIN:
            station_id = None
        if not assigned_by:
            raise ValidationError("assigned_by is required")

        self.ensure_can_manage(assigned_by, role, station_id)

        if not self.provider.get_identity(user_id):
            raise NotFoundError("User not found")
        if station_id and not self.stations.get(station_id):
            raise NotFoundError("Station not found")

        existing = self.roles.find_grant(user_id, role.value, station_id)
        if existing is not None:
            if existing.is_pending_request:
                raise ConflictError(
                    "A station admin request for this user and station is awaiting countersignature"
                )
            return existing

        grant = self.roles.insert_grant(
            user_id=user_id,
            role=role.value,
            station_id=station_id,
            assigned_by=assigned_by,
            assigned_at=utcnow(),
        )
        if station_id:
            self._place_in_station(user_id, station_id)

        audit_service.log_security_event(
            user_id=assigned_by,
            event_type="ROLE_ASSIGNED",
            success=True,
            resource=f"user:{user_id}",
            action=role.value,
            station_id=station_id,
        )
        logger.info("Role %s assigned to %s by %s (station=%s)", role.value, user_id, assigned_by, station_id)
        return grant

    def remove_role(self, grant_id: str, *, removed_by: str) -> RoleGrant:
        grant = self.roles.get_grant(grant_id)
        if grant is None:
            raise NotFoundError("Role grant not found")

        try:
            role = Role(grant.role)
        except ValueError:
            # Unknown role names are only removable by a super admin
            self.require_super_admin(removed_by)
        else:
            self.ensure_can_manage(removed_by, role, grant.station_id)

        self.roles.delete_grant(grant_id)

        audit_service.log_security_event(
            user_id=removed_by,
            event_type="ROLE_REMOVED",
            success=True,
            resource=f"user:{grant.user_id}",
            action=grant.role,
            station_id=grant.station_id,
        )
        return grant

    def list_user_grants(self, user_id: str) -> list[RoleGrant]:
        return self.roles.list_roles(user_id)

    def _place_in_station(self, user_id: str, station_id: str) -> Profile:
        profile = self.profiles.get(user_id)
        if profile is None:
            return self.profiles.create(user_id, station_id=station_id)
        if not profile.station_id:
            return self.profiles.update(user_id, station_id=station_id)
        return profile

    # =========================================================================
    # (b) STATION REGISTRATION
    # =========================================================================

    def submit_registration(self, data: dict) -> RegistrationRequest:
        """Public submission from a prospective station."""
        data = data or {}
        if not isinstance(data, dict):
            raise ValidationError("Registration details must be an object")
        fields = {
            "company_name": require_text(data, "company_name", max_length=255),
            "contact_person_name": require_text(data, "contact_person_name", max_length=255),
            "contact_email": normalize_email(data.get("contact_email")),
        }
        for key, max_length in _OPTIONAL_REGISTRATION_FIELDS.items():
            fields[key] = sanitize_input(data.get(key), max_length=max_length)
        return self.registrations.insert(**fields)

    def list_registrations(self, status: str | None = None) -> list[RegistrationRequest]:
        if status and status not in REGISTRATION_STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        return self.registrations.list(status)

    def _pending_registration(self, request_id: str) -> RegistrationRequest:
        request = self.registrations.get(request_id)
        if request is None:
            raise NotFoundError("Registration request not found")
        if request.is_terminal:
            raise InvalidTransitionError(f"Registration request has already been {request.status}")
        return request

    def approve_registration(self, request_id: str, approver_id: str) -> ApprovalResult:
        """
        Create station, admin account and station_admin grant as one unit.

        Raises InvalidTransitionError (before any write) if the request is
        not pending, and WorkflowIntegrityError if a step failed and the
        completed steps were compensated.
        """
        self.require_super_admin(approver_id)
        request = self._pending_registration(request_id)
        password = generate_temporary_password(self.temp_password_length)
        now = utcnow()
        created: dict = {}

        def create_station():
            created["station"] = self.stations.insert(
                name=request.company_name,
                address=request.station_address() or None,
                phone=request.contact_phone,
                email=request.contact_email,
                created_by=approver_id,
            )
            return created["station"]

        def create_identity():
            created["identity"] = self.provider.admin_create_user(
                email=request.contact_email,
                password=password,
                email_confirm=True,
                user_metadata={
                    "full_name": request.contact_person_name,
                    "station_id": created["station"].id,
                    "station_name": request.company_name,
                },
            )
            return created["identity"]

        def create_profile():
            return self.profiles.create(
                created["identity"].id,
                full_name=request.contact_person_name,
                username=request.contact_email.split("@", 1)[0],
                station_id=created["station"].id,
            )

        def grant_station_admin():
            return self.roles.insert_grant(
                user_id=created["identity"].id,
                role=Role.STATION_ADMIN.value,
                station_id=created["station"].id,
                assigned_by=approver_id,
                assigned_at=now,
            )

        def mark_approved():
            changed = self.registrations.transition(
                request_id,
                REGISTRATION_APPROVED,
                approved_by=approver_id,
                approved_at=now,
                admin_user_id=created["identity"].id,
            )
            if not changed:
                raise InvalidTransitionError("Registration request is no longer pending")

        saga = (
            Saga("approve_registration")
            .step("create_station", create_station, lambda station: self.stations.delete(station.id))
            .step("create_identity", create_identity, lambda identity: self.provider.admin_delete_user(identity.id))
            .step("create_profile", create_profile, lambda profile: self.profiles.delete(profile.id))
            .step("grant_station_admin", grant_station_admin, lambda grant: self.roles.delete_grant(grant.id))
            .step("mark_approved", mark_approved)
        )

        try:
            saga.run()
        except SagaFailed as e:
            audit_service.log_security_event(
                user_id=approver_id,
                event_type="REGISTRATION_APPROVAL_FAILED",
                success=False,
                resource=f"registration:{request_id}",
                action=e.step,
                reason=str(e.cause),
            )
            if isinstance(e.cause, InvalidTransitionError) and e.rolled_back_cleanly:
                raise e.cause
            if not e.rolled_back_cleanly:
                logger.error(
                    "Approval of registration %s left partial state: %s",
                    request_id,
                    ", ".join(name for name, _ in e.compensation_errors),
                )
                raise WorkflowIntegrityError(
                    "Station approval failed and could not be fully rolled back",
                    step=e.step,
                    clean=False,
                ) from e
            raise WorkflowIntegrityError(
                "Station approval failed; no changes were kept",
                step=e.step,
            ) from e

        station = created["station"]
        admin_user_id = created["identity"].id
        audit_service.log_security_event(
            user_id=approver_id,
            event_type="REGISTRATION_APPROVED",
            success=True,
            resource=f"registration:{request_id}",
            action="approve",
            station_id=station.id,
        )
        logger.info("Registration %s approved by %s; station %s created", request_id, approver_id, station.id)
        return ApprovalResult(
            request=self.registrations.get(request_id),
            station=station,
            admin_user_id=admin_user_id,
            temporary_password=password,
        )

    def reject_registration(self, request_id: str, approver_id: str, reason: str) -> RegistrationRequest:
        """Flip status to rejected and record the reason. Nothing else changes."""
        self.require_super_admin(approver_id)
        reason = sanitize_input(reason, max_length=2000)
        if not reason:
            raise ValidationError("A rejection reason is required")
        self._pending_registration(request_id)

        changed = self.registrations.transition(
            request_id,
            REGISTRATION_REJECTED,
            approved_by=approver_id,
            approved_at=utcnow(),
            rejection_reason=reason,
        )
        if not changed:
            raise InvalidTransitionError("Registration request is no longer pending")

        audit_service.log_security_event(
            user_id=approver_id,
            event_type="REGISTRATION_REJECTED",
            success=True,
            resource=f"registration:{request_id}",
            action="reject",
            reason=reason,
        )
        return self.registrations.get(request_id)

    # =========================================================================
    # (c) STATION-ADMIN PROMOTION
    # =========================================================================

    def request_station_admin(self, user_id: str, station_id: str) -> RoleGrant:
        """Insert the uncountersigned station_admin row."""
        station_id = (station_id or "").strip()
        if not station_id:
            raise ValidationError("The station_admin role requires a station")
        if not self.provider.get_identity(user_id):
            raise NotFoundError("User not found")
        if not self.stations.get(station_id):
            raise NotFoundError("Station not found")

        existing = self.roles.find_grant(user_id, Role.STATION_ADMIN.value, station_id)
        if existing is not None:
            if existing.is_pending_request:
                raise ConflictError("Station admin access has already been requested for this station")
            raise ConflictError("User is already a station admin for this station")

        grant = self.roles.insert_grant(
            user_id=user_id,
            role=Role.STATION_ADMIN.value,
            station_id=station_id,
        )
        audit_service.log_security_event(
            user_id=user_id,
            event_type="STATION_ADMIN_REQUESTED",
            success=True,
            resource=f"grant:{grant.id}",
            action="request",
            station_id=station_id,
        )
        return grant

    def list_pending_station_admin_requests(self) -> list[RoleGrant]:
        return self.roles.list_pending_requests()

    def _pending_request(self, grant_id: str) -> RoleGrant:
        grant = self.roles.get_grant(grant_id)
        if grant is None:
            raise NotFoundError("Station admin request not found")
        if grant.role != Role.STATION_ADMIN.value:
            raise ValidationError("Only station_admin grants can be countersigned")
        if not grant.is_pending_request:
            raise InvalidTransitionError("Station admin request has already been countersigned")
        return grant

    def countersign(self, grant_id: str, approver_id: str) -> RoleGrant:
        """
        Finalize a pending station_admin request on the existing row.

        A second call raises InvalidTransitionError; the conditional update
        means provenance is never overwritten, even by a concurrent call.
        """
        self.require_super_admin(approver_id)
        grant = self._pending_request(grant_id)
        if grant.user_id == approver_id:
            raise PermissionDeniedError("You cannot countersign your own request")

        changed = self.roles.update_grant(
            grant_id,
            {"assigned_by": approver_id, "assigned_at": utcnow()},
            only_if_unassigned=True,
        )
        if not changed:
            raise InvalidTransitionError("Station admin request has already been countersigned")

        self._place_in_station(grant.user_id, grant.station_id)
        audit_service.log_security_event(
            user_id=approver_id,
            event_type="STATION_ADMIN_COUNTERSIGNED",
            success=True,
            resource=f"grant:{grant_id}",
            action="countersign",
            station_id=grant.station_id,
        )
        return self.roles.get_grant(grant_id)

    def reject_station_admin_request(self, grant_id: str, approver_id: str) -> RoleGrant:
        """Rejection un-requests: the row is deleted, no status is kept."""
        self.require_super_admin(approver_id)
        grant = self._pending_request(grant_id)
        self.roles.delete_grant(grant_id)
        audit_service.log_security_event(
            user_id=approver_id,
            event_type="STATION_ADMIN_REJECTED",
            success=True,
            resource=f"grant:{grant_id}",
            action="reject",
            station_id=grant.station_id,
        )
        return grant
