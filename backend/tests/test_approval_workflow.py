"""
ApprovalWorkflow tests.

Verifies:
- Station-scoped roles need a station; super_admin never carries one
- Who may manage which grants
- Station approval is all-or-nothing
- A registration request leaves "pending" exactly once
- Countersigning never overwrites provenance
"""

import pytest

from stationauth.extensions import db
from stationauth.models import Identity, Profile, RegistrationRequest, RoleGrant, Station
from stationauth.roles import Role
from stationauth.services.approval_service import (
    ApprovalWorkflow,
    PermissionDeniedError,
    WorkflowIntegrityError,
    generate_temporary_password,
)
from stationauth.services.identity_provider import IdentityError, IdentityProvider, validate_password_strength
from stationauth.services.role_resolver import RoleResolver
from stationauth.services.stores import RoleStore
from stationauth.validation import ConflictError, InvalidTransitionError, NotFoundError, ValidationError


class FailingIdentityProvider(IdentityProvider):
    def admin_create_user(self, **kwargs):
        raise IdentityError("identity service unavailable")


class FailingGrantStore(RoleStore):
    def insert_grant(self, **kwargs):
        if kwargs.get("role") == Role.STATION_ADMIN.value:
            raise RuntimeError("role store unavailable")
        return super().insert_grant(**kwargs)


def _count(model) -> int:
    db.session.expire_all()
    return db.session.query(model).count()


def _effective_roles(user_id):
    roles, _ = RoleResolver(RoleStore()).load_roles(user_id)
    return roles


@pytest.fixture
def registration(workflow):
    return workflow.submit_registration({
        "company_name": "Volt Garage",
        "contact_person_name": "Vera Volt",
        "contact_email": "Vera@VoltGarage.com",
        "contact_phone": "555-0100",
        "address": "10 Spark Rd",
        "city": "Ampton",
        "state": "CA",
        "zip_code": "90000",
    })


# =============================================================================
# (a) ASSIGN / REMOVE
# =============================================================================


class TestAssignRole:

    def test_scoped_role_without_station_rejected_before_insert(self, workflow, super_admin, pending_user):
        before = _count(RoleGrant)

        with pytest.raises(ValidationError):
            workflow.assign_role(pending_user.id, "technician", None, assigned_by=super_admin.id)

        assert _count(RoleGrant) == before

    @pytest.mark.parametrize("role", ["admin", "front_desk", "station_admin"])
    def test_other_station_roles_need_station(self, workflow, super_admin, pending_user, role):
        with pytest.raises(ValidationError):
            workflow.assign_role(pending_user.id, role, "", assigned_by=super_admin.id)

    def test_super_admin_needs_no_station(self, workflow, super_admin, pending_user, station_a):
        grant = workflow.assign_role(pending_user.id, "super_admin", station_a.id, assigned_by=super_admin.id)

        assert grant.role == "super_admin"
        assert grant.station_id is None
        assert grant.assigned_by == super_admin.id
        assert grant.assigned_at is not None

    def test_super_admin_without_station(self, workflow, super_admin, pending_user):
        grant = workflow.assign_role(pending_user.id, Role.SUPER_ADMIN, assigned_by=super_admin.id)
        assert grant.station_id is None

    def test_assign_places_user_in_station(self, workflow, super_admin, pending_user, station_a, station_b):
        workflow.assign_role(pending_user.id, "technician", station_a.id, assigned_by=super_admin.id)
        assert db.session.get(Profile, pending_user.id).station_id == station_a.id

        # An existing station assignment is not overwritten
        workflow.assign_role(pending_user.id, "front_desk", station_b.id, assigned_by=super_admin.id)
        assert db.session.get(Profile, pending_user.id).station_id == station_a.id

    def test_identical_assignment_returns_existing(self, workflow, super_admin, pending_user, station_a):
        first = workflow.assign_role(pending_user.id, "technician", station_a.id, assigned_by=super_admin.id)
        second = workflow.assign_role(pending_user.id, "technician", station_a.id, assigned_by=super_admin.id)

        assert first.id == second.id
        assert _count(RoleGrant) == 2  # super admin's own grant + this one

    def test_unknown_user_or_station(self, workflow, super_admin, pending_user):
        with pytest.raises(NotFoundError):
            workflow.assign_role("missing", "super_admin", assigned_by=super_admin.id)
        with pytest.raises(NotFoundError):
            workflow.assign_role(pending_user.id, "technician", "missing", assigned_by=super_admin.id)

    def test_unknown_role(self, workflow, super_admin, pending_user):
        with pytest.raises(ValidationError):
            workflow.assign_role(pending_user.id, "owner", assigned_by=super_admin.id)

    def test_remove_role(self, workflow, super_admin, pending_user, station_a):
        grant = workflow.assign_role(pending_user.id, "technician", station_a.id, assigned_by=super_admin.id)

        workflow.remove_role(grant.id, removed_by=super_admin.id)

        assert _effective_roles(pending_user.id) == frozenset()

    def test_remove_missing_grant(self, workflow, super_admin):
        with pytest.raises(NotFoundError):
            workflow.remove_role("missing", removed_by=super_admin.id)


class TestWhoMayManage:

    def test_station_admin_in_own_station(self, workflow, station_admin_a, pending_user, station_a):
        grant = workflow.assign_role(pending_user.id, "technician", station_a.id, assigned_by=station_admin_a.id)
        assert grant.assigned_by == station_admin_a.id

    def test_station_admin_outside_own_station(self, workflow, station_admin_a, pending_user, station_b):
        with pytest.raises(PermissionDeniedError):
            workflow.assign_role(pending_user.id, "technician", station_b.id, assigned_by=station_admin_a.id)

    @pytest.mark.parametrize("role", ["super_admin", "station_admin"])
    def test_station_admin_cannot_grant_elevated_roles(self, workflow, station_admin_a, pending_user, station_a, role):
        with pytest.raises(PermissionDeniedError):
            workflow.assign_role(pending_user.id, role, station_a.id, assigned_by=station_admin_a.id)

    def test_technician_cannot_assign(self, workflow, technician_a, pending_user, station_a):
        before = _count(RoleGrant)
        with pytest.raises(PermissionDeniedError):
            workflow.assign_role(pending_user.id, "front_desk", station_a.id, assigned_by=technician_a.id)
        assert _count(RoleGrant) == before

    def test_station_admin_cannot_remove_outside_station(self, workflow, station_admin_a, super_admin, pending_user, station_b):
        grant = workflow.assign_role(pending_user.id, "technician", station_b.id, assigned_by=super_admin.id)

        with pytest.raises(PermissionDeniedError):
            workflow.remove_role(grant.id, removed_by=station_admin_a.id)


# =============================================================================
# (b) STATION REGISTRATION
# =============================================================================


class TestSubmitRegistration:

    def test_submit(self, registration):
        assert registration.status == "pending"
        assert registration.contact_email == "vera@voltgarage.com"

    def test_invalid_contact_email(self, workflow):
        with pytest.raises(ValidationError):
            workflow.submit_registration({
                "company_name": "X",
                "contact_person_name": "Y",
                "contact_email": "not-an-email",
            })

    def test_names_required(self, workflow):
        with pytest.raises(ValidationError):
            workflow.submit_registration({"contact_person_name": "Y", "contact_email": "y@x.com"})

    def test_details_must_be_an_object(self, workflow):
        with pytest.raises(ValidationError):
            workflow.submit_registration(["Volt Garage"])


class TestApproveRegistration:

    def test_approve_creates_everything(self, workflow, provider, super_admin, registration):
        result = workflow.approve_registration(registration.id, super_admin.id)

        station = db.session.get(Station, result.station.id)
        assert station.name == "Volt Garage"
        assert station.address == "10 Spark Rd, Ampton, CA 90000"

        profile = db.session.get(Profile, result.admin_user_id)
        assert profile.station_id == station.id
        assert profile.full_name == "Vera Volt"
        assert profile.username == "vera"

        grants = RoleStore().list_roles(result.admin_user_id)
        assert [(g.role, g.station_id, g.assigned_by) for g in grants] == [
            ("station_admin", station.id, super_admin.id)
        ]

        db.session.expire_all()
        request = db.session.get(RegistrationRequest, registration.id)
        assert request.status == "approved"
        assert request.admin_user_id == result.admin_user_id
        assert request.approved_by == super_admin.id

        # The one-time password works
        assert provider.sign_in("vera@voltgarage.com", result.temporary_password).ok

    def test_identity_failure_leaves_no_station(self, super_admin, registration, app):
        workflow = ApprovalWorkflow(FailingIdentityProvider.from_config(app.config))
        stations_before = _count(Station)

        with pytest.raises(WorkflowIntegrityError) as exc_info:
            workflow.approve_registration(registration.id, super_admin.id)

        assert exc_info.value.step == "create_identity"
        assert exc_info.value.clean
        assert _count(Station) == stations_before
        assert db.session.get(RegistrationRequest, registration.id).status == "pending"

    def test_late_failure_undoes_every_step(self, provider, super_admin, registration):
        workflow = ApprovalWorkflow(provider, role_store=FailingGrantStore())
        counts = {model: _count(model) for model in (Station, Identity, Profile, RoleGrant)}

        with pytest.raises(WorkflowIntegrityError):
            workflow.approve_registration(registration.id, super_admin.id)

        for model, before in counts.items():
            assert _count(model) == before, model.__name__
        assert db.session.get(RegistrationRequest, registration.id).status == "pending"

    def test_failed_approval_can_be_retried(self, app, provider, super_admin, registration):
        failing = ApprovalWorkflow(FailingIdentityProvider.from_config(app.config))
        with pytest.raises(WorkflowIntegrityError):
            failing.approve_registration(registration.id, super_admin.id)

        result = ApprovalWorkflow(provider).approve_registration(registration.id, super_admin.id)

        assert result.request.status == "approved"

    def test_non_super_admin_cannot_approve(self, workflow, station_admin_a, registration):
        with pytest.raises(PermissionDeniedError):
            workflow.approve_registration(registration.id, station_admin_a.id)

    def test_unknown_request(self, workflow, super_admin):
        with pytest.raises(NotFoundError):
            workflow.approve_registration("missing", super_admin.id)


class TestSingleTransition:

    def test_approve_then_reject(self, workflow, super_admin, registration):
        workflow.approve_registration(registration.id, super_admin.id)
        counts = {model: _count(model) for model in (Station, Identity, RoleGrant)}

        with pytest.raises(InvalidTransitionError):
            workflow.reject_registration(registration.id, super_admin.id, "changed my mind")

        db.session.expire_all()
        request = db.session.get(RegistrationRequest, registration.id)
        assert request.status == "approved"
        assert request.rejection_reason is None
        for model, before in counts.items():
            assert _count(model) == before

    def test_reject_then_approve(self, workflow, super_admin, registration):
        workflow.reject_registration(registration.id, super_admin.id, "Incomplete details")
        stations_before = _count(Station)

        with pytest.raises(InvalidTransitionError):
            workflow.approve_registration(registration.id, super_admin.id)

        assert _count(Station) == stations_before
        request = db.session.get(RegistrationRequest, registration.id)
        assert request.status == "rejected"
        assert request.rejection_reason == "Incomplete details"

    def test_approve_twice(self, workflow, super_admin, registration):
        workflow.approve_registration(registration.id, super_admin.id)

        with pytest.raises(InvalidTransitionError):
            workflow.approve_registration(registration.id, super_admin.id)

        assert _count(Station) == 1

    def test_invalid_transition_is_a_validation_error(self):
        assert issubclass(InvalidTransitionError, ValidationError)
        assert not issubclass(InvalidTransitionError, ConflictError)

    def test_reject_requires_reason(self, workflow, super_admin, registration):
        with pytest.raises(ValidationError):
            workflow.reject_registration(registration.id, super_admin.id, "   ")
        assert db.session.get(RegistrationRequest, registration.id).status == "pending"

    def test_reject_has_no_other_side_effects(self, workflow, super_admin, registration):
        counts = {model: _count(model) for model in (Station, Identity, Profile, RoleGrant)}

        request = workflow.reject_registration(registration.id, super_admin.id, "Not a station")

        assert request.status == "rejected"
        assert request.approved_by == super_admin.id
        for model, before in counts.items():
            assert _count(model) == before

    def test_list_by_status(self, workflow, super_admin, registration):
        assert [r.id for r in workflow.list_registrations("pending")] == [registration.id]
        assert workflow.list_registrations("approved") == []
        with pytest.raises(ValidationError):
            workflow.list_registrations("archived")


# =============================================================================
# (c) STATION-ADMIN COUNTERSIGNATURE
# =============================================================================


class TestCountersign:

    def test_request_confers_nothing_until_countersigned(self, workflow, super_admin, technician_a, station_a):
        grant = workflow.request_station_admin(technician_a.id, station_a.id)
        assert grant.assigned_by is None
        assert Role.STATION_ADMIN not in _effective_roles(technician_a.id)

        countersigned = workflow.countersign(grant.id, super_admin.id)

        assert countersigned.id == grant.id
        assert countersigned.assigned_by == super_admin.id
        assert Role.STATION_ADMIN in _effective_roles(technician_a.id)
        assert _count(RoleGrant) == 3  # super admin, technician, station admin

    def test_second_countersign_keeps_provenance(self, workflow, super_admin, make_identity, grant_role, technician_a, station_a):
        other_admin = make_identity("root2@example.com")
        grant_role(other_admin, Role.SUPER_ADMIN)
        grant = workflow.request_station_admin(technician_a.id, station_a.id)
        first = workflow.countersign(grant.id, super_admin.id)
        assigned_by, assigned_at = first.assigned_by, first.assigned_at

        with pytest.raises(InvalidTransitionError):
            workflow.countersign(grant.id, other_admin.id)

        db.session.expire_all()
        row = db.session.get(RoleGrant, grant.id)
        assert row.assigned_by == assigned_by
        assert row.assigned_at == assigned_at

    def test_cannot_countersign_own_request(self, workflow, super_admin, station_a):
        grant = workflow.request_station_admin(super_admin.id, station_a.id)

        with pytest.raises(PermissionDeniedError):
            workflow.countersign(grant.id, super_admin.id)

    def test_only_super_admin_countersigns(self, workflow, station_admin_a, technician_a, station_a):
        grant = workflow.request_station_admin(technician_a.id, station_a.id)

        with pytest.raises(PermissionDeniedError):
            workflow.countersign(grant.id, station_admin_a.id)

    def test_duplicate_request(self, workflow, technician_a, station_a):
        workflow.request_station_admin(technician_a.id, station_a.id)

        with pytest.raises(ConflictError):
            workflow.request_station_admin(technician_a.id, station_a.id)

    def test_assign_over_pending_request_conflicts(self, workflow, super_admin, technician_a, station_a):
        workflow.request_station_admin(technician_a.id, station_a.id)

        with pytest.raises(ConflictError):
            workflow.assign_role(technician_a.id, "station_admin", station_a.id, assigned_by=super_admin.id)

    def test_reject_deletes_request(self, workflow, super_admin, technician_a, station_a):
        grant = workflow.request_station_admin(technician_a.id, station_a.id)

        workflow.reject_station_admin_request(grant.id, super_admin.id)

        assert db.session.get(RoleGrant, grant.id) is None
        assert workflow.list_pending_station_admin_requests() == []

    def test_cannot_reject_countersigned_grant(self, workflow, super_admin, technician_a, station_a):
        grant = workflow.request_station_admin(technician_a.id, station_a.id)
        workflow.countersign(grant.id, super_admin.id)

        with pytest.raises(InvalidTransitionError):
            workflow.reject_station_admin_request(grant.id, super_admin.id)

    def test_countersign_non_station_admin_grant(self, workflow, super_admin, technician_a):
        grant = RoleStore().list_roles(technician_a.id)[0]

        with pytest.raises(ValidationError):
            workflow.countersign(grant.id, super_admin.id)


# =============================================================================
# TEMPORARY PASSWORDS
# =============================================================================


class TestTemporaryPassword:

    def test_default_length_and_strength(self):
        for _ in range(50):
            password = generate_temporary_password()
            assert len(password) == 12
            validate_password_strength(password)

    def test_passwords_differ(self):
        assert len({generate_temporary_password() for _ in range(20)}) == 20

    def test_too_short(self):
        with pytest.raises(ValueError):
            generate_temporary_password(6)
