"""
RouteGuard tests.

Verifies:
- The five states and their precedence
- Zero roles means pending approval on every route, whatever it requires
- "Signed in, roles not fetched yet" is Loading, never Pending
- mount() refetches an empty role set so a fresh grant is picked up
- Sign-up -> assign -> authorized scenario end to end
"""

import pytest

from stationauth.roles import MatchMode, Role
from stationauth.services.route_guard import (
    DEFAULT_REQUIREMENT,
    ROUTES,
    GuardState,
    RouteGuard,
    RouteRequirement,
    requirement_for,
)
from stationauth.services.stores import RoleStore

from conftest import PASSWORD, build_manager


ALL_PATHS = list(ROUTES) + ["/not-declared"]


class FlakyRoleStore(RoleStore):
    def __init__(self):
        self.failing = True

    def list_roles(self, user_id):
        if self.failing:
            raise ConnectionError("role store unreachable")
        return super().list_roles(user_id)


class TestRouteDeclarations:

    def test_requirement_lookup_ignores_slash_and_query(self):
        assert requirement_for("/station-management/") == ROUTES["/station-management"]
        assert requirement_for("/user-management?tab=2") == ROUTES["/user-management"]
        assert requirement_for("/anything-else") is DEFAULT_REQUIREMENT

    def test_modify_reports_accepts_any_listed_role(self):
        requirement = ROUTES["/modify-reports"]
        assert requirement.is_satisfied_by({Role.ADMIN})
        assert not requirement.is_satisfied_by({Role.TECHNICIAN})

    def test_all_mode(self):
        requirement = RouteRequirement((Role.ADMIN, Role.TECHNICIAN), MatchMode.ALL)
        assert not requirement.is_satisfied_by({Role.ADMIN})
        assert requirement.is_satisfied_by({Role.ADMIN, Role.TECHNICIAN})
        assert requirement.missing_from({Role.ADMIN}) == (Role.TECHNICIAN,)


class TestGuardStates:

    def test_loading_before_initialize(self, provider):
        guard = RouteGuard(build_manager(provider, initialize=False))

        assert guard.evaluate("/dashboard").state is GuardState.LOADING

    def test_unauthenticated_redirects(self, provider):
        guard = RouteGuard(build_manager(provider), sign_in_path="/auth")

        result = guard.evaluate("/dashboard")

        assert result.state is GuardState.UNAUTHENTICATED
        assert result.redirect_to == "/auth"

    @pytest.mark.parametrize("path", ALL_PATHS)
    def test_no_roles_is_pending_everywhere(self, provider, pending_user, signed_in, path):
        guard = RouteGuard(signed_in(pending_user))

        result = guard.evaluate(path)

        assert result.state is GuardState.PENDING_APPROVAL
        assert result.message

    @pytest.mark.parametrize("path", ALL_PATHS)
    def test_any_role_is_never_pending(self, provider, technician_a, signed_in, path):
        guard = RouteGuard(signed_in(technician_a))

        assert guard.evaluate(path).state is not GuardState.PENDING_APPROVAL

    def test_unreachable_role_store_looks_pending_not_authorized(self, provider, super_admin, signed_in):
        guard = RouteGuard(signed_in(super_admin, role_store=FlakyRoleStore()))

        assert guard.evaluate("/station-management").state is GuardState.PENDING_APPROVAL

    def test_access_denied_lists_missing_roles(self, provider, technician_a, signed_in):
        guard = RouteGuard(signed_in(technician_a))

        result = guard.evaluate("/station-management")

        assert result.state is GuardState.ACCESS_DENIED
        assert result.missing_roles == (Role.SUPER_ADMIN,)
        assert result.roles == (Role.TECHNICIAN,)

    def test_authorized(self, provider, station_admin_a, signed_in):
        guard = RouteGuard(signed_in(station_admin_a))

        assert guard.evaluate("/user-management").allowed
        assert guard.evaluate("/modify-reports").allowed
        assert guard.evaluate("/dashboard").allowed
        assert not guard.evaluate("/registration-management").allowed

    def test_requirement_can_be_passed_directly(self, provider, technician_a, signed_in):
        guard = RouteGuard(signed_in(technician_a))

        result = guard.evaluate(RouteRequirement((Role.TECHNICIAN,)))

        assert result.state is GuardState.AUTHORIZED
        assert result.path is None

    def test_roles_not_fetched_yet_is_loading(self, provider, technician_a):
        manager = build_manager(provider)
        guard = RouteGuard(manager)

        manager._client.sign_in(technician_a.email, PASSWORD)

        assert guard.evaluate("/dashboard").state is GuardState.LOADING
        manager.run_pending()
        assert guard.evaluate("/dashboard").state is GuardState.AUTHORIZED

    def test_to_dict(self, provider, technician_a, signed_in):
        result = RouteGuard(signed_in(technician_a)).evaluate("/user-management")

        assert result.to_dict()["state"] == "access_denied"
        assert result.to_dict()["missing_roles"] == ["super_admin", "station_admin"]


class TestMount:

    def test_mount_picks_up_grant_made_while_pending(self, provider, pending_user, signed_in, workflow, super_admin, station_a):
        guard = RouteGuard(signed_in(pending_user))
        guard.mount()
        assert guard.evaluate("/dashboard").state is GuardState.PENDING_APPROVAL

        workflow.assign_role(pending_user.id, "technician", station_a.id, assigned_by=super_admin.id)
        # Cache is stale until something refetches
        assert guard.evaluate("/dashboard").state is GuardState.PENDING_APPROVAL

        guard.mount()

        assert guard.evaluate("/dashboard").state is GuardState.AUTHORIZED

    def test_mount_recovers_after_failed_fetch(self, provider, technician_a, signed_in):
        store = FlakyRoleStore()
        guard = RouteGuard(signed_in(technician_a, role_store=store))
        assert guard.evaluate("/dashboard").state is GuardState.PENDING_APPROVAL

        store.failing = False
        guard.mount()

        assert guard.evaluate("/dashboard").state is GuardState.AUTHORIZED

    def test_mount_without_session_does_nothing(self, provider):
        guard = RouteGuard(build_manager(provider))
        guard.mount()

        assert guard.evaluate("/dashboard").state is GuardState.UNAUTHENTICATED


class TestSignupScenario:

    def test_signup_assign_authorize(self, provider, workflow, super_admin, station_a):
        token = provider.sign_up("a@x.com", PASSWORD).confirmation_token
        provider.confirm_email(token)

        manager = build_manager(provider)
        guard = RouteGuard(manager)
        manager.sign_in("a@x.com", PASSWORD)
        user_id = manager.identity.id

        assert manager.roles == frozenset()
        assert guard.evaluate("/dashboard").state is GuardState.PENDING_APPROVAL

        workflow.assign_role(user_id, "technician", station_a.id, assigned_by=super_admin.id)

        assert manager.fetch_user_roles(user_id) == {Role.TECHNICIAN}
        assert guard.evaluate("/dashboard").state is GuardState.AUTHORIZED
        assert guard.evaluate(RouteRequirement((Role.SUPER_ADMIN,))).state is GuardState.ACCESS_DENIED
