"""
Role catalogue and RoleResolver tests.

Verifies:
- Capability predicates are the fixed role combinations
- A failed role fetch is "no roles" (fail closed), logged, never raised
- Each fetch replaces the cache (last fetch wins)
- Uncountersigned station_admin rows and unknown role names confer nothing
"""

import logging

import pytest

from stationauth.roles import (
    Role,
    MatchMode,
    capability_map,
    can_access_station_data,
    can_manage_users,
    can_modify_all_reports,
    can_modify_own_reports_only,
    parse_match_mode,
    parse_role,
)
from stationauth.services.role_resolver import RoleResolver
from stationauth.services.stores import RoleStore
from stationauth.validation import ValidationError


class UnreachableRoleStore(RoleStore):
    def list_roles(self, user_id):
        raise ConnectionError("role store unreachable")


# =============================================================================
# PURE PREDICATES
# =============================================================================


class TestCapabilities:

    def test_front_desk_only_modifies_own_reports(self):
        roles = {Role.FRONT_DESK}
        assert can_access_station_data(roles)
        assert can_modify_own_reports_only(roles)
        assert not can_modify_all_reports(roles)
        assert not can_manage_users(roles)

    def test_front_desk_with_technician_modifies_all(self):
        roles = {Role.FRONT_DESK, Role.TECHNICIAN}
        assert can_modify_all_reports(roles)
        assert not can_modify_own_reports_only(roles)

    def test_plain_admin_has_no_derived_capability(self):
        assert capability_map({Role.ADMIN}) == {
            "can_access_station_data": False,
            "can_manage_users": False,
            "can_modify_all_reports": False,
            "can_modify_own_reports_only": False,
        }

    @pytest.mark.parametrize("role", [Role.SUPER_ADMIN, Role.STATION_ADMIN])
    def test_managers(self, role):
        caps = capability_map({role})
        assert caps["can_manage_users"]
        assert caps["can_modify_all_reports"]
        assert caps["can_access_station_data"]

    def test_empty_role_set_has_nothing(self):
        assert not any(capability_map(set()).values())

    def test_parse_role_normalizes(self):
        assert parse_role(" Technician ") is Role.TECHNICIAN
        assert parse_match_mode("ALL") is MatchMode.ALL

    def test_parse_role_rejects_unknown(self):
        with pytest.raises(ValidationError):
            parse_role("owner")


# =============================================================================
# RESOLVER
# =============================================================================


class TestRoleResolver:

    def test_unreachable_store_fails_closed(self, db_session, technician_a, caplog):
        resolver = RoleResolver(UnreachableRoleStore())

        with caplog.at_level(logging.ERROR):
            roles = resolver.fetch_roles(technician_a.id)

        assert roles == frozenset()
        assert resolver.roles_loaded
        for role in Role:
            assert not resolver.has_any_role([role])
        assert not resolver.has_any_role(list(Role))
        assert not resolver.can_access_station_data()
        assert "Role fetch failed" in caplog.text

    def test_failed_fetch_replaces_previous_roles(self, db_session, technician_a):
        store = RoleStore()
        resolver = RoleResolver(store)
        resolver.fetch_roles(technician_a.id)
        assert resolver.has_role(Role.TECHNICIAN)

        resolver._store = UnreachableRoleStore()
        resolver.fetch_roles(technician_a.id)

        assert resolver.roles == frozenset()

    def test_last_fetch_wins(self, db_session, technician_a):
        resolver = RoleResolver(RoleStore())
        resolver.fetch_roles(technician_a.id)
        assert resolver.roles == {Role.TECHNICIAN}

        grant = RoleStore().list_roles(technician_a.id)[0]
        RoleStore().delete_grant(grant.id)

        assert resolver.fetch_roles(technician_a.id) == frozenset()
        assert resolver.roles == frozenset()

    def test_no_grants_is_loaded_and_empty(self, db_session, pending_user):
        resolver = RoleResolver(RoleStore())
        assert not resolver.roles_loaded

        resolver.fetch_roles(pending_user.id)

        assert resolver.roles_loaded
        assert resolver.roles == frozenset()

    def test_pending_station_admin_request_confers_nothing(self, db_session, pending_user, station_a, grant_role):
        grant_role(pending_user, Role.STATION_ADMIN, station_a, assigned_by=None)

        resolver = RoleResolver(RoleStore())
        resolver.fetch_roles(pending_user.id)

        assert not resolver.has_role(Role.STATION_ADMIN)
        assert resolver.roles == frozenset()

    def test_unknown_role_is_skipped(self, db_session, technician_a, station_a):
        RoleStore().insert_grant(user_id=technician_a.id, role="owner", station_id=station_a.id)

        resolver = RoleResolver(RoleStore())
        resolver.fetch_roles(technician_a.id)

        assert resolver.roles == {Role.TECHNICIAN}

    def test_station_scopes(self, db_session, technician_a, station_a, station_b, grant_role, super_admin):
        grant_role(technician_a, Role.FRONT_DESK, station_b, assigned_by=super_admin.id)

        resolver = RoleResolver(RoleStore())
        resolver.fetch_roles(technician_a.id)

        assert resolver.station_ids == {station_a.id, station_b.id}
        assert resolver.stations_for(Role.TECHNICIAN) == {station_a.id}
        assert resolver.stations_for(Role.STATION_ADMIN) == frozenset()

    def test_superseded_fetch_is_discarded(self, db_session, technician_a):
        resolver = RoleResolver(RoleStore())

        roles = resolver.fetch_roles(technician_a.id, is_current=lambda: False)

        assert roles == {Role.TECHNICIAN}
        assert resolver.roles == frozenset()
        assert not resolver.roles_loaded

    def test_match_modes(self, db_session, technician_a):
        resolver = RoleResolver(RoleStore())
        resolver.fetch_roles(technician_a.id)

        assert resolver.has_any_role([Role.ADMIN, Role.TECHNICIAN])
        assert not resolver.has_all_roles([Role.ADMIN, Role.TECHNICIAN])
        assert resolver.has_all_roles([Role.TECHNICIAN])
