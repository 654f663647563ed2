"""
Role resolution for one signed-in context.

Holds the cached role set of the current user and answers role and
capability questions against it.

DESIGN PRINCIPLES:
- Fail closed: a failed fetch yields an empty role set, never the old one
- Last fetch wins: each applied fetch replaces the cache outright
- "Not fetched yet" and "fetched, empty" are different states (roles_loaded)
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from .. import roles as role_rules
from ..roles import Role
from .stores import RoleStore


logger = logging.getLogger(__name__)


class RoleResolver:
    def __init__(self, role_store: RoleStore):
        self._store = role_store
        self._roles: frozenset[Role] = frozenset()
        self._scopes: dict[Role, frozenset[str]] = {}
        self._loaded_for: str | None = None

    # Read side ---------------------------------------------------------

    @property
    def roles(self) -> frozenset[Role]:
        return self._roles

    @property
    def station_ids(self) -> frozenset[str]:
        """Stations the user holds any effective scoped grant in."""
        return frozenset().union(*self._scopes.values())

    @property
    def roles_loaded(self) -> bool:
        return self._loaded_for is not None

    @property
    def loaded_for(self) -> str | None:
        return self._loaded_for

    def has_role(self, role: Role) -> bool:
        return role in self._roles

    def has_any_role(self, roles: Iterable[Role]) -> bool:
        return role_rules.has_any_role(self._roles, roles)

    def has_all_roles(self, roles: Iterable[Role]) -> bool:
        return role_rules.has_all_roles(self._roles, roles)

    def is_super_admin(self) -> bool:
        return role_rules.is_super_admin(self._roles)

    def can_access_station_data(self) -> bool:
        return role_rules.can_access_station_data(self._roles)

    def can_manage_users(self) -> bool:
        return role_rules.can_manage_users(self._roles)

    def can_modify_all_reports(self) -> bool:
        return role_rules.can_modify_all_reports(self._roles)

    def can_modify_own_reports_only(self) -> bool:
        return role_rules.can_modify_own_reports_only(self._roles)

    def capabilities(self) -> dict[str, bool]:
        return role_rules.capability_map(self._roles)

    # Write side --------------------------------------------------------

    def stations_for(self, role: Role) -> frozenset[str]:
        """Stations in which the user holds ``role``."""
        return self._scopes.get(role, frozenset())

    def load_roles(self, user_id: str) -> tuple[frozenset[Role], dict[Role, frozenset[str]]]:
        """
        Query the role store without touching the cache.

        Returns (roles, scopes) where scopes maps each role to the stations
        it is held in. Any failure is logged and resolves to nothing: the
        whole set if the query failed, the single row if a grant carries a
        role name outside the catalogue.
        """
        try:
            grants = self._store.list_roles(user_id)
        except Exception:
            logger.exception("Role fetch failed for user %s; treating as no roles", user_id)
            return frozenset(), {}

        scopes: dict[Role, set[str]] = {}
        for grant in grants:
            if not grant.is_effective:
                continue
            try:
                role = Role(grant.role)
            except ValueError:
                logger.error("Ignoring unknown role %r on grant %s", grant.role, grant.id)
                continue
            stations = scopes.setdefault(role, set())
            if grant.station_id:
                stations.add(grant.station_id)
        return frozenset(scopes), {role: frozenset(ids) for role, ids in scopes.items()}

    def fetch_roles(
        self,
        user_id: str,
        *,
        is_current: Callable[[], bool] | None = None,
    ) -> frozenset[Role]:
        """
        Fetch the user's roles and replace the cache with them.

        is_current is consulted after the fetch resolves; if it returns
        False the result belongs to a superseded session and is discarded.
        Returns what was fetched either way.
        """
        roles, scopes = self.load_roles(user_id)
        if is_current is not None and not is_current():
            logger.debug("Discarding role fetch for superseded session of user %s", user_id)
            return roles
        self._roles = roles
        self._scopes = scopes
        self._loaded_for = user_id
        return roles

    def clear(self) -> None:
        self._roles = frozenset()
        self._scopes = {}
        self._loaded_for = None
