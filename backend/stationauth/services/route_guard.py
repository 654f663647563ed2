# Overview: Navigation gate; turns session + role state into one of five render states.

"""
Route Guard

STATES (evaluated in this order, exactly one applies):
1. LOADING           - session manager not initialized, or signed in but
                       roles not fetched yet for this user
2. UNAUTHENTICATED   - no live session; redirect to the sign-in path
3. PENDING_APPROVAL  - signed in, roles fetched, role set empty
4. ACCESS_DENIED     - has roles, route declares roles, any/all check fails
5. AUTHORIZED        - render the guarded content

WHY LOADING covers "roles not fetched yet": right after sign-in the role
set is empty only because nothing was fetched. Showing PENDING_APPROVAL
then would flash the approval screen at every legitimate login.

Route requirements are data (ROUTES). A path nobody declared gets the
default: authenticated with at least one role.

The guard is a read-only consumer of SessionManager. The single exception
is mount(), which asks the manager to refetch roles when it sees an empty
set, so a grant made while the user sat on the pending screen is picked up.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..roles import MatchMode, Role, has_all_roles, has_any_role
from .session_manager import SessionManager


class GuardState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    PENDING_APPROVAL = "pending_approval"
    ACCESS_DENIED = "access_denied"
    AUTHORIZED = "authorized"


@dataclass(frozen=True)
class RouteRequirement:
    required_roles: tuple[Role, ...] = ()
    match_mode: MatchMode = MatchMode.ANY

    def is_satisfied_by(self, roles) -> bool:
        if not self.required_roles:
            return True
        if self.match_mode is MatchMode.ALL:
            return has_all_roles(roles, self.required_roles)
        return has_any_role(roles, self.required_roles)

    def missing_from(self, roles) -> tuple[Role, ...]:
        held = set(roles)
        return tuple(role for role in self.required_roles if role not in held)


DEFAULT_REQUIREMENT = RouteRequirement()


ROUTES: dict[str, RouteRequirement] = {
    "/dashboard": DEFAULT_REQUIREMENT,
    "/diagnostic-form": DEFAULT_REQUIREMENT,
    "/phev-diagnostic-form": DEFAULT_REQUIREMENT,
    "/search": DEFAULT_REQUIREMENT,
    "/print-summary": DEFAULT_REQUIREMENT,
    "/profile": DEFAULT_REQUIREMENT,
    "/modify-reports": RouteRequirement(
        (Role.SUPER_ADMIN, Role.ADMIN, Role.STATION_ADMIN)
    ),
    "/user-management": RouteRequirement((Role.SUPER_ADMIN, Role.STATION_ADMIN)),
    "/station-management": RouteRequirement((Role.SUPER_ADMIN,)),
    "/registration-management": RouteRequirement((Role.SUPER_ADMIN,)),
    "/station-admin-approval": RouteRequirement((Role.SUPER_ADMIN,)),
}


def requirement_for(path: str) -> RouteRequirement:
    """Declared requirement for a path; trailing slashes and query ignored."""
    clean = (path or "/").split("?", 1)[0].rstrip("/") or "/"
    return ROUTES.get(clean, DEFAULT_REQUIREMENT)


PENDING_MESSAGE = (
    "Your account is awaiting approval. An administrator must assign you a "
    "role before you can continue."
)
DENIED_MESSAGE = "You don't have permission to access this page."


@dataclass(frozen=True)
class GuardResult:
    state: GuardState
    path: str | None = None
    redirect_to: str | None = None
    required_roles: tuple[Role, ...] = ()
    missing_roles: tuple[Role, ...] = ()
    match_mode: MatchMode = MatchMode.ANY
    message: str | None = None
    roles: tuple[Role, ...] = ()

    @property
    def allowed(self) -> bool:
        return self.state is GuardState.AUTHORIZED

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "path": self.path,
            "redirect_to": self.redirect_to,
            "required_roles": [r.value for r in self.required_roles],
            "missing_roles": [r.value for r in self.missing_roles],
            "match_mode": self.match_mode.value,
            "message": self.message,
            "roles": [r.value for r in self.roles],
        }


class RouteGuard:
    def __init__(self, session_manager: SessionManager, sign_in_path: str = "/auth"):
        self._manager = session_manager
        self.sign_in_path = sign_in_path

    def mount(self) -> None:
        """
        Called when a guarded view is (re)entered.

        Refetches roles if the user is signed in and the cached set is
        empty, whether or not a fetch already ran.
        """
        if self._manager.is_authenticated() and not self._manager.roles:
            self._manager.refresh_roles()

    def evaluate(self, target: str | RouteRequirement) -> GuardResult:
        if isinstance(target, RouteRequirement):
            path, requirement = None, target
        else:
            path, requirement = target, requirement_for(target)

        manager = self._manager

        if not manager.initialized:
            return GuardResult(state=GuardState.LOADING, path=path)

        if not manager.is_authenticated():
            return GuardResult(
                state=GuardState.UNAUTHENTICATED,
                path=path,
                redirect_to=self.sign_in_path,
            )

        if not manager.roles_loaded:
            return GuardResult(state=GuardState.LOADING, path=path)

        roles = manager.roles
        held = tuple(sorted(roles, key=lambda r: r.value))

        if not roles:
            return GuardResult(
                state=GuardState.PENDING_APPROVAL,
                path=path,
                message=PENDING_MESSAGE,
            )

        if not requirement.is_satisfied_by(roles):
            return GuardResult(
                state=GuardState.ACCESS_DENIED,
                path=path,
                required_roles=requirement.required_roles,
                missing_roles=requirement.missing_from(roles),
                match_mode=requirement.match_mode,
                message=DENIED_MESSAGE,
                roles=held,
            )

        return GuardResult(
            state=GuardState.AUTHORIZED,
            path=path,
            required_roles=requirement.required_roles,
            match_mode=requirement.match_mode,
            roles=held,
        )
