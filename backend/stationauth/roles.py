"""
Role catalogue and capability predicates.

WHY a closed enumeration: role names travel through routes, decorators,
and the guard. Parsing them once into ``Role`` keeps unknown strings out of
authorization decisions.

Capabilities are fixed boolean combinations over a role set:

- can_access_station_data  = super_admin | station_admin | technician | front_desk
- can_manage_users         = super_admin | station_admin
- can_modify_all_reports   = super_admin | station_admin | technician
- can_modify_own_reports_only = front_desk & not can_modify_all_reports

Note that plain ``admin`` is not part of any capability; it is only ever
checked by name on routes that list it.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from .validation import ValidationError


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    STATION_ADMIN = "station_admin"
    ADMIN = "admin"
    TECHNICIAN = "technician"
    FRONT_DESK = "front_desk"

    def __str__(self) -> str:
        return self.value


class MatchMode(str, Enum):
    ANY = "any"
    ALL = "all"


# Operational roles that only mean something inside one station
STATION_SCOPED_ROLES = frozenset({Role.ADMIN, Role.TECHNICIAN, Role.FRONT_DESK})

# Roles that must carry a station id when granted
ROLES_REQUIRING_STATION = STATION_SCOPED_ROLES | {Role.STATION_ADMIN}


def parse_role(value) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown role: {value}")


def parse_roles(values: Iterable) -> tuple[Role, ...]:
    return tuple(parse_role(v) for v in values)


def parse_match_mode(value) -> MatchMode:
    if isinstance(value, MatchMode):
        return value
    try:
        return MatchMode(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown match mode: {value}")


def has_any_role(roles: Iterable[Role], wanted: Iterable[Role]) -> bool:
    held = set(roles)
    return any(role in held for role in wanted)


def has_all_roles(roles: Iterable[Role], wanted: Iterable[Role]) -> bool:
    held = set(roles)
    return all(role in held for role in wanted)


def is_super_admin(roles: Iterable[Role]) -> bool:
    return Role.SUPER_ADMIN in set(roles)


def can_access_station_data(roles: Iterable[Role]) -> bool:
    return has_any_role(roles, (Role.SUPER_ADMIN, Role.STATION_ADMIN, Role.TECHNICIAN, Role.FRONT_DESK))


def can_manage_users(roles: Iterable[Role]) -> bool:
    return has_any_role(roles, (Role.SUPER_ADMIN, Role.STATION_ADMIN))


def can_modify_all_reports(roles: Iterable[Role]) -> bool:
    return has_any_role(roles, (Role.SUPER_ADMIN, Role.STATION_ADMIN, Role.TECHNICIAN))


def can_modify_own_reports_only(roles: Iterable[Role]) -> bool:
    roles = set(roles)
    return Role.FRONT_DESK in roles and not can_modify_all_reports(roles)


CAPABILITIES = {
    "can_access_station_data": can_access_station_data,
    "can_manage_users": can_manage_users,
    "can_modify_all_reports": can_modify_all_reports,
    "can_modify_own_reports_only": can_modify_own_reports_only,
}


def capability_map(roles: Iterable[Role]) -> dict[str, bool]:
    roles = frozenset(roles)
    return {name: check(roles) for name, check in CAPABILITIES.items()}
