from .identity import Identity, SessionToken
from .tenancy import (
    Station, Profile, RegistrationRequest,
    REGISTRATION_PENDING, REGISTRATION_APPROVED, REGISTRATION_REJECTED, REGISTRATION_STATUSES,
)
from .auth import RoleGrant
from .security import SecurityEvent

__all__ = [
    'Identity', 'SessionToken',
    'Station', 'Profile', 'RegistrationRequest',
    'REGISTRATION_PENDING', 'REGISTRATION_APPROVED', 'REGISTRATION_REJECTED', 'REGISTRATION_STATUSES',
    'RoleGrant',
    'SecurityEvent',
]
