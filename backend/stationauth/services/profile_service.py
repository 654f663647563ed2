# Overview: Self-service profile reads and writes; lazy profile creation.

from __future__ import annotations

from ..models import Identity, Profile
from ..validation import ValidationError, sanitize_input
from .stores import ProfileStore


# Fields the owner may change. station_id is administrative only.
SELF_SERVICE_FIELDS = ("username", "full_name", "avatar_url")

_MAX_LENGTHS = {"username": 255, "full_name": 255, "avatar_url": 1000}


def get_profile(user_id: str, *, store: ProfileStore | None = None) -> Profile | None:
    return (store or ProfileStore()).get(user_id)


def update_own_profile(user_id: str, data: dict, *, store: ProfileStore | None = None) -> Profile:
    """
    Apply the owner's edits.

    Raises ValidationError for station_id (not self-service) or unknown
    fields. Creates the profile if it does not exist yet.
    """
    store = store or ProfileStore()

    if "station_id" in data:
        raise ValidationError("station_id can only be changed by an administrator")
    unknown = set(data) - set(SELF_SERVICE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

    patch = {
        key: sanitize_input(data[key], max_length=_MAX_LENGTHS[key])
        for key in SELF_SERVICE_FIELDS
        if key in data
    }

    profile = store.get(user_id)
    if profile is None:
        return store.create(user_id, **patch)
    return store.update(user_id, **patch)


def ensure_profile(identity: Identity, *, store: ProfileStore | None = None) -> Profile:
    """
    Create the profile for a confirmed identity, seeded from sign-up metadata.

    Idempotent. station_id is left empty: being named on the sign-up form
    does not place anyone in a station, an administrator does.
    """
    store = store or ProfileStore()
    profile = store.get(identity.id)
    if profile is not None:
        return profile

    metadata = identity.user_metadata or {}
    return store.create(
        identity.id,
        username=sanitize_input(metadata.get("username"), max_length=255),
        full_name=sanitize_input(metadata.get("full_name"), max_length=255),
    )
