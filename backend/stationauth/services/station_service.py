from __future__ import annotations

from ..models import Station
from ..validation import ConflictError, NotFoundError, ValidationError, normalize_email, sanitize_input
from .stores import ProfileStore, RoleStore, StationStore


# Editable station fields and their maximum lengths
STATION_FIELDS = {"name": 255, "address": 512, "phone": 64, "email": 255}


def create_station(
    name: str,
    *,
    address: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    created_by: str | None = None,
    store: StationStore | None = None,
) -> Station:
    """Direct creation by a super admin (no registration request)."""
    store = store or StationStore()

    name = sanitize_input(name, max_length=255)
    if not name:
        raise ValidationError("Station name is required")
    if email:
        email = normalize_email(email)

    return store.insert(
        name=name,
        address=sanitize_input(address, max_length=512),
        phone=sanitize_input(phone, max_length=64),
        email=email,
        created_by=created_by,
    )


def get_station(station_id: str, *, store: StationStore | None = None) -> Station | None:
    return (store or StationStore()).get(station_id)


def list_stations(station_ids=None, *, store: StationStore | None = None) -> list[Station]:
    """All stations, or only those whose id is in station_ids."""
    return (store or StationStore()).list(station_ids)


def validate_station(station_id: str | None, station_name: str | None, *, store: StationStore | None = None) -> Station:
    """
    Confirm a station id and name belong together.

    Used by self-service signup: the applicant names the station they work
    at, and both values must match an existing row.
    """
    station_id = (station_id or "").strip()
    station_name = (station_name or "").strip()
    if not station_id or not station_name:
        raise ValidationError("Station ID and station name are required")

    station = (store or StationStore()).find(station_id, station_name)
    if not station:
        raise ValidationError("Invalid station ID or station name")
    return station


def update_station(station_id: str, data: dict, *, store: StationStore | None = None) -> Station:
    """
    Edit name, address, phone or email of a station.

    Only the keys present in data change. An explicit null clears an
    optional field; the name cannot be cleared.
    """
    store = store or StationStore()

    unknown = set(data) - set(STATION_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown station fields: {', '.join(sorted(unknown))}")
    if store.get(station_id) is None:
        raise NotFoundError("Station not found")

    patch = {}
    for field, max_length in STATION_FIELDS.items():
        if field not in data:
            continue
        if field == "email" and data[field]:
            patch[field] = normalize_email(data[field])
        else:
            patch[field] = sanitize_input(data[field], max_length=max_length)
    if "name" in patch and not patch["name"]:
        raise ValidationError("Station name is required")

    return store.update(station_id, **patch)


def delete_station(
    station_id: str,
    *,
    store: StationStore | None = None,
    role_store: RoleStore | None = None,
    profile_store: ProfileStore | None = None,
) -> None:
    """
    Remove a station that nobody is placed in.

    Raises ConflictError while role grants (pending requests included) or
    profiles still reference it.
    """
    store = store or StationStore()
    if store.get(station_id) is None:
        raise NotFoundError("Station not found")

    grants = (role_store or RoleStore()).list_station_grants(station_id)
    profiles = (profile_store or ProfileStore()).list_by_station(station_id)
    if grants or profiles:
        raise ConflictError(
            f"Station still has {len(grants)} role grant(s) and {len(profiles)} profile(s)"
        )

    store.delete(station_id)
