# Overview: Table-level stores for grants, profiles, stations and registration requests.

"""
Stores

WHY: The session, guard and approval logic only ever talks to these four
classes. They are thin SQLAlchemy wrappers (one table each) that commit per
call, so the approval saga can compensate step by step, and so tests can
swap in a store that fails on demand.

Writes roll the session back before re-raising a database error.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import RoleGrant, Profile, Station, RegistrationRequest, REGISTRATION_PENDING


@contextmanager
def _write():
    try:
        yield
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


class RoleStore:
    def list_roles(self, user_id: str) -> list[RoleGrant]:
        return (
            db.session.query(RoleGrant)
            .filter_by(user_id=user_id)
            .order_by(RoleGrant.role.asc())
            .all()
        )

    def get_grant(self, grant_id: str) -> RoleGrant | None:
        return db.session.get(RoleGrant, grant_id)

    def find_grant(self, user_id: str, role: str, station_id: str | None) -> RoleGrant | None:
        return db.session.query(RoleGrant).filter_by(
            user_id=user_id,
            role=role,
            station_id=station_id,
        ).first()

    def list_pending_requests(self) -> list[RoleGrant]:
        return (
            db.session.query(RoleGrant)
            .filter(RoleGrant.role == "station_admin", RoleGrant.assigned_by.is_(None))
            .all()
        )

    def list_station_grants(self, station_id: str) -> list[RoleGrant]:
        return db.session.query(RoleGrant).filter_by(station_id=station_id).all()

    def insert_grant(
        self,
        *,
        user_id: str,
        role: str,
        station_id: str | None = None,
        assigned_by: str | None = None,
        assigned_at: datetime | None = None,
    ) -> RoleGrant:
        grant = RoleGrant(
            user_id=user_id,
            role=role,
            station_id=station_id,
            assigned_by=assigned_by,
            assigned_at=assigned_at,
        )
        with _write():
            db.session.add(grant)
        return grant

    def update_grant(self, grant_id: str, patch: dict, *, only_if_unassigned: bool = False) -> bool:
        """
        Apply patch to one grant. Returns True if a row changed.

        only_if_unassigned makes the update conditional on assigned_by still
        being NULL, so two concurrent countersignatures cannot both land.
        """
        query = db.session.query(RoleGrant).filter(RoleGrant.id == grant_id)
        if only_if_unassigned:
            query = query.filter(RoleGrant.assigned_by.is_(None))
        with _write():
            changed = query.update(patch, synchronize_session="fetch")
        return changed == 1

    def delete_grant(self, grant_id: str) -> bool:
        grant = db.session.get(RoleGrant, grant_id)
        if not grant:
            return False
        with _write():
            db.session.delete(grant)
        return True


class ProfileStore:
    def get(self, user_id: str) -> Profile | None:
        return db.session.get(Profile, user_id)

    def create(self, user_id: str, **fields) -> Profile:
        profile = Profile(id=user_id, **fields)
        with _write():
            db.session.add(profile)
        return profile

    def update(self, user_id: str, **patch) -> Profile | None:
        profile = db.session.get(Profile, user_id)
        if not profile:
            return None
        with _write():
            for key, value in patch.items():
                setattr(profile, key, value)
        return profile

    def delete(self, user_id: str) -> bool:
        profile = db.session.get(Profile, user_id)
        if not profile:
            return False
        with _write():
            db.session.delete(profile)
        return True

    def list_by_station(self, station_id: str) -> list[Profile]:
        return db.session.query(Profile).filter_by(station_id=station_id).all()


class StationStore:
    def insert(self, **fields) -> Station:
        station = Station(**fields)
        with _write():
            db.session.add(station)
        return station

    def get(self, station_id: str) -> Station | None:
        return db.session.get(Station, station_id)

    def find(self, station_id: str, name: str) -> Station | None:
        return db.session.query(Station).filter_by(id=station_id, name=name).first()

    def list(self, station_ids: set[str] | None = None) -> list[Station]:
        query = db.session.query(Station)
        if station_ids is not None:
            query = query.filter(Station.id.in_(station_ids))
        return query.order_by(Station.name).all()

    def update(self, station_id: str, **patch) -> Station | None:
        station = db.session.get(Station, station_id)
        if not station:
            return None
        with _write():
            for key, value in patch.items():
                setattr(station, key, value)
        return station

    def delete(self, station_id: str) -> bool:
        station = db.session.get(Station, station_id)
        if not station:
            return False
        with _write():
            db.session.delete(station)
        return True


class RegistrationStore:
    def insert(self, **fields) -> RegistrationRequest:
        request = RegistrationRequest(status=REGISTRATION_PENDING, **fields)
        with _write():
            db.session.add(request)
        return request

    def get(self, request_id: str) -> RegistrationRequest | None:
        return db.session.get(RegistrationRequest, request_id)

    def list(self, status: str | None = None) -> list[RegistrationRequest]:
        query = db.session.query(RegistrationRequest)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(RegistrationRequest.created_at.desc()).all()

    def transition(self, request_id: str, to_status: str, **fields) -> bool:
        """
        Move a request out of pending. Returns False if it was not pending.

        Conditional UPDATE: two reviewers racing on one request cannot both
        succeed.
        """
        with _write():
            changed = (
                db.session.query(RegistrationRequest)
                .filter(
                    RegistrationRequest.id == request_id,
                    RegistrationRequest.status == REGISTRATION_PENDING,
                )
                .update({"status": to_status, **fields}, synchronize_session="fetch")
            )
        return changed == 1
