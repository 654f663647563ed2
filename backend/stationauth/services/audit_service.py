# Overview: Append-only security event log.

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import SecurityEvent
from stationauth.time_utils import utcnow


logger = logging.getLogger(__name__)


def log_security_event(
    user_id: str | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    station_id: str | None = None,
) -> SecurityEvent | None:
    """
    Log security event to audit trail with station context.

    WHY: Immutable audit log for reviewing who elevated whom.
    Every role change, approval, failed sign-in and guard denial is logged.

    event_type examples:
    - SIGN_IN_FAILED
    - SIGN_OUT
    - ROLE_ASSIGNED / ROLE_REMOVED
    - STATION_ADMIN_REQUESTED / STATION_ADMIN_COUNTERSIGNED / STATION_ADMIN_REJECTED
    - REGISTRATION_APPROVED / REGISTRATION_REJECTED / REGISTRATION_APPROVAL_FAILED
    - STATION_UPDATED / STATION_DELETED
    - ACCESS_DENIED / PENDING_APPROVAL_BLOCKED

    A failed write is logged and swallowed: losing one audit row must not
    undo the action it describes.
    """
    event = SecurityEvent(
        user_id=user_id,
        station_id=station_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    try:
        db.session.add(event)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to write security event %s", event_type)
        return None
    return event


def list_security_events(
    *,
    user_id: str | None = None,
    station_id: str | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[SecurityEvent]:
    query = db.session.query(SecurityEvent)
    if user_id:
        query = query.filter_by(user_id=user_id)
    if station_id:
        query = query.filter_by(station_id=station_id)
    if event_type:
        query = query.filter_by(event_type=event_type)
    return query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit).all()
