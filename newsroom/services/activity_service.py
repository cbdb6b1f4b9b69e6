"""Activity log: best-effort, append-only.

The activity_logs table is optional. When it is missing or broken, writes
become no-ops and reads return an empty list.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from newsroom.models.activity import ActivityLog

logger = logging.getLogger(__name__)


def append_log(
    session: Session,
    account_id: str,
    action: str,
    details: str = "",
    device_name: str = "",
    source_address: str = "",
    location: str = "",
) -> ActivityLog | None:
    entry = ActivityLog(
        account_id=account_id,
        device_name=device_name,
        action=action,
        details=details,
        source_address=source_address,
        location=location,
    )
    try:
        session.add(entry)
        session.commit()
        session.refresh(entry)
    except SQLAlchemyError as e:
        session.rollback()
        logger.warning("Activity log unavailable, dropping %s entry: %s", action, e)
        return None
    return entry


def list_logs(session: Session, limit: int = 50, account_id: str | None = None) -> list[ActivityLog]:
    """Newest first. account_id=None lists every account."""
    query = select(ActivityLog).order_by(ActivityLog.timestamp.desc()).limit(limit)
    if account_id is not None:
        query = query.where(ActivityLog.account_id == account_id)
    try:
        return list(session.exec(query).all())
    except SQLAlchemyError as e:
        session.rollback()
        logger.warning("Activity log unavailable: %s", e)
        return []
