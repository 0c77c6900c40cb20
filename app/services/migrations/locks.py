"""Per-org "active migration" marker.

Only one live migration may run per org. The marker is a MigrationLock row
keyed by org id; a row older than the staleness timeout belongs to a crashed
run and is taken over.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.logging import get_logger
from app.models.migration import MigrationLock
from app.services.migrations.errors import MigrationInProgressError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _current_lock(db: Session, org_id: str) -> MigrationLock | None:
    return (
        db.query(MigrationLock)
        .filter(MigrationLock.org_id == org_id)
        .populate_existing()
        .first()
    )


def acquire_lock(
    db: Session,
    org_id: str,
    migration_id: UUID,
    stale_after_seconds: int | None = None,
    now: datetime | None = None,
) -> MigrationLock:
    """Claim the org's migration lock.

    Raises:
        MigrationInProgressError: If a fresh lock is held by another run
    """
    stale_after = stale_after_seconds if stale_after_seconds is not None else settings.migration_lock_stale_seconds
    now = now or datetime.now(UTC)

    existing = _current_lock(db, org_id)
    if existing is None:
        lock = MigrationLock(org_id=org_id, migration_id=migration_id, acquired_at=now)
        db.add(lock)
        try:
            db.commit()
            logger.info("migration_lock_acquired org_id=%s migration_id=%s", org_id, migration_id)
            return lock
        except IntegrityError:
            db.rollback()
        existing = _current_lock(db, org_id)
        if existing is None:
            raise MigrationInProgressError(org_id)

    if _as_utc(existing.acquired_at) > now - timedelta(seconds=stale_after):
        raise MigrationInProgressError(org_id, str(existing.migration_id))

    previous = existing.migration_id
    taken = (
        db.query(MigrationLock)
        .filter(MigrationLock.org_id == org_id)
        .filter(MigrationLock.migration_id == previous)
        .update({"migration_id": migration_id, "acquired_at": now}, synchronize_session=False)
    )
    db.commit()
    if not taken:
        raise MigrationInProgressError(org_id)
    logger.warning(
        "migration_lock_stale_takeover org_id=%s stale_migration_id=%s migration_id=%s",
        org_id,
        previous,
        migration_id,
    )
    return _current_lock(db, org_id)


def release_lock(db: Session, org_id: str, migration_id: UUID | None = None) -> bool:
    """Clear the org's lock.

    Without ``migration_id`` this is the administrative override and clears
    whatever run holds the lock.
    """
    query = db.query(MigrationLock).filter(MigrationLock.org_id == org_id)
    if migration_id is not None:
        query = query.filter(MigrationLock.migration_id == migration_id)
    deleted = query.delete()
    db.commit()
    if deleted:
        logger.info("migration_lock_released org_id=%s migration_id=%s", org_id, migration_id)
    return bool(deleted)


def get_active_lock(db: Session, org_id: str) -> MigrationLock | None:
    return db.get(MigrationLock, org_id)
