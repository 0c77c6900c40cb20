"""MigrationRun lifecycle: created at run start, finalized exactly once."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from app.logging import get_logger
from app.models.migration import MigrationRun, MigrationRunStatus, MigrationSource
from app.services.migrations.errors import RunAlreadyFinalizedError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = get_logger(__name__)


def start_run(
    db: Session,
    migration_id: UUID,
    org_id: str,
    user_id: str,
    source: MigrationSource,
    dry_run: bool,
) -> MigrationRun:
    run = MigrationRun(
        id=migration_id,
        org_id=org_id,
        user_id=user_id,
        source=source,
        dry_run=dry_run,
        status=MigrationRunStatus.running,
        started_at=datetime.now(UTC),
    )
    db.add(run)
    db.commit()
    return run


def finalize_run(
    db: Session,
    migration_id: UUID,
    status: MigrationRunStatus,
    stats: dict[str, Any],
    errors: list[dict[str, Any]],
    duration_ms: int,
    abort_reason: str | None = None,
) -> MigrationRun:
    if status is MigrationRunStatus.running:
        raise ValueError("A run can only be finalized as completed or aborted")
    run = db.get(MigrationRun, migration_id)
    if run is None:
        raise ValueError(f"Migration run {migration_id} not found")
    if run.status is not MigrationRunStatus.running:
        raise RunAlreadyFinalizedError(f"Migration run {migration_id} is already {run.status.value}")

    run.status = status
    run.stats = stats
    run.errors = errors
    run.duration_ms = duration_ms
    run.abort_reason = abort_reason
    run.completed_at = datetime.now(UTC)
    db.commit()
    logger.info(
        "migration_run_finalized migration_id=%s status=%s duration_ms=%s",
        migration_id,
        status.value,
        duration_ms,
    )
    return run


def get_run(db: Session, org_id: str, migration_id: UUID) -> MigrationRun | None:
    return (
        db.query(MigrationRun)
        .filter(MigrationRun.org_id == org_id)
        .filter(MigrationRun.id == migration_id)
        .first()
    )


def list_runs(db: Session, org_id: str, limit: int = 20) -> list[MigrationRun]:
    return (
        db.query(MigrationRun)
        .filter(MigrationRun.org_id == org_id)
        .order_by(MigrationRun.started_at.desc())
        .limit(limit)
        .all()
    )
