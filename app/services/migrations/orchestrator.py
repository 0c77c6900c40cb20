"""Migration orchestrator.

Drives one migration run:

    INITIALIZING -> RUNNING(kind) for each entity kind -> FINALIZING -> COMPLETED | ABORTED

Entity kinds run in dependency order so records that others point to
(contacts, properties) exist before the records that point to them (leads,
claims). Record-level failures are collected and the loop moves on; a
credential failure, an exhausted retry budget, any other provider failure or
the wall-clock budget ends the run as ABORTED with the stats gathered so far.

Usage:
    adapter = build_adapter("jobnimbus", ProviderCredentials(api_key=key))
    result = MigrationOrchestrator(db, org_id, user_id, adapter).run()
    print(result.to_dict())
"""

from __future__ import annotations

import enum
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from app.config import settings
from app.logging import get_logger
from app.models.migration import EntityKind, MigrationRunStatus
from app.services.migrations import locks, runs
from app.services.migrations.adapters import SourceAdapter
from app.services.migrations.entities import CanonicalEntity, ProviderRecord
from app.services.migrations.errors import (
    CredentialError,
    MigrationTimeoutError,
    ProviderError,
    RecordMappingError,
)
from app.services.migrations.idempotency import IdempotencyResolver
from app.services.migrations.preview import SampleCollector, build_recommendations, estimate_duration
from app.services.migrations.stats import ErrorCollector, MigrationStats
from app.services.migrations.stores import EntityStore
from app.services.migrations.writers import SkipReason, writer_for_run

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = get_logger(__name__)

ENTITY_ORDER: tuple[EntityKind, ...] = (
    EntityKind.contacts,
    EntityKind.properties,
    EntityKind.leads,
    EntityKind.claims,
)

FATAL_ERRORS = (CredentialError, ProviderError, MigrationTimeoutError)


class MigrationState(enum.Enum):
    initializing = "initializing"
    running = "running"
    finalizing = "finalizing"
    completed = "completed"
    aborted = "aborted"


@dataclass(frozen=True)
class MigrationOptions:
    dry_run: bool = False
    skip_kinds: frozenset[EntityKind] = frozenset()
    # cap on records read per kind, for previews
    max_records: int | None = None
    # source creation window: after inclusive, before exclusive
    created_after: datetime | None = None
    created_before: datetime | None = None


@dataclass
class MigrationResult:
    success: bool
    migration_id: str
    stats: dict[str, dict[str, Any]]
    errors: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0
    status: str = MigrationRunStatus.completed.value
    abort_reason: str | None = None
    dry_run: bool = False
    sample_mappings: list[dict[str, Any]] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    estimated_duration: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "migration_id": self.migration_id,
            "stats": self.stats,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "abort_reason": self.abort_reason,
            "dry_run": self.dry_run,
            "sample_mappings": self.sample_mappings,
            "recommendations": self.recommendations,
            "estimated_duration": self.estimated_duration,
        }


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def _created_at(entity: CanonicalEntity) -> datetime | None:
    value = getattr(entity, "source_created_at", None)
    if not value:
        return None
    try:
        return _as_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


class MigrationOrchestrator:
    """Runs one migration for one org from one provider.

    The orchestrator owns the adapter for the duration of the run and closes
    it when the run ends, which also drops the provider credentials.
    """

    def __init__(
        self,
        db: Session,
        org_id: str,
        user_id: str,
        adapter: SourceAdapter,
        options: MigrationOptions | None = None,
        max_errors: int | None = None,
        max_duration_seconds: float | None = None,
        lock_stale_seconds: int | None = None,
        stores: dict[EntityKind, EntityStore] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.org_id = org_id
        self.user_id = user_id
        self.adapter = adapter
        self.options = options or MigrationOptions()
        self.max_duration_seconds = (
            max_duration_seconds if max_duration_seconds is not None else settings.migration_max_duration_seconds
        )
        self.lock_stale_seconds = lock_stale_seconds
        self.clock = clock

        self.migration_id = uuid.uuid4()
        self.state = MigrationState.initializing
        self.current_kind: EntityKind | None = None
        self.stats = MigrationStats(ENTITY_ORDER)
        self.collector = ErrorCollector(self.stats, max_errors=max_errors)
        self.resolver = IdempotencyResolver(db, org_id, adapter.source)
        self.writer = writer_for_run(db, self.resolver, self.options.dry_run, self.migration_id, stores=stores)
        self.samples = SampleCollector() if self.options.dry_run else None
        self._started: float | None = None

    @property
    def kinds(self) -> tuple[EntityKind, ...]:
        return tuple(kind for kind in ENTITY_ORDER if kind not in self.options.skip_kinds)

    def run(self) -> MigrationResult:
        """Run the migration to completion or abort.

        Raises:
            MigrationInProgressError: If another live migration holds the org lock
        """
        self._started = self.clock()
        self.adapter.bind_deadline(self._time_remaining)
        holds_lock = False
        try:
            if not self.options.dry_run:
                locks.acquire_lock(self.db, self.org_id, self.migration_id, self.lock_stale_seconds)
                holds_lock = True

            runs.start_run(
                self.db,
                self.migration_id,
                self.org_id,
                self.user_id,
                self.adapter.source,
                self.options.dry_run,
            )
            logger.info(
                "migration_starting migration_id=%s org_id=%s source=%s dry_run=%s",
                self.migration_id,
                self.org_id,
                self.adapter.source.value,
                self.options.dry_run,
            )

            status = MigrationRunStatus.completed
            abort_reason: str | None = None
            try:
                for kind in self.kinds:
                    self.state = MigrationState.running
                    self.current_kind = kind
                    logger.info("migration_kind_starting migration_id=%s kind=%s", self.migration_id, kind.value)
                    self._import_kind(kind)
            except FATAL_ERRORS as e:
                self.db.rollback()
                status = MigrationRunStatus.aborted
                abort_reason = f"{type(e).__name__}: {e}"
                self.collector.record_fatal(e, self.current_kind)
                logger.error(
                    "migration_aborted migration_id=%s kind=%s error=%s",
                    self.migration_id,
                    self.current_kind.value if self.current_kind else None,
                    abort_reason,
                )
            except Exception as e:
                self.db.rollback()
                self.collector.record_fatal(e, self.current_kind)
                self._finalize(MigrationRunStatus.aborted, f"Internal error: {type(e).__name__}")
                raise

            return self._finalize(status, abort_reason)
        finally:
            self.adapter.close()
            if holds_lock:
                locks.release_lock(self.db, self.org_id, self.migration_id)

    def _elapsed(self) -> float:
        return self.clock() - (self._started or 0.0)

    def _time_remaining(self) -> float:
        return self.max_duration_seconds - self._elapsed()

    def _in_date_window(self, entity: CanonicalEntity) -> bool:
        after, before = self.options.created_after, self.options.created_before
        if after is None and before is None:
            return True
        # records without a source timestamp are never filtered out
        created = _created_at(entity)
        if created is None:
            return True
        if after is not None and created < _as_utc(after):
            return False
        return before is None or created < _as_utc(before)

    def _check_deadline(self) -> None:
        elapsed = self._elapsed()
        if elapsed > self.max_duration_seconds:
            raise MigrationTimeoutError(
                f"Migration exceeded {self.max_duration_seconds:.0f}s time budget",
                elapsed_seconds=elapsed,
            )

    def _import_kind(self, kind: EntityKind) -> None:
        cursor: str | None = None
        processed = 0
        limit = self.options.max_records
        while True:
            self._check_deadline()
            page = self.adapter.fetch_page(kind, cursor)

            for bad in page.malformed:
                self.collector.record(kind, bad.external_id, RecordMappingError(bad.message))

            for record in page.records:
                if limit is not None and processed >= limit:
                    return
                self._check_deadline()
                self._process_record(kind, record)
                processed += 1

            if page.next_cursor is None or (limit is not None and processed >= limit):
                return
            cursor = page.next_cursor

    def _process_record(self, kind: EntityKind, record: ProviderRecord) -> None:
        try:
            entity = self.adapter.map_record(record, self.org_id)
            if entity is None:
                self.stats.record_skip(kind, SkipReason.excluded)
                return
            if not self._in_date_window(entity):
                self.stats.record_skip(kind, SkipReason.filtered)
                return
            resolution = self.resolver.resolve(kind, entity.external_id)
            result = self.writer.write(entity, resolution)
            self.stats.record(kind, result)
            if self.samples is not None:
                self.samples.add(record, entity, result)
        except RecordMappingError as e:
            context = {"field": e.field} if e.field else None
            self.collector.record(kind, record.external_id, e, context)
        except Exception as e:
            self.db.rollback()
            self.collector.record(kind, record.external_id, e)
            logger.warning(
                "migration_record_error migration_id=%s kind=%s external_id=%s error=%s",
                self.migration_id,
                kind.value,
                record.external_id,
                e,
            )

    def _finalize(self, status: MigrationRunStatus, abort_reason: str | None) -> MigrationResult:
        self.state = MigrationState.finalizing
        duration_ms = int(self._elapsed() * 1000)
        stats = self.stats.to_dict()
        errors = self.collector.to_list()
        runs.finalize_run(self.db, self.migration_id, status, stats, errors, duration_ms, abort_reason)
        self.state = MigrationState.completed if status is MigrationRunStatus.completed else MigrationState.aborted
        logger.info(
            "migration_completed migration_id=%s status=%s failed=%s errors_recorded=%s",
            self.migration_id,
            status.value,
            self.stats.failed,
            self.collector.total,
        )
        result = MigrationResult(
            success=status is MigrationRunStatus.completed,
            migration_id=str(self.migration_id),
            stats=stats,
            errors=errors,
            duration_ms=duration_ms,
            status=status.value,
            abort_reason=abort_reason,
            dry_run=self.options.dry_run,
        )
        if self.samples is not None:
            result.sample_mappings = self.samples.to_list()
            result.recommendations = build_recommendations(self.stats)
            result.estimated_duration = estimate_duration(self.stats)
        return result
