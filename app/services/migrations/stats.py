"""Per-kind counters and the capped error sample for a migration run."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from app.config import settings
from app.logging import get_logger
from app.models.migration import EntityKind
from app.services.migrations.writers import WriteOutcome, WriteResult

logger = get_logger(__name__)

CONTEXT_MAX_KEYS = 10
CONTEXT_MAX_VALUE_LENGTH = 200


@dataclass
class KindStats:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    skipped_reasons: Counter = field(default_factory=Counter)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "skipped_reasons": dict(sorted(self.skipped_reasons.items())),
        }


class MigrationStats:
    """Counts for every processed record. Never truncated."""

    def __init__(self, kinds: tuple[EntityKind, ...] = tuple(EntityKind)):
        self.by_kind: dict[EntityKind, KindStats] = {kind: KindStats() for kind in kinds}

    def __getitem__(self, kind: EntityKind) -> KindStats:
        return self.by_kind.setdefault(kind, KindStats())

    def record(self, kind: EntityKind, result: WriteResult) -> None:
        stats = self[kind]
        if result.outcome is WriteOutcome.created:
            stats.created += 1
        elif result.outcome is WriteOutcome.updated:
            stats.updated += 1
        else:
            self.record_skip(kind, result.reason or "unspecified")

    def record_skip(self, kind: EntityKind, reason: str) -> None:
        stats = self[kind]
        stats.skipped += 1
        stats.skipped_reasons[reason] += 1

    def record_failure(self, kind: EntityKind) -> None:
        self[kind].failed += 1

    @property
    def failed(self) -> int:
        return sum(s.failed for s in self.by_kind.values())

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {kind.value: stats.to_dict() for kind, stats in self.by_kind.items()}


@dataclass(frozen=True)
class MigrationError:
    entity_kind: EntityKind | None
    external_id: str | None
    error_type: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_kind": self.entity_kind.value if self.entity_kind else None,
            "external_id": self.external_id,
            "error_type": self.error_type,
            "message": self.message,
            "context": self.context,
        }


def _bounded_context(context: dict[str, Any] | None) -> dict[str, Any]:
    bounded: dict[str, Any] = {}
    for key, value in list((context or {}).items())[:CONTEXT_MAX_KEYS]:
        if isinstance(value, str):
            value = value[:CONTEXT_MAX_VALUE_LENGTH]
        elif not isinstance(value, (int, float, bool, type(None))):
            value = str(value)[:CONTEXT_MAX_VALUE_LENGTH]
        bounded[str(key)] = value
    return bounded


class ErrorCollector:
    """Keeps the first ``max_errors`` failures; counts all of them."""

    def __init__(self, stats: MigrationStats, max_errors: int | None = None):
        self.stats = stats
        self.max_errors = max_errors if max_errors is not None else settings.migration_max_errors
        self.total = 0
        self._errors: list[MigrationError] = []

    def record(
        self,
        kind: EntityKind,
        external_id: str | None,
        error: Exception,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Record a record-level failure."""
        self.total += 1
        self.stats.record_failure(kind)
        if len(self._errors) < self.max_errors:
            self._errors.append(
                MigrationError(
                    entity_kind=kind,
                    external_id=external_id,
                    error_type=type(error).__name__,
                    message=str(error)[:CONTEXT_MAX_VALUE_LENGTH * 2],
                    context=_bounded_context(context),
                )
            )

    def record_fatal(self, error: Exception, kind: EntityKind | None = None) -> None:
        """Record the error that aborted the run. Not counted as a failed record."""
        self.total += 1
        self._errors.insert(
            0,
            MigrationError(
                entity_kind=kind,
                external_id=None,
                error_type=type(error).__name__,
                message=str(error)[:CONTEXT_MAX_VALUE_LENGTH * 2],
            ),
        )
        del self._errors[self.max_errors :]

    @property
    def errors(self) -> list[MigrationError]:
        return list(self._errors)

    @property
    def truncated(self) -> bool:
        return self.total > len(self._errors)

    def to_list(self) -> list[dict[str, Any]]:
        return [error.to_dict() for error in self._errors]
