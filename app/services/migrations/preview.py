"""Dry-run preview.

A dry run reports, next to its stats:
- A few sample mappings per kind (raw provider fields next to the row that
  would be written)
- Recommendations derived from the stats
- A rough estimate of how long the committed import will take
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from app.models.migration import EntityKind
from app.services.migrations.entities import CanonicalEntity, ProviderRecord
from app.services.migrations.stats import CONTEXT_MAX_VALUE_LENGTH, MigrationStats
from app.services.migrations.writers import SkipReason, WriteResult

SAMPLE_LIMITS: dict[EntityKind, int] = {
    EntityKind.contacts: 5,
    EntityKind.properties: 3,
    EntityKind.leads: 3,
    EntityKind.claims: 3,
}
EXTERNAL_MAX_FIELDS = 12

JOB_KINDS = (EntityKind.properties, EntityKind.leads, EntityKind.claims)
CONTACTS_PER_MINUTE = 100
JOBS_PER_MINUTE = 50

LARGE_CONTACT_LIST = 5000
HIGH_DUPLICATE_PERCENT = 20
MANY_VALIDATION_ERRORS = 10


@dataclass(frozen=True)
class SampleMapping:
    entity_kind: EntityKind
    external_id: str
    outcome: str
    external: dict[str, Any] = field(default_factory=dict)
    internal: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_kind": self.entity_kind.value,
            "external_id": self.external_id,
            "outcome": self.outcome,
            "external": self.external,
            "internal": self.internal,
        }


def _external_view(payload: dict[str, Any]) -> dict[str, Any]:
    view: dict[str, Any] = {}
    for key, value in payload.items():
        if len(view) >= EXTERNAL_MAX_FIELDS:
            break
        if isinstance(value, str):
            view[str(key)] = value[:CONTEXT_MAX_VALUE_LENGTH]
        elif value is None or isinstance(value, (bool, int, float)):
            view[str(key)] = value
    return view


class SampleCollector:
    """Keeps the first few mapped records of each kind."""

    def __init__(self, limits: dict[EntityKind, int] | None = None):
        self.limits = limits if limits is not None else SAMPLE_LIMITS
        self._samples: list[SampleMapping] = []
        self._counts: Counter = Counter()

    def add(self, record: ProviderRecord, entity: CanonicalEntity, result: WriteResult) -> None:
        if self._counts[entity.kind] >= self.limits.get(entity.kind, 0):
            return
        if result.reason == SkipReason.duplicate:
            return
        self._counts[entity.kind] += 1

        internal: dict[str, Any] = {"id": str(result.entity_id) if result.entity_id else None}
        internal.update(entity.fields())
        for column, entity_id in result.references.items():
            internal[column] = str(entity_id) if entity_id else None
        self._samples.append(
            SampleMapping(
                entity_kind=entity.kind,
                external_id=entity.external_id,
                outcome=result.outcome.value,
                external=_external_view(record.payload),
                internal=internal,
            )
        )

    def to_list(self) -> list[dict[str, Any]]:
        return [sample.to_dict() for sample in self._samples]


def _kind_total(stats: MigrationStats, kind: EntityKind) -> int:
    kind_stats = stats.by_kind.get(kind)
    return kind_stats.total if kind_stats else 0


def estimate_duration(stats: MigrationStats) -> str:
    """Minutes (or hours) a committed import of the previewed records needs."""
    contacts = _kind_total(stats, EntityKind.contacts)
    jobs = max(_kind_total(stats, kind) for kind in JOB_KINDS)
    minutes = math.ceil(contacts / CONTACTS_PER_MINUTE + jobs / JOBS_PER_MINUTE)
    if minutes < 60:
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    hours = math.ceil(minutes / 60)
    return f"{hours} hour" if hours == 1 else f"{hours} hours"


def build_recommendations(stats: MigrationStats) -> list[str]:
    recommendations: list[str] = []
    processed = sum(kind_stats.total for kind_stats in stats.by_kind.values())
    if not processed:
        recommendations.append("No records were found for the selected entity kinds.")
        return recommendations

    already_imported = sum(
        kind_stats.skipped_reasons[SkipReason.already_migrated] + kind_stats.skipped_reasons[SkipReason.duplicate]
        for kind_stats in stats.by_kind.values()
    )
    duplicate_percent = round(already_imported * 100 / processed)
    if duplicate_percent > HIGH_DUPLICATE_PERCENT:
        recommendations.append(
            f"{duplicate_percent}% of records are already imported or duplicated. "
            "Only changed records will be written."
        )

    if _kind_total(stats, EntityKind.contacts) > LARGE_CONTACT_LIST:
        recommendations.append("Large contact list. Consider importing in batches by date range.")

    if stats.failed > MANY_VALIDATION_ERRORS:
        recommendations.append(f"{stats.failed} records have validation issues. Review them before importing.")

    return recommendations
