"""Writers for canonical entities.

The writer is picked once per run: CommittingWriter persists, while
SimulatingWriter runs the same lookups and classification without touching
the database. Both classify each record as created, updated or skipped.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from app.logging import get_logger
from app.models.migration import EntityKind, ExternalIdMapping
from app.services.migrations.entities import CanonicalEntity
from app.services.migrations.errors import WriteConflictError
from app.services.migrations.idempotency import IdempotencyResolver, Resolution
from app.services.migrations.stores import DEFAULT_STORES, EntityStore

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = get_logger(__name__)


class WriteOutcome(enum.Enum):
    created = "created"
    updated = "updated"
    skipped = "skipped"


class SkipReason:
    already_migrated = "already_migrated"
    duplicate = "duplicate"
    excluded = "excluded"
    filtered = "filtered"


@dataclass(frozen=True)
class WriteResult:
    outcome: WriteOutcome
    entity_id: UUID | None = None
    reason: str | None = None
    # reference column -> internal id it resolved to
    references: dict[str, UUID | None] = field(default_factory=dict)


class _Writer:
    def __init__(self, db: Session, resolver: IdempotencyResolver, migration_id: UUID | None = None):
        self.db = db
        self.resolver = resolver
        self.migration_id = migration_id
        self._seen: set[tuple[EntityKind, str]] = set()

    def write(self, entity: CanonicalEntity, resolution: Resolution) -> WriteResult:
        key = (entity.kind, entity.external_id)
        if key in self._seen:
            return WriteResult(WriteOutcome.skipped, resolution.entity_id, SkipReason.duplicate)
        self._seen.add(key)
        return self._write(entity, resolution)

    def _write(self, entity: CanonicalEntity, resolution: Resolution) -> WriteResult:
        raise NotImplementedError

    def _resolve_references(self, entity: CanonicalEntity) -> dict[str, UUID | None]:
        return {
            column: self.resolver.reference(kind, external_id)
            for column, (kind, external_id) in entity.references().items()
        }

    @staticmethod
    def _classify(resolution: Resolution, checksum: str) -> WriteOutcome:
        if not resolution.existing:
            return WriteOutcome.created
        if resolution.checksum == checksum:
            return WriteOutcome.skipped
        return WriteOutcome.updated

    def _skip_unchanged(
        self,
        entity: CanonicalEntity,
        resolution: Resolution,
        references: dict[str, UUID | None],
    ) -> WriteResult:
        self.resolver.remember(entity.kind, entity.external_id, resolution.entity_id)
        return WriteResult(WriteOutcome.skipped, resolution.entity_id, SkipReason.already_migrated, references)


class CommittingWriter(_Writer):
    """Upserts each record and its mapping in one transaction per record."""

    def __init__(
        self,
        db: Session,
        resolver: IdempotencyResolver,
        migration_id: UUID | None = None,
        stores: dict[EntityKind, EntityStore] | None = None,
    ):
        super().__init__(db, resolver, migration_id)
        self.stores = stores or DEFAULT_STORES

    def _write(self, entity: CanonicalEntity, resolution: Resolution) -> WriteResult:
        try:
            return self._commit(entity, resolution)
        except WriteConflictError:
            logger.info(
                "migration_write_conflict kind=%s external_id=%s",
                entity.kind.value,
                entity.external_id,
            )
            self.resolver.forget(entity.kind, entity.external_id)
            return self._commit(entity, self.resolver.resolve(entity.kind, entity.external_id))

    def _commit(self, entity: CanonicalEntity, resolution: Resolution) -> WriteResult:
        references = self._resolve_references(entity)
        checksum = entity.checksum(references)
        outcome = self._classify(resolution, checksum)
        if outcome is WriteOutcome.skipped:
            return self._skip_unchanged(entity, resolution, references)

        values = {**entity.fields(), **references}

        try:
            self.stores[entity.kind].upsert(self.db, entity, resolution.entity_id, values)
            mapping = self.resolver.lookup(entity.kind, entity.external_id) if resolution.existing else None
            if mapping is None:
                mapping = ExternalIdMapping(
                    org_id=entity.org_id,
                    source=entity.source,
                    entity_kind=entity.kind,
                    external_id=entity.external_id,
                    entity_id=resolution.entity_id,
                )
                self.db.add(mapping)
            mapping.checksum = checksum
            mapping.migration_id = self.migration_id
            self.db.flush()
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise WriteConflictError(
                f"Mapping for {entity.kind.value} {entity.external_id} was created concurrently"
            ) from e
        except Exception:
            self.db.rollback()
            raise

        self.resolver.remember(entity.kind, entity.external_id, resolution.entity_id)
        return WriteResult(outcome, resolution.entity_id, references=references)


class SimulatingWriter(_Writer):
    """Classifies what a committing write would do, without mutating anything."""

    def _write(self, entity: CanonicalEntity, resolution: Resolution) -> WriteResult:
        references = self._resolve_references(entity)
        outcome = self._classify(resolution, entity.checksum(references))
        if outcome is WriteOutcome.skipped:
            return self._skip_unchanged(entity, resolution, references)
        self.resolver.remember(entity.kind, entity.external_id, resolution.entity_id)
        return WriteResult(outcome, resolution.entity_id, references=references)


def writer_for_run(
    db: Session,
    resolver: IdempotencyResolver,
    dry_run: bool,
    migration_id: UUID | None = None,
    stores: dict[EntityKind, EntityStore] | None = None,
) -> _Writer:
    if dry_run:
        return SimulatingWriter(db, resolver, migration_id)
    return CommittingWriter(db, resolver, migration_id, stores=stores)
