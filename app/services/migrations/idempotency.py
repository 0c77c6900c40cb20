"""External id to internal identity resolution.

Every imported record is keyed by (org, source, entity kind, external id).
The ExternalIdMapping table holds at most one internal id per key; new
identities are derived from the key itself so two runs that race on the same
record still converge on one internal id.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from app.logging import get_logger
from app.models.migration import EntityKind, ExternalIdMapping, MigrationSource

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = get_logger(__name__)

IDENTITY_NAMESPACE = uuid.UUID("6f1c1f0e-8d1b-4b43-9a55-3c0d7f4e2a91")


def allocate_identity(org_id: str, source: MigrationSource, kind: EntityKind, external_id: str) -> uuid.UUID:
    return uuid.uuid5(IDENTITY_NAMESPACE, f"{org_id}:{source.value}:{kind.value}:{external_id}")


@dataclass(frozen=True)
class Resolution:
    entity_id: uuid.UUID
    existing: bool
    checksum: str | None = None


class IdempotencyResolver:
    """Resolves provider records to internal ids for one run.

    ``resolve`` never writes: a new identity is only persisted by the
    committing writer, together with the record it identifies.
    """

    def __init__(self, db: Session, org_id: str, source: MigrationSource):
        self.db = db
        self.org_id = org_id
        self.source = source
        # identities written (or simulated) earlier in this run
        self._remembered: dict[tuple[EntityKind, str], uuid.UUID] = {}

    def lookup(self, kind: EntityKind, external_id: str) -> ExternalIdMapping | None:
        return (
            self.db.query(ExternalIdMapping)
            .filter(ExternalIdMapping.org_id == self.org_id)
            .filter(ExternalIdMapping.source == self.source)
            .filter(ExternalIdMapping.entity_kind == kind)
            .filter(ExternalIdMapping.external_id == external_id)
            .first()
        )

    def resolve(self, kind: EntityKind, external_id: str) -> Resolution:
        mapping = self.lookup(kind, external_id)
        if mapping:
            return Resolution(mapping.entity_id, True, mapping.checksum)
        entity_id = self._remembered.get((kind, external_id)) or allocate_identity(
            self.org_id, self.source, kind, external_id
        )
        return Resolution(entity_id, False)

    def remember(self, kind: EntityKind, external_id: str, entity_id: uuid.UUID) -> None:
        self._remembered[(kind, external_id)] = entity_id

    def forget(self, kind: EntityKind, external_id: str) -> None:
        self._remembered.pop((kind, external_id), None)

    def reference(self, kind: EntityKind, external_id: str | None) -> uuid.UUID | None:
        """Internal id of a referenced record, if it has been imported."""
        if not external_id:
            return None
        remembered = self._remembered.get((kind, external_id))
        if remembered:
            return remembered
        mapping = self.lookup(kind, external_id)
        return mapping.entity_id if mapping else None
