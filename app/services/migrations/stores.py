"""Destination stores for canonical entities.

The engine needs one capability per entity kind: upsert a record by its
internal id. ModelEntityStore provides it on top of the SQLAlchemy tables in
app.models.records; other stores only need the same ``upsert`` signature.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol
from uuid import UUID

from app.models.migration import EntityKind
from app.models.records import Claim, Contact, Lead, Property
from app.services.migrations.entities import CanonicalEntity

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class EntityStore(Protocol):
    def upsert(self, db: Session, entity: CanonicalEntity, entity_id: UUID, values: dict[str, Any]) -> None: ...


class ModelEntityStore:
    def __init__(self, model: type):
        self.model = model

    def upsert(self, db: Session, entity: CanonicalEntity, entity_id: UUID, values: dict[str, Any]) -> None:
        record = db.get(self.model, entity_id)
        if record is None:
            record = self.model(
                id=entity_id,
                org_id=entity.org_id,
                source=entity.source,
                external_id=entity.external_id,
                **values,
            )
            db.add(record)
        else:
            if record.org_id != entity.org_id:
                raise ValueError(f"{self.model.__tablename__} {entity_id} belongs to another org")
            for key, value in values.items():
                setattr(record, key, value)
        db.flush()


DEFAULT_STORES: dict[EntityKind, EntityStore] = {
    EntityKind.contacts: ModelEntityStore(Contact),
    EntityKind.properties: ModelEntityStore(Property),
    EntityKind.leads: ModelEntityStore(Lead),
    EntityKind.claims: ModelEntityStore(Claim),
}
