"""Provider records and canonical entities.

A ProviderRecord is what an adapter hands over: one raw payload plus its
identity. Canonical entities are the provider-independent shapes the writer
persists. Canonical entities are frozen and compare by value, so the same
raw input always produces an equal entity and an equal checksum.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from dataclasses import fields as dataclass_fields
from typing import Any, ClassVar

from app.models.migration import EntityKind, MigrationSource


@dataclass(frozen=True)
class ProviderRecord:
    source: MigrationSource
    kind: EntityKind
    external_id: str
    payload: dict[str, Any] = field(repr=False)


@dataclass(frozen=True)
class MalformedRecord:
    """An item in an otherwise valid page that could not be read."""

    kind: EntityKind
    external_id: str | None
    message: str


@dataclass(frozen=True)
class CanonicalEntity:
    org_id: str
    source: MigrationSource
    external_id: str

    kind: ClassVar[EntityKind]
    # column name -> (referenced kind, attribute holding the external id)
    REFERENCES: ClassVar[dict[str, tuple[EntityKind, str]]] = {}

    _IDENTITY_FIELDS: ClassVar[frozenset[str]] = frozenset({"org_id", "source", "external_id"})

    def fields(self) -> dict[str, Any]:
        """Writable column values, excluding identity and reference ids."""
        skip = self._IDENTITY_FIELDS | {attr for _, attr in self.REFERENCES.values()}
        return {f.name: getattr(self, f.name) for f in dataclass_fields(self) if f.name not in skip}

    def references(self) -> dict[str, tuple[EntityKind, str | None]]:
        return {column: (kind, getattr(self, attr)) for column, (kind, attr) in self.REFERENCES.items()}

    def checksum(self, resolved: Mapping[str, Any] | None = None) -> str:
        """Hash of the writable fields and the references.

        ``resolved`` maps reference columns to the internal ids they pointed at
        when written, so a reference that resolves on a later run changes the
        checksum.
        """
        resolved = resolved or {}
        payload = {
            "fields": self.fields(),
            "references": {
                column: [ext_id, resolved.get(column)] for column, (_, ext_id) in self.references().items()
            },
        }
        encoded = json.dumps(payload, sort_keys=True, default=str).encode()
        return hashlib.sha256(encoded).hexdigest()


@dataclass(frozen=True)
class ContactRecord(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.contacts

    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    mobile_phone: str | None = None
    source_created_at: str | None = None


@dataclass(frozen=True)
class PropertyRecord(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.properties
    REFERENCES: ClassVar[dict[str, tuple[EntityKind, str]]] = {
        "contact_id": (EntityKind.contacts, "contact_external_id"),
    }

    address_line1: str = ""
    address_line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    contact_external_id: str | None = None
    source_created_at: str | None = None


@dataclass(frozen=True)
class LeadRecord(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.leads
    REFERENCES: ClassVar[dict[str, tuple[EntityKind, str]]] = {
        "contact_id": (EntityKind.contacts, "contact_external_id"),
        "property_id": (EntityKind.properties, "property_external_id"),
    }

    title: str = ""
    status: str = "NEW"
    lead_source: str | None = None
    description: str | None = None
    contact_external_id: str | None = None
    property_external_id: str | None = None
    source_created_at: str | None = None


@dataclass(frozen=True)
class ClaimRecord(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.claims
    REFERENCES: ClassVar[dict[str, tuple[EntityKind, str]]] = {
        "contact_id": (EntityKind.contacts, "contact_external_id"),
        "property_id": (EntityKind.properties, "property_external_id"),
    }

    claim_number: str = ""
    carrier: str | None = None
    policy_number: str | None = None
    date_of_loss: str | None = None
    status: str = "NEW"
    contact_external_id: str | None = None
    property_external_id: str | None = None
    source_created_at: str | None = None
