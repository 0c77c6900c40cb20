"""Destination tables for imported CRM records.

Every row is org-scoped and remembers which provider record it came from.
Cross-record links (contact_id, property_id) are plain UUID columns: the
migration engine writes one record per transaction and does not own
cross-entity constraints.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base
from app.models.migration import MigrationSource


class _ImportedRecordMixin:
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source: Mapped[MigrationSource | None] = mapped_column(Enum(MigrationSource))
    external_id: Mapped[str | None] = mapped_column(String(200))
    source_created_at: Mapped[str | None] = mapped_column(String(40))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class Contact(_ImportedRecordMixin, Base):
    __tablename__ = "contacts"
    __table_args__ = (Index("ix_contacts_org_email", "org_id", "email"),)

    first_name: Mapped[str | None] = mapped_column(String(80))
    last_name: Mapped[str | None] = mapped_column(String(80))
    company: Mapped[str | None] = mapped_column(String(160))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(40))
    mobile_phone: Mapped[str | None] = mapped_column(String(40))


class Property(_ImportedRecordMixin, Base):
    __tablename__ = "properties"

    address_line1: Mapped[str] = mapped_column(String(200), nullable=False)
    address_line2: Mapped[str | None] = mapped_column(String(200))
    city: Mapped[str | None] = mapped_column(String(120))
    state: Mapped[str | None] = mapped_column(String(80))
    postal_code: Mapped[str | None] = mapped_column(String(20))
    country: Mapped[str | None] = mapped_column(String(80))
    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))


class Lead(_ImportedRecordMixin, Base):
    __tablename__ = "leads"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    lead_source: Mapped[str | None] = mapped_column(String(120))
    description: Mapped[str | None] = mapped_column(Text)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))
    property_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))


class Claim(_ImportedRecordMixin, Base):
    __tablename__ = "claims"

    claim_number: Mapped[str] = mapped_column(String(80), nullable=False)
    carrier: Mapped[str | None] = mapped_column(String(160))
    policy_number: Mapped[str | None] = mapped_column(String(80))
    date_of_loss: Mapped[str | None] = mapped_column(String(40))
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))
    property_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))
