import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class MigrationSource(enum.Enum):
    jobnimbus = "jobnimbus"
    acculynx = "acculynx"


class EntityKind(enum.Enum):
    contacts = "contacts"
    properties = "properties"
    leads = "leads"
    claims = "claims"


class MigrationRunStatus(enum.Enum):
    running = "running"
    completed = "completed"
    aborted = "aborted"


class MigrationRun(Base):
    """Audit record of one migration attempt.

    Written at run start and finalized exactly once. Credentials are never
    stored here.
    """

    __tablename__ = "migration_runs"
    __table_args__ = (Index("ix_migration_runs_org_started", "org_id", "started_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[MigrationSource] = mapped_column(Enum(MigrationSource), nullable=False)
    dry_run: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[MigrationRunStatus] = mapped_column(
        Enum(MigrationRunStatus), default=MigrationRunStatus.running, nullable=False
    )
    abort_reason: Mapped[str | None] = mapped_column(Text)
    stats: Mapped[dict | None] = mapped_column(JSON)
    errors: Mapped[list | None] = mapped_column(JSON)
    duration_ms: Mapped[int | None] = mapped_column(Integer)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class ExternalIdMapping(Base):
    """Links a provider record to the internal record it was imported as."""

    __tablename__ = "external_id_mappings"
    __table_args__ = (
        UniqueConstraint(
            "org_id",
            "source",
            "entity_kind",
            "external_id",
            name="uq_external_id_mappings_key",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[MigrationSource] = mapped_column(Enum(MigrationSource), nullable=False)
    entity_kind: Mapped[EntityKind] = mapped_column(Enum(EntityKind), nullable=False)
    external_id: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    # sha256 of the canonical entity last written for this key
    checksum: Mapped[str | None] = mapped_column(String(64))
    migration_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class MigrationLock(Base):
    """Active live-migration marker, one row per org."""

    __tablename__ = "migration_locks"

    org_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    migration_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
