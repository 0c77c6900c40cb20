from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

from app.models.migration import EntityKind


class DateFilter(BaseModel):
    """Source creation window. ``after`` is inclusive, ``before`` exclusive."""

    model_config = ConfigDict(extra="forbid")

    after: datetime | None = None
    before: datetime | None = None

    @field_validator("after", "before")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @model_validator(mode="after")
    def _check_window(self) -> DateFilter:
        if self.after and self.before and self.after >= self.before:
            raise ValueError("dateFilter.after must be earlier than dateFilter.before")
        return self


class MigrationRequestOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    skip_kinds: list[EntityKind] = Field(default_factory=list, alias="skipKinds")
    max_records: int | None = Field(default=None, ge=1, le=100_000, alias="maxRecords")
    date_filter: DateFilter | None = Field(default=None, alias="dateFilter")


class MigrationRequest(BaseModel):
    """Trigger payload. ``apiKey`` lives only as long as the run."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    api_key: SecretStr = Field(alias="apiKey")
    base_url: str | None = Field(default=None, max_length=500, alias="baseUrl")
    dry_run: bool = Field(default=False, alias="dryRun")
    options: MigrationRequestOptions = Field(default_factory=MigrationRequestOptions)

    @field_validator("api_key")
    @classmethod
    def _require_api_key(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("API key is required")
        return value

    @field_validator("base_url")
    @classmethod
    def _normalize_base_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            return None
        if not stripped.startswith(("https://", "http://")):
            raise ValueError("baseUrl must be an http(s) URL")
        return stripped.rstrip("/")


class KindStatsRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    skipped_reasons: dict[str, int] = Field(default_factory=dict, alias="skippedReasons")


class MigrationErrorRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entity_kind: str | None = Field(default=None, alias="entityKind")
    external_id: str | None = Field(default=None, alias="externalId")
    error_type: str = Field(alias="errorType")
    message: str
    context: dict[str, Any] = Field(default_factory=dict)


class SampleMappingRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entity_kind: str = Field(alias="entityKind")
    external_id: str = Field(alias="externalId")
    outcome: str
    external: dict[str, Any] = Field(default_factory=dict)
    internal: dict[str, Any] = Field(default_factory=dict)


class MigrationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool
    migration_id: str = Field(alias="migrationId")
    stats: dict[str, KindStatsRead]
    errors: list[MigrationErrorRead] = Field(default_factory=list)
    duration_ms: int = Field(alias="durationMs")
    status: str
    abort_reason: str | None = Field(default=None, alias="abortReason")
    dry_run: bool = Field(default=False, alias="dryRun")
    # dry runs only
    sample_mappings: list[SampleMappingRead] = Field(default_factory=list, alias="sampleMappings")
    recommendations: list[str] = Field(default_factory=list)
    estimated_duration: str | None = Field(default=None, alias="estimatedDuration")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
