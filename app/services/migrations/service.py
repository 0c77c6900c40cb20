"""Entry point for migration triggers.

The caller has already authenticated the requester and checked that they
hold an admin role for ``org_id``; both ids are trusted here.

Usage:
    from app.services.migrations import run_migration

    response = run_migration(db, org_id, user_id, "jobnimbus", MigrationRequest(apiKey=key))
    return response.to_payload()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from app.logging import get_logger
from app.schemas.migrations import MigrationRequest, MigrationResponse
from app.services.migrations.adapters import build_adapter, parse_source
from app.services.migrations.client import ProviderCredentials
from app.services.migrations.orchestrator import MigrationOptions, MigrationOrchestrator

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.models.migration import EntityKind
    from app.services.migrations.stores import EntityStore

logger = get_logger(__name__)


def run_migration(
    db: Session,
    org_id: str,
    user_id: str,
    source: str,
    request: MigrationRequest,
    stores: dict[EntityKind, EntityStore] | None = None,
    **client_options: Any,
) -> MigrationResponse:
    """Run one migration and build the trigger response.

    Every run that starts ends in a response, ``ok=false`` with partial stats
    when it aborts. The two errors below are raised before a run starts; no
    run row exists for them and the trigger answers them itself (an
    unsupported source is a bad request; a migration in progress is a
    conflict, and ``MigrationInProgressError.migration_id`` names the run
    holding the lock).

    Raises:
        UnsupportedSourceError: If ``source`` has no adapter
        MigrationInProgressError: If a live migration is already running for the org
    """
    resolved = parse_source(source)
    credentials = ProviderCredentials(
        api_key=request.api_key.get_secret_value(),
        base_url=request.base_url,
    )
    adapter = build_adapter(resolved, credentials, **client_options)
    del credentials

    date_filter = request.options.date_filter
    options = MigrationOptions(
        dry_run=request.dry_run,
        skip_kinds=frozenset(request.options.skip_kinds),
        max_records=request.options.max_records,
        created_after=date_filter.after if date_filter else None,
        created_before=date_filter.before if date_filter else None,
    )
    logger.info(
        "migration_requested org_id=%s user_id=%s source=%s dry_run=%s",
        org_id,
        user_id,
        resolved.value,
        request.dry_run,
    )
    result = MigrationOrchestrator(db, org_id, user_id, adapter, options, stores=stores).run()

    return MigrationResponse(
        ok=result.success,
        migration_id=result.migration_id,
        stats=result.stats,
        errors=result.errors,
        duration_ms=result.duration_ms,
        status=result.status,
        abort_reason=result.abort_reason,
        dry_run=result.dry_run,
        sample_mappings=result.sample_mappings,
        recommendations=result.recommendations,
        estimated_duration=result.estimated_duration,
    )
