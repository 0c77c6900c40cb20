"""Source adapter registry.

A SourceAdapter bundles the two provider-specific capabilities the
orchestrator needs (fetch a page, map a record) behind one value selected by
MigrationSource. Adding a provider means adding a client module and its
mappers, then registering it here.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from app.models.migration import EntityKind, MigrationSource
from app.services.migrations import acculynx, jobnimbus
from app.services.migrations.client import Page, ProviderClient, ProviderCredentials
from app.services.migrations.entities import CanonicalEntity, ProviderRecord
from app.services.migrations.errors import UnsupportedSourceError
from app.services.migrations.mappers import map_record


@dataclass(frozen=True)
class SourceAdapter:
    source: MigrationSource
    fetch_page: Callable[[EntityKind, str | None], Page]
    map_record: Callable[[ProviderRecord, str], CanonicalEntity | None]
    close: Callable[[], None] = lambda: None
    # receives a callable returning the run's remaining seconds
    bind_deadline: Callable[[Callable[[], float]], None] = lambda time_remaining: None


CLIENT_FACTORIES: dict[MigrationSource, Callable[..., ProviderClient]] = {
    MigrationSource.jobnimbus: jobnimbus.create_client,
    MigrationSource.acculynx: acculynx.create_client,
}


def parse_source(value: str | MigrationSource) -> MigrationSource:
    if isinstance(value, MigrationSource):
        return value
    try:
        return MigrationSource((value or "").strip().lower())
    except ValueError as e:
        raise UnsupportedSourceError(f"Unsupported migration source: {value}") from e


def build_adapter(
    source: str | MigrationSource,
    credentials: ProviderCredentials,
    **client_options: Any,
) -> SourceAdapter:
    """Build the adapter for a provider.

    Args:
        source: Provider discriminator ("jobnimbus", "acculynx")
        credentials: Run-scoped API key and optional base URL override
        client_options: Passed to the provider client (page_size, transport, sleep, ...)
    """
    resolved = parse_source(source)
    factory = CLIENT_FACTORIES.get(resolved)
    if factory is None:
        raise UnsupportedSourceError(f"Unsupported migration source: {resolved.value}")
    client = factory(credentials, **client_options)
    return SourceAdapter(
        source=resolved,
        fetch_page=client.fetch_page,
        map_record=map_record,
        close=client.close,
        bind_deadline=client.bind_deadline,
    )
