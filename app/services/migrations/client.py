"""Shared HTTP plumbing for provider adapters.

Provides:
- Scoped credentials that never show up in reprs or logs
- One httpx client per run, closed when the run ends
- Capped exponential backoff on 429 / 5xx / network failures
- Page assembly that isolates malformed items

Usage:
    with JobNimbusClient(credentials) as client:
        page = client.fetch_page(EntityKind.contacts, cursor=None)
        for record in page.records:
            ...
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.config import settings
from app.logging import get_logger
from app.models.migration import EntityKind, MigrationSource
from app.services.migrations.entities import MalformedRecord, ProviderRecord
from app.services.migrations.errors import (
    CredentialError,
    MigrationTimeoutError,
    ProviderError,
    RetryBudgetExhaustedError,
    TransientProviderError,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderCredentials:
    """API key for a single run. Held in memory only."""

    api_key: str = field(repr=False)
    base_url: str | None = None


@dataclass(frozen=True)
class Page:
    records: list[ProviderRecord]
    malformed: list[MalformedRecord] = field(default_factory=list)
    next_cursor: str | None = None

    @property
    def done(self) -> bool:
        return self.next_cursor is None


def build_page(
    source: MigrationSource,
    kind: EntityKind,
    items: Iterable[Any],
    id_field: str,
    next_cursor: str | None,
) -> Page:
    """Split raw page items into readable records and malformed ones."""
    records: list[ProviderRecord] = []
    malformed: list[MalformedRecord] = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            malformed.append(
                MalformedRecord(kind, None, f"Item {position} is {type(item).__name__}, expected an object")
            )
            continue
        external_id = item.get(id_field)
        if external_id is None or not str(external_id).strip():
            malformed.append(MalformedRecord(kind, None, f"Item {position} has no '{id_field}'"))
            continue
        records.append(ProviderRecord(source, kind, str(external_id).strip(), item))
    return Page(records=records, malformed=malformed, next_cursor=next_cursor)


class ProviderClient:
    """Base HTTP client for a provider REST API.

    Subclasses set ``source`` and ``default_base_url`` and implement
    ``_auth_headers`` and ``fetch_page``.
    """

    source: MigrationSource
    default_base_url: str = ""

    def __init__(
        self,
        credentials: ProviderCredentials,
        page_size: int | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        retry_max_delay: float | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (credentials.base_url or self.default_base_url).rstrip("/")
        self.page_size = page_size or settings.migration_page_size
        self.timeout = timeout if timeout is not None else settings.migration_http_timeout
        self.max_retries = max_retries if max_retries is not None else settings.migration_max_retries
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.migration_retry_base_delay
        )
        self.retry_max_delay = retry_max_delay if retry_max_delay is not None else settings.migration_retry_max_delay
        self._credentials = credentials
        self._transport = transport
        self._sleep = sleep
        self._time_remaining: Callable[[], float] | None = None
        self._client: httpx.Client | None = None

    def bind_deadline(self, time_remaining: Callable[[], float]) -> None:
        """Bound retry waits by the run's remaining wall-clock seconds."""
        self._time_remaining = time_remaining

    def _auth_headers(self) -> dict[str, str]:
        raise NotImplementedError

    def fetch_page(self, kind: EntityKind, cursor: str | None) -> Page:
        raise NotImplementedError

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    **self._auth_headers(),
                    "Accept": "application/json",
                    "User-Agent": "CRM-Migrations/1.0",
                },
            )
        return self._client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None
        # drop the key with the connection; the client is single-use
        self._credentials = ProviderCredentials(api_key="", base_url=self._credentials.base_url)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def _backoff_delay(self, attempt: int, retry_after: str | None = None) -> float:
        if retry_after:
            try:
                return min(max(float(retry_after), 0.0), self.retry_max_delay)
            except ValueError:
                pass
        return min(self.retry_base_delay * (2**attempt), self.retry_max_delay)

    def _request(self, method: str, path: str, params: dict | None = None) -> Any:
        """Make an HTTP request with retry logic.

        Raises:
            CredentialError: On 401/403
            RetryBudgetExhaustedError: When 429/5xx/network failures persist
            MigrationTimeoutError: When the bound deadline passes while retrying
            ProviderError: On any other 4xx or a non-JSON body
        """
        client = self._get_client()
        last_error: TransientProviderError | None = None

        for attempt in range(self.max_retries + 1):
            retry_after: str | None = None
            try:
                response = client.request(method, path, params=params)
            except httpx.TransportError as e:
                last_error = TransientProviderError(f"Request failed: {e.__class__.__name__}")
            else:
                status = response.status_code
                if status in (401, 403):
                    raise CredentialError(
                        f"{self.source.value} rejected the API key ({status})",
                        status_code=status,
                    )
                if status == 429 or status >= 500:
                    retry_after = response.headers.get("Retry-After")
                    last_error = TransientProviderError(
                        "Rate limit exceeded" if status == 429 else f"Server error ({status})",
                        status_code=status,
                    )
                elif status >= 400:
                    raise ProviderError(
                        f"API error ({status}) for {path}",
                        status_code=status,
                        response=_safe_json(response),
                    )
                else:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise ProviderError(f"Invalid JSON from {path}", status_code=status) from e

            if attempt >= self.max_retries:
                break
            wait_time = self._backoff_delay(attempt, retry_after)
            if self._time_remaining is not None:
                remaining = self._time_remaining()
                if remaining <= 0:
                    raise MigrationTimeoutError(
                        f"Time budget ran out while retrying {self.source.value} request to {path}: {last_error}"
                    )
                wait_time = min(wait_time, remaining)
            logger.warning(
                "migration_provider_retry source=%s path=%s attempt=%s wait=%.2fs error=%s",
                self.source.value,
                path,
                attempt + 1,
                wait_time,
                last_error,
            )
            self._sleep(wait_time)

        raise RetryBudgetExhaustedError(
            f"{self.source.value} request to {path} failed after {self.max_retries + 1} attempts: {last_error}",
            attempts=self.max_retries + 1,
            status_code=last_error.status_code if last_error else None,
        )


def _safe_json(response: httpx.Response) -> dict | None:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
