"""AccuLynx source adapter.

AccuLynx REST API (v2):
- Auth header ``Authorization: Bearer <api key>``
- Page-index pagination with ``pageStartIndex`` and ``pageSize``
- List responses are ``{"count": <total>, "pageStartIndex": n, "items": [...]}``
- Record ids live in ``id``
"""

from __future__ import annotations

from typing import Any

from app.config import settings
from app.logging import get_logger
from app.models.migration import EntityKind, MigrationSource
from app.services.migrations.client import Page, ProviderClient, ProviderCredentials, build_page
from app.services.migrations.errors import ProviderError

logger = get_logger(__name__)

ENDPOINTS = {
    EntityKind.contacts: "/contacts",
    EntityKind.properties: "/jobs",
    EntityKind.leads: "/leads",
    EntityKind.claims: "/jobs",
}


class AccuLynxClient(ProviderClient):
    source = MigrationSource.acculynx
    default_base_url = settings.acculynx_base_url

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._credentials.api_key}"}

    def fetch_page(self, kind: EntityKind, cursor: str | None) -> Page:
        path = ENDPOINTS[kind]
        start = int(cursor or 0)
        data: Any = self._request(
            "GET",
            path,
            params={"pageStartIndex": start, "pageSize": self.page_size},
        )
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise ProviderError(f"Unexpected AccuLynx response shape for {path}")

        items = data["items"]
        total = data.get("count")
        next_start = start + len(items)
        if isinstance(total, int):
            done = not items or next_start >= total
        else:
            done = not items or len(items) < self.page_size
        logger.debug(
            "acculynx_page kind=%s start=%s items=%s total=%s",
            kind.value,
            start,
            len(items),
            total,
        )
        return build_page(self.source, kind, items, "id", None if done else str(next_start))


def create_client(credentials: ProviderCredentials, **options: Any) -> AccuLynxClient:
    return AccuLynxClient(credentials, **options)
