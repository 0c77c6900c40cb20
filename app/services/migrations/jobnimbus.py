"""JobNimbus source adapter.

JobNimbus REST API (api1):
- Auth header ``Authorization: bearer <api key>``
- Offset pagination with ``from`` and ``size``
- List responses are ``{"count": <total>, "results": [...]}``
- Record ids live in ``jnid``

Contacts come from /contacts; properties, leads and claims are all views of
/jobs.
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
    EntityKind.leads: "/jobs",
    EntityKind.claims: "/jobs",
}


class JobNimbusClient(ProviderClient):
    source = MigrationSource.jobnimbus
    default_base_url = settings.jobnimbus_base_url

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"bearer {self._credentials.api_key}"}

    def fetch_page(self, kind: EntityKind, cursor: str | None) -> Page:
        path = ENDPOINTS[kind]
        offset = int(cursor or 0)
        data: Any = self._request("GET", path, params={"from": offset, "size": self.page_size})
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise ProviderError(f"Unexpected JobNimbus response shape for {path}")

        items = data["results"]
        total = data.get("count")
        next_offset = offset + len(items)
        done = (
            not items
            or len(items) < self.page_size
            or (isinstance(total, int) and next_offset >= total)
        )
        logger.debug(
            "jobnimbus_page kind=%s offset=%s items=%s total=%s",
            kind.value,
            offset,
            len(items),
            total,
        )
        return build_page(self.source, kind, items, "jnid", None if done else str(next_offset))


def create_client(credentials: ProviderCredentials, **options: Any) -> JobNimbusClient:
    return JobNimbusClient(credentials, **options)
