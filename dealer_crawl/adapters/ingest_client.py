"""
Ingest collaborator client.

The record warehouse owns dedup and merge-by-identity. This client only
posts a target's passed records and reads back created/updated counts.
"""
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import httpx

from dealer_crawl.config import config
from dealer_crawl.models.records import RawCandidateRecord
from dealer_crawl.utils.logger import LayerLogger


class IngestError(Exception):
    """Raised when the warehouse rejects a batch or cannot be reached."""


@dataclass
class IngestResult:
    created: int = 0
    updated: int = 0

    @property
    def ingested(self) -> int:
        return self.created + self.updated


class IngestCollaborator(Protocol):
    async def ingest(self, target_slug: str, records: Sequence[RawCandidateRecord]) -> IngestResult: ...


def source_name(target_slug: str) -> str:
    return f"dealer_site:{target_slug}"


class HttpIngestClient:
    """Posts listing batches to the warehouse ingest endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or config.INGEST_URL
        self.api_key = api_key or config.INGEST_API_KEY
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.transport = transport
        self.logger = LayerLogger("ingest_client")

    def is_configured(self) -> bool:
        return bool(self.url and self.api_key)

    async def ingest(self, target_slug: str, records: Sequence[RawCandidateRecord]) -> IngestResult:
        if not self.is_configured():
            raise IngestError(f"Ingest not configured: missing {', '.join(config.get_missing_ingest_vars())}")

        payload = {
            "source_name": source_name(target_slug),
            "listings": [r.to_ingest_payload() for r in records],
        }

        self.logger.log_action("ingest_batch", "started", target=target_slug, listings=len(records))

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise IngestError(f"Ingest request failed: {e}") from e

        if response.status_code >= 400:
            raise IngestError(f"Ingest failed: HTTP {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise IngestError("Ingest returned invalid JSON") from e

        result = IngestResult(
            created=int(body.get("created") or 0),
            updated=int(body.get("updated") or 0),
        )

        self.logger.log_action(
            "ingest_batch",
            "completed",
            target=target_slug,
            created=result.created,
            updated=result.updated,
        )
        return result
