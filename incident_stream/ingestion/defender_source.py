"""Microsoft 365 Defender incidents API source.

Quotas enforced upstream for the incidents API:

- maximum page size is 100 incidents
- maximum rate is 50 calls per minute and 1500 calls per hour

Required permission: ``Incident.Read.All`` (application) or
``Incident.Read`` (delegated).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from incident_stream.core.config import ClientConfig
from incident_stream.core.exceptions import SourceError, TokenError
from incident_stream.core.logging import get_logger
from incident_stream.ingestion.base import FetchOutcome, RemoteIncidentSource
from incident_stream.ingestion.watermark import format_timestamp
from incident_stream.schemas.incident import IncidentRecord

log = get_logger("ingestion.defender365")

INCIDENTS_PATH = "/api/incidents"
TOKEN_RESOURCE = "https://api.security.microsoft.com"

TokenProvider = Callable[[], Awaitable[str]]


class DefenderIncidentSource(RemoteIncidentSource):
    """Fetches incidents updated since a watermark from the 365 Defender API."""

    name = "defender365"

    def __init__(
        self,
        config: ClientConfig,
        *,
        pipeline_id: str,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.pipeline_id = pipeline_id
        self.tenant_id = config.tenant_id
        self._token_provider = token_provider or self.request_token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def fetch(self, page_size: int, since: datetime) -> FetchOutcome:
        try:
            items = await self._get_incidents(self.clamp_page_size(page_size), since)
        except SourceError as exc:
            log.error(f"Failed to fetch incidents from remote host. {exc}")
            return FetchOutcome.failed(str(exc))
        return FetchOutcome.delivered(self._wrap(items))

    async def request_token(self) -> str:
        """Obtain an access token with the client-credentials grant."""
        url = f"{self.config.login_url.rstrip('/')}/{self.config.tenant_id}/oauth2/token"
        body = {
            "resource": TOKEN_RESOURCE,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "grant_type": "client_credentials",
        }
        try:
            resp = await self._http().post(url, data=body)
        except httpx.HTTPError as exc:
            raise TokenError(f"Failed to obtain access token for service: {exc}") from exc

        payload = _json_body(resp)
        if resp.status_code != 200 or not isinstance(payload, dict) or "access_token" not in payload:
            raise TokenError(
                "Failed to obtain access token for service. "
                f"Request failed with status code {resp.status_code} and response body: {payload!r}",
                status_code=resp.status_code,
                body=payload,
            )
        return payload["access_token"]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    async def _get_incidents(self, page_size: int, since: datetime) -> List[Dict[str, Any]]:
        token = await self._token_provider()
        params = {
            "$top": page_size,
            "$filter": f"lastUpdateTime ge {format_timestamp(since)}",
        }
        try:
            resp = await self._http().get(
                INCIDENTS_PATH,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise SourceError(f"Request to {INCIDENTS_PATH} failed: {type(exc).__name__}: {exc}") from exc

        payload = _json_body(resp)
        if resp.status_code != 200:
            raise SourceError(
                f"Request failed with status code {resp.status_code} and response body {payload!r}.",
                status_code=resp.status_code,
                body=payload,
            )
        if not isinstance(payload, dict) or not isinstance(payload.get("value"), list):
            raise SourceError(f"Malformed response body, expected an object with a 'value' list: {payload!r}")
        return payload["value"]

    # -------------------------------------------------------------------------
    # Normalization
    # -------------------------------------------------------------------------
    def _wrap(self, items: List[Any]) -> List[IncidentRecord]:
        records: List[IncidentRecord] = []
        for item in items:
            if not isinstance(item, dict):
                log.warning(f"Skipping non-object incident in response: {item!r}")
                continue
            try:
                records.append(
                    IncidentRecord.from_payload(item, pipeline_id=self.pipeline_id, tenant_id=self.tenant_id)
                )
            except ValidationError as exc:
                log.warning(f"Skipping malformed incident {item.get('incidentId')}: {exc}")
        return records


def _json_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text
