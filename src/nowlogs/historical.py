"""Historical (pull-model) log source.

`HistoricalSource` is the interface the engine consumes. `NowLogsApi` is the
HTTP implementation against the deployments API.

Precondition:
    Serials are monotonic with wall-clock order and identities are stable
    across the deployment's history; the engine relies on both when it
    reconciles backfills with the live feed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Final, Protocol
from urllib.parse import quote

import httpx

from .errors import SourceFetchFailure
from .serial import LogSerial

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT: Final[httpx.Timeout] = httpx.Timeout(30.0, connect=10.0)


class HistoricalSource(Protocol):
    async def fetch(
        self,
        *,
        target: str,
        instance_id: str | None,
        types: Sequence[str],
        query: str,
        since: LogSerial | None,
        until: LogSerial | None,
        limit: int,
    ) -> list[dict[str, Any]]:
        """Return a finite batch of raw log entries.

        Raises:
            SourceFetchFailure: On any network, auth, or lookup failure.
        """
        ...


def _error_description(resp: httpx.Response) -> str | None:
    try:
        payload = resp.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    err = payload.get("error")
    if isinstance(err, dict) and isinstance(err.get("message"), str):
        return err["message"]
    return None


@dataclass(slots=True)
class NowLogsApi:
    """Minimal deployments API client for the logs endpoint."""

    api_url: str
    token: str
    team_id: str | None = None
    timeout: httpx.Timeout = field(default_factory=lambda: _DEFAULT_TIMEOUT)
    transport: httpx.AsyncBaseTransport | None = None

    def _client(self) -> httpx.AsyncClient:
        # Never log these headers; they embed the token.
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Authorization": f"Bearer {self.token}"},
            timeout=self.timeout,
            transport=self.transport,
        )

    def _team_params(self) -> dict[str, str]:
        return {"teamId": self.team_id} if self.team_id else {}

    async def _get_json(
        self, client: httpx.AsyncClient, path: str, params: dict[str, Any], *, what: str
    ) -> dict[str, Any]:
        try:
            resp = await client.get(path, params=params)
        except httpx.HTTPError as e:
            raise SourceFetchFailure(f"{what} failed: network error ({e})") from e

        if resp.status_code == 404:
            raise SourceFetchFailure(f"{what} failed: not found")
        if resp.status_code >= 400:
            desc = _error_description(resp)
            raise SourceFetchFailure(
                f"{what} failed: HTTP {resp.status_code}" + (f": {desc}" if desc else "")
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise SourceFetchFailure(f"{what} failed: invalid JSON") from e
        if not isinstance(payload, dict):
            raise SourceFetchFailure(f"{what} failed: expected a JSON object")
        return payload

    async def _resolve_deployment_id(self, client: httpx.AsyncClient, host: str) -> str:
        payload = await self._get_json(
            client,
            f"/now/hosts/{quote(host, safe='')}",
            self._team_params(),
            what="Deployment lookup",
        )
        deployment = payload.get("deployment")
        if isinstance(deployment, dict):
            uid = deployment.get("uid") or deployment.get("id")
            if isinstance(uid, str) and uid:
                return uid
        raise SourceFetchFailure(f"Deployment lookup failed: no deployment for {host}")

    async def fetch(
        self,
        *,
        target: str,
        instance_id: str | None,
        types: Sequence[str],
        query: str,
        since: LogSerial | None,
        until: LogSerial | None,
        limit: int,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit, **self._team_params()}
        if instance_id:
            params["instanceId"] = instance_id
        if types:
            params["types"] = ",".join(types)
        if query:
            params["q"] = query
        if since is not None:
            params["since"] = since.value
        if until is not None:
            params["until"] = until.value

        async with self._client() as client:
            if "." in target:
                deployment_id = await self._resolve_deployment_id(client, target)
            else:
                deployment_id = target
            logger.debug(
                "fetching logs deployment=%s since=%s until=%s limit=%s",
                deployment_id,
                since,
                until,
                limit,
            )
            payload = await self._get_json(
                client,
                f"/now/deployments/{quote(deployment_id, safe='')}/logs",
                params,
                what="Logs request",
            )

        logs = payload.get("logs")
        if not isinstance(logs, list):
            raise SourceFetchFailure("Logs request failed: missing logs list")
        return [item for item in logs if isinstance(item, dict)]
