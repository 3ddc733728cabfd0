"""Tautulli API client for the ``get_history`` command.

Expected envelope::

    {"response": {"result": "success", "data": {"data": [<history rows>]}}}
"""

from __future__ import annotations

import httpx
from pydantic import BaseModel, ValidationError

from puipr.ingest.schemas import RawObservation


class TautulliError(Exception):
    """A history fetch failed: transport, HTTP status, payload or result envelope."""


class _HistoryPage(BaseModel):
    data: list[RawObservation] = []


class _HistoryResponse(BaseModel):
    result: str = ""
    message: str | None = None
    data: _HistoryPage | None = None


class HistoryEnvelope(BaseModel):
    response: _HistoryResponse


class TautulliClient:
    """Fetches the most recent playback history rows from Tautulli."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        length: int,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.length = length
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None

    def history_params(self) -> dict[str, str]:
        """Query parameters for the newest ``length`` rows, newest first.

        Merged over any query string already on ``base_url``.
        """
        return {
            "apikey": self.api_key,
            "cmd": "get_history",
            "length": str(self.length),
            "order_column": "date",
            "order_dir": "desc",
        }

    async def fetch_history(self) -> list[RawObservation]:
        """Fetch one page of history.

        Raises:
            TautulliError: On transport errors, non-2xx responses, malformed
                payloads, or a result other than ``success``.
        """
        try:
            url = httpx.URL(self.base_url).copy_merge_params(self.history_params())
            response = await self._http.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            msg = f"tautulli request failed: {e}"
            raise TautulliError(msg) from e

        if not response.is_success:
            msg = f"tautulli http {response.status_code}: {response.text[:200]}"
            raise TautulliError(msg)

        try:
            envelope = HistoryEnvelope.model_validate_json(response.content)
        except ValidationError as e:
            msg = f"tautulli payload invalid: {e.error_count()} error(s)"
            raise TautulliError(msg) from e

        result = envelope.response.result
        if result.lower() != "success":
            msg = f"tautulli result: {result or '<empty>'}"
            if envelope.response.message:
                msg = f"{msg} ({envelope.response.message})"
            raise TautulliError(msg)

        if envelope.response.data is None:
            return []
        return envelope.response.data.data

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()
