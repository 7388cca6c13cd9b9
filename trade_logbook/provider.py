from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from trade_logbook.exceptions import LogbookError, RemoteAPIError, ThrottledError
from trade_logbook.models import Event, event_from_raw
from trade_logbook.rate_limit import mask_secret

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.torn.com"

THROTTLE_HTTP_STATUSES = {429, 503}
# Remote error code for "Too many requests".
THROTTLE_ERROR_CODES = {5}


@dataclass(frozen=True)
class Page:
    events: list[Event]
    http_status: int = 200


@dataclass(frozen=True)
class Instrument:
    id: str
    acronym: str
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"acronym": self.acronym, "name": self.name}


class LogSource(ABC):
    @abstractmethod
    async def fetch_page(self, from_ts: int, to_ts: int) -> Page:
        """One page of events with from_ts <= timestamp <= to_ts, newest first."""
        raise NotImplementedError

    async def fetch_instruments(self) -> dict[str, Instrument]:
        return {}

    async def aclose(self) -> None:
        return None


def _check_payload(payload: Any, status: int) -> dict[str, Any]:
    if status in THROTTLE_HTTP_STATUSES:
        raise ThrottledError(f"HTTP {status}", http_status=status)
    if not isinstance(payload, dict):
        raise RemoteAPIError(None, f"unexpected response shape (HTTP {status})")
    err = payload.get("error")
    if err:
        code = err.get("code") if isinstance(err, dict) else None
        msg = (err.get("error") if isinstance(err, dict) else str(err)) or "unknown error"
        if code in THROTTLE_ERROR_CODES:
            raise ThrottledError(f"API error {code}: {msg}", http_status=status, code=code)
        raise RemoteAPIError(code, str(msg))
    if status >= 400:
        raise RemoteAPIError(status, f"HTTP error status={status}")
    return payload


@dataclass
class TornLogSource(LogSource):
    """
    HTTP log source. The API key is sent as a query parameter and is never
    included in log lines or raised messages.
    """

    api_key: str
    api_base: str = DEFAULT_API_BASE
    timeout_s: float = 30.0
    client: Optional[httpx.AsyncClient] = None
    _owns_client: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if not (self.api_key or "").strip():
            raise ValueError("An API key is required.")
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout_s)
            self._owns_client = True

    def __repr__(self) -> str:
        return f"TornLogSource(api_base={self.api_base!r}, api_key={mask_secret(self.api_key)!r})"

    async def _get(self, section: str, params: dict[str, Any]) -> tuple[dict[str, Any], int]:
        url = f"{self.api_base.rstrip('/')}/{section}/"
        client = self.client
        if client is None:
            raise LogbookError("HTTP client is not available.")
        try:
            response = await client.get(url, params={**params, "key": self.api_key}, headers={"Cache-Control": "no-store"})
        except httpx.HTTPError as exc:
            # httpx messages can embed the request URL (and thus the key).
            raise RemoteAPIError(None, f"transport error: {type(exc).__name__}") from None
        status = int(response.status_code)
        try:
            payload = response.json()
        except ValueError:
            if status in THROTTLE_HTTP_STATUSES:
                raise ThrottledError(f"HTTP {status}", http_status=status) from None
            raise RemoteAPIError(None, f"invalid JSON (HTTP {status})") from None
        return _check_payload(payload, status), status

    async def fetch_page(self, from_ts: int, to_ts: int) -> Page:
        payload, status = await self._get("user", {"selections": "log", "from": int(from_ts), "to": int(to_ts)})
        chunk = payload.get("log") or {}
        events: list[Event] = []
        if isinstance(chunk, dict):
            for log_id, entry in chunk.items():
                if not isinstance(entry, dict):
                    continue
                ev = event_from_raw(log_id, entry)
                if ev is not None:
                    events.append(ev)
        events.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
        logger.debug("Fetched log page to=%s: %s event(s) (HTTP %s)", to_ts, len(events), status)
        return Page(events=events, http_status=status)

    async def fetch_instruments(self) -> dict[str, Instrument]:
        payload, _status = await self._get("torn", {"selections": "stocks"})
        stocks = payload.get("stocks") or {}
        out: dict[str, Instrument] = {}
        if isinstance(stocks, dict):
            for sid, st in stocks.items():
                if not isinstance(st, dict):
                    continue
                acronym = str(st.get("acronym") or st.get("name") or sid)
                name = str(st.get("name") or st.get("acronym") or sid)
                out[str(sid)] = Instrument(id=str(sid), acronym=acronym, name=name)
        return out

    async def aclose(self) -> None:
        if self._owns_client and self.client is not None:
            await self.client.aclose()
