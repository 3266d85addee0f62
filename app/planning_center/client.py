# app/planning_center/client.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from app.planning_center.errors import (
    NETWORK,
    NOT_FOUND,
    RATE_LIMITED,
    PCOError,
    kind_for_status,
)

log = logging.getLogger(__name__)

PCO_BASE = "https://api.planningcenteronline.com"
MAX_PER_PAGE = 100  # PCO max per_page

Sleep = Callable[[float], Awaitable[Any]]


def _retry_after_seconds(resp: httpx.Response) -> float:
    raw = resp.headers.get("retry-after")
    if not raw:
        return 0.0
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return 0.0


class PCOClient:
    """
    Async Planning Center client.
      - basic auth (app id / secret)
      - 429: wait Retry-After if given, else base_delay * 2**attempt
      - other failures: constant base_delay
      - 404: raise immediately
    Retry state lives inside one request() call.
    """

    def __init__(
        self,
        app_id: str,
        secret: str,
        *,
        base_url: str = PCO_BASE,
        max_retries: int = 8,
        base_delay: float = 3.0,
        page_delay: float = 0.1,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.page_delay = page_delay
        self._sleep = sleep or asyncio.sleep
        self._http = httpx.AsyncClient(
            base_url=base_url,
            auth=(app_id, secret),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "PCOClient":
        return cls(
            settings.PLANNING_CENTER_APP_ID,
            settings.PLANNING_CENTER_SECRET,
            base_url=settings.PLANNING_CENTER_BASE_URL,
            max_retries=settings.PCO_MAX_RETRIES,
            base_delay=settings.PCO_BASE_DELAY_SECONDS,
            page_delay=settings.PCO_PAGE_DELAY_SECONDS,
            timeout=settings.PCO_TIMEOUT_SECONDS,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "PCOClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET path (relative or absolute next-link URL) and return the parsed JSON body."""
        attempt = 0
        while True:
            try:
                r = await self._http.get(path, params=params)
            except httpx.TransportError as e:
                err = PCOError(f"GET {path} failed: {e.__class__.__name__}: {e}", kind=NETWORK, path=path)
                wait = self.base_delay
            else:
                if r.is_success:
                    return r.json()

                kind = kind_for_status(r.status_code)
                err = PCOError(
                    f"GET {path} returned {r.status_code}: {r.text[:200]}",
                    kind=kind,
                    status_code=r.status_code,
                    path=path,
                )
                if kind == NOT_FOUND:
                    raise err
                if kind == RATE_LIMITED:
                    wait = _retry_after_seconds(r) or self.base_delay * (2 ** attempt)
                else:
                    wait = self.base_delay

            if attempt >= self.max_retries:
                log.warning("[pco] giving up on %s after %d retries (%s)", path, attempt, err.kind)
                raise err

            if err.kind == RATE_LIMITED:
                log.info("[pco] rate limited on %s; waiting %.1fs (%d retries left)",
                         path, wait, self.max_retries - attempt - 1)
            else:
                log.info("[pco] %s on %s; retrying in %.1fs (%d retries left)",
                         err.kind, path, wait, self.max_retries - attempt - 1)
            await self._sleep(wait)
            attempt += 1

    async def paginate(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Follow `links.next` (absolute URL) or `meta.next.offset` until exhausted.
        Returns {"data": [...all pages], "included": [...], "meta": first page meta}.
        """
        data: List[dict] = []
        included: List[dict] = []

        payload = await self.request(path, params)
        meta = payload.get("meta") or {}
        pages = 1
        while True:
            data.extend(payload.get("data") or [])
            included.extend(payload.get("included") or [])

            next_url = (payload.get("links") or {}).get("next")
            next_offset = ((payload.get("meta") or {}).get("next") or {}).get("offset")
            if next_url:
                next_path, next_params = next_url, None
            elif next_offset is not None:
                next_path, next_params = path, {**(params or {}), "offset": next_offset}
            else:
                break

            await self._sleep(self.page_delay)
            payload = await self.request(next_path, next_params)
            pages += 1

        if pages > 1:
            log.debug("[pco] %s: %d pages, %d items", path, pages, len(data))
        return {"data": data, "included": included, "meta": meta}
