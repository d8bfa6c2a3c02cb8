"""Supabase REST (PostgREST) backend over httpx.

Endpoints used:
    POST   /rest/v1/{table}?on_conflict=a,b   - upsert (merge duplicates)
    GET    /rest/v1/{table}?col=op.value      - filtered select
    DELETE /rest/v1/{table}?col=op.value      - filtered delete

Authentication uses the project's anon key as ``apikey`` plus a bearer
token (the user's session token when available, else the anon key).
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx
from pydantic_core import to_jsonable_python

from src.services.backend import Filter, RemoteBackend
from src.wearables.errors import TransientIOError

logger = logging.getLogger("healthgenie.remote.postgrest")

_REST_PATH = "/rest/v1"


class PostgrestBackend(RemoteBackend):
    """PostgREST implementation of RemoteBackend.

    Args:
        base_url:     Supabase project URL (e.g. https://xyz.supabase.co).
        api_key:      Project anon key.
        access_token: User session token; defaults to ``api_key``.
        timeout:      Per-request timeout in seconds.
        http_client:  Optional pre-configured httpx client (for testing).
    """

    KIND = "postgrest"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("PostgrestBackend requires a base_url")
        self._base_url = base_url.rstrip("/") + _REST_PATH
        self._api_key = api_key
        self._access_token = access_token or api_key
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def connect(self) -> None:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # RemoteBackend interface
    # ------------------------------------------------------------------

    async def upsert(
        self, table: str, rows: Sequence[dict[str, Any]], on_conflict: Sequence[str]
    ) -> int:
        if not rows:
            return 0
        await self._request(
            "POST",
            table,
            params={"on_conflict": ",".join(on_conflict)},
            json=to_jsonable_python(list(rows)),
            prefer="resolution=merge-duplicates,return=minimal",
        )
        logger.debug("Upserted %d row(s) into %s", len(rows), table)
        return len(rows)

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        params = self._filter_params(filters)
        params.append(("select", "*"))
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        response = await self._request("GET", table, params=params)
        return response.json()

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        await self._request(
            "DELETE", table, params=self._filter_params(filters), prefer="return=minimal"
        )
        logger.info("Deleted rows from %s where %s", table, [f.column for f in filters])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @staticmethod
    def _filter_params(filters: Sequence[Filter]) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        for f in filters:
            value = to_jsonable_python(f.value)
            params.append((f.column, f"{f.op}.{value}"))
        return params

    async def _request(
        self,
        method: str,
        table: str,
        params: Any = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        """Send one request and map failures to TransientIOError.

        Raises:
            TransientIOError: On connection errors, timeouts and non-2xx responses.
        """
        url = f"{self._base_url}/{table}"
        headers = self._headers(prefer)
        try:
            if self._http_client:
                response = await self._http_client.request(
                    method, url, params=params, json=json, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method, url, params=params, json=json, headers=headers
                    )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "PostgREST %s %s failed: HTTP %d %s",
                method, table, exc.response.status_code, exc.response.text[:200],
            )
            raise TransientIOError(
                f"{method} {table} returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("PostgREST %s %s failed: %s", method, table, exc)
            raise TransientIOError(f"{method} {table} failed: {exc}") from exc
        return response
