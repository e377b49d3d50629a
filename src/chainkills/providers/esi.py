"""ESI (public EVE API) lookups.

Killmail detail plus display-name resolution for characters,
corporations, alliances, solar systems and item types. One shared
``httpx.AsyncClient`` carries the base URL, user agent and timeout.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import DetailLookupError
from ..schemas import KillmailDetail

logger = logging.getLogger(__name__)


def create_esi_client(settings: Settings) -> httpx.AsyncClient:
    """Create an httpx client configured for ESI."""
    return httpx.AsyncClient(
        base_url=settings.esi_base_url.rstrip("/"),
        headers={
            "Accept": "application/json",
            "User-Agent": settings.user_agent,
        },
        params={"datasource": settings.esi_datasource},
        timeout=settings.http_timeout_seconds,
    )


class EsiClient:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, what: str) -> Dict[str, Any]:
        try:
            resp = await self._client.get(path)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise DetailLookupError(
                what, f"status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DetailLookupError(what, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise DetailLookupError(what, "invalid JSON") from exc
        if not isinstance(data, dict):
            raise DetailLookupError(what, "unexpected response shape")
        return data

    async def _get_name(self, path: str, what: str) -> str:
        data = await self._get_json(path, what)
        name = str(data.get("name") or "").strip()
        if not name:
            raise DetailLookupError(what, "response has no name")
        return name

    async def fetch_killmail(self, killmail_id: int, killmail_hash: str) -> KillmailDetail:
        what = f"killmail {killmail_id}"
        if not killmail_hash:
            raise DetailLookupError(what, "missing verification hash")
        data = await self._get_json(f"/killmails/{killmail_id}/{killmail_hash}/", what)
        try:
            return KillmailDetail.model_validate(data)
        except ValidationError as exc:
            raise DetailLookupError(what, "malformed killmail detail") from exc

    async def resolve_character_name(self, character_id: int) -> str:
        return await self._get_name(f"/characters/{character_id}/", f"character {character_id}")

    async def resolve_corporation_name(self, corporation_id: int) -> str:
        return await self._get_name(
            f"/corporations/{corporation_id}/", f"corporation {corporation_id}"
        )

    async def resolve_alliance_name(self, alliance_id: int) -> str:
        return await self._get_name(f"/alliances/{alliance_id}/", f"alliance {alliance_id}")

    async def resolve_system_name(self, system_id: int) -> str:
        return await self._get_name(f"/universe/systems/{system_id}/", f"system {system_id}")

    async def resolve_type_name(self, type_id: int) -> str:
        return await self._get_name(f"/universe/types/{type_id}/", f"type {type_id}")
