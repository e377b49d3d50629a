"""Map API reference lists: chain systems and characters on the map.

Both endpoints are keyed by the map slug and authenticated with a
bearer token::

    GET {base}/systems?slug=<slug>     -> {"data": [{"name", "solar_system_id"}]}
    GET {base}/characters?slug=<slug>  -> {"data": [{"character": {"eve_id", ...}}]}
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from ..config import Settings
from ..errors import DetailLookupError
from ..schemas import LocalCharacter, MonitoredSystem

logger = logging.getLogger(__name__)


def create_map_client(settings: Settings) -> httpx.AsyncClient:
    """Create an httpx client configured for the map API."""
    headers: Dict[str, str] = {
        "Accept": "application/json",
        "User-Agent": settings.user_agent,
    }
    if settings.map_api_token:
        headers["Authorization"] = f"Bearer {settings.map_api_token}"
    return httpx.AsyncClient(
        base_url=settings.map_api_base_url.rstrip("/"),
        headers=headers,
        timeout=settings.http_timeout_seconds,
    )


def _to_int(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


class MapApiClient:
    def __init__(self, client: httpx.AsyncClient, slug: str) -> None:
        self._client = client
        self._slug = slug

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_data(self, path: str, what: str) -> List[Dict[str, Any]]:
        try:
            resp = await self._client.get(path, params={"slug": self._slug})
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            raise DetailLookupError(what, f"status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise DetailLookupError(what, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise DetailLookupError(what, "invalid JSON") from exc

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            raise DetailLookupError(what, "response has no data list")
        return [item for item in data if isinstance(item, dict)]

    async def list_monitored_systems(self) -> List[MonitoredSystem]:
        """Return every system on the map, unfiltered."""
        items = await self._get_data("/systems", "map systems")
        systems: List[MonitoredSystem] = []
        for item in items:
            system_id = _to_int(item.get("solar_system_id"))
            if system_id <= 0:
                logger.debug("Skipping map system without id: %s", item)
                continue
            systems.append(
                MonitoredSystem(system_id=system_id, alias=str(item.get("name") or ""))
            )
        return systems

    async def list_local_characters(self) -> List[LocalCharacter]:
        items = await self._get_data("/characters", "map characters")
        characters: List[LocalCharacter] = []
        for item in items:
            character = item.get("character")
            if not isinstance(character, dict):
                continue
            character_id = _to_int(character.get("eve_id"))
            if character_id <= 0:
                continue
            characters.append(
                LocalCharacter(
                    character_id=character_id,
                    corporation_id=_to_int(character.get("corporation_id")),
                    alliance_id=_to_int(character.get("alliance_id")),
                )
            )
        return characters
