"""Detail-lookup providers.

- ``base``   : the :class:`DetailProvider` protocol the core depends on
- ``esi``    : killmail detail and name resolution over ESI
- ``map_api``: monitored systems and local characters from the map API
"""

from __future__ import annotations

import logging
from typing import List, Optional

from ..config import Settings
from ..errors import DetailLookupError
from ..schemas import KillmailDetail, LocalCharacter, MonitoredSystem
from .base import DetailProvider
from .esi import EsiClient, create_esi_client
from .map_api import MapApiClient, create_map_client

logger = logging.getLogger(__name__)

__all__ = [
    "DetailProvider",
    "EsiClient",
    "HttpDetailProvider",
    "MapApiClient",
    "create_detail_provider",
]


class HttpDetailProvider:
    """:class:`DetailProvider` backed by ESI plus the map API."""

    def __init__(self, esi: EsiClient, map_api: Optional[MapApiClient] = None) -> None:
        self.esi = esi
        self.map_api = map_api

    async def aclose(self) -> None:
        await self.esi.aclose()
        if self.map_api is not None:
            await self.map_api.aclose()

    async def fetch_killmail(self, killmail_id: int, killmail_hash: str) -> KillmailDetail:
        return await self.esi.fetch_killmail(killmail_id, killmail_hash)

    async def resolve_character_name(self, character_id: int) -> str:
        return await self.esi.resolve_character_name(character_id)

    async def resolve_corporation_name(self, corporation_id: int) -> str:
        return await self.esi.resolve_corporation_name(corporation_id)

    async def resolve_alliance_name(self, alliance_id: int) -> str:
        return await self.esi.resolve_alliance_name(alliance_id)

    async def resolve_system_name(self, system_id: int) -> str:
        return await self.esi.resolve_system_name(system_id)

    async def resolve_type_name(self, type_id: int) -> str:
        return await self.esi.resolve_type_name(type_id)

    async def list_monitored_systems(self) -> List[MonitoredSystem]:
        if self.map_api is None:
            raise DetailLookupError("map systems", "map API not configured")
        return await self.map_api.list_monitored_systems()

    async def list_local_characters(self) -> List[LocalCharacter]:
        if self.map_api is None:
            raise DetailLookupError("map characters", "map API not configured")
        return await self.map_api.list_local_characters()


def create_detail_provider(settings: Settings) -> HttpDetailProvider:
    esi = EsiClient(create_esi_client(settings))
    map_api: Optional[MapApiClient] = None
    if settings.map_api_enabled:
        map_api = MapApiClient(create_map_client(settings), settings.map_api_slug)
    else:
        logger.warning(
            "MAP_API_BASE_URL/MAP_API_SLUG not set; chain alerts are disabled"
        )
    return HttpDetailProvider(esi, map_api)
