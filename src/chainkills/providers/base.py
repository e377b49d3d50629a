from __future__ import annotations

from typing import List, Protocol

from ..schemas import KillmailDetail, LocalCharacter, MonitoredSystem


class DetailProvider(Protocol):
    """Authoritative lookups used by the reference cache and the enricher.

    Every method raises :class:`~chainkills.errors.DetailLookupError` on
    failure.
    """

    async def fetch_killmail(self, killmail_id: int, killmail_hash: str) -> KillmailDetail:
        ...

    async def resolve_character_name(self, character_id: int) -> str:
        ...

    async def resolve_corporation_name(self, corporation_id: int) -> str:
        ...

    async def resolve_alliance_name(self, alliance_id: int) -> str:
        ...

    async def resolve_system_name(self, system_id: int) -> str:
        ...

    async def resolve_type_name(self, type_id: int) -> str:
        ...

    async def list_monitored_systems(self) -> List[MonitoredSystem]:
        ...

    async def list_local_characters(self) -> List[LocalCharacter]:
        ...
