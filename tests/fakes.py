"""In-memory stand-ins for the provider, sink and feed transport."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from chainkills.errors import DetailLookupError, DispatchError, FeedConnectionError
from chainkills.schemas import (
    Channel,
    Embed,
    KillmailDetail,
    LocalCharacter,
    MonitoredSystem,
)


def make_event(
    killmail_id: int = 100,
    *,
    system_id: int = 30000142,
    victim: Optional[Dict[str, Any]] = None,
    attackers: Optional[Sequence[Dict[str, Any]]] = None,
    zkb: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Feed frame payload in the shape the kill feed sends."""
    return {
        "killmail_id": killmail_id,
        "killmail_time": "2024-03-01T12:00:00Z",
        "solar_system_id": system_id,
        "victim": victim if victim is not None else {"corporation_id": 99000001, "ship_type_id": 587},
        "attackers": list(attackers) if attackers is not None else [
            {"character_id": 500, "corporation_id": 98000001, "final_blow": True}
        ],
        "zkb": zkb
        if zkb is not None
        else {"hash": "abc123", "totalValue": 2_500_000.0, "points": 1},
    }


class FakeProvider:
    """DetailProvider backed by dicts; records every call."""

    def __init__(
        self,
        *,
        killmails: Optional[Dict[int, KillmailDetail]] = None,
        names: Optional[Dict[Tuple[str, int], str]] = None,
        systems: Optional[List[MonitoredSystem]] = None,
        characters: Optional[List[LocalCharacter]] = None,
        fail: Sequence[str] = (),
    ) -> None:
        self.killmails = dict(killmails or {})
        self.names = dict(names or {})
        self.systems = list(systems or [])
        self.characters = list(characters or [])
        self.fail = set(fail)
        self.calls: List[Tuple[str, Any]] = []

    def _check(self, what: str, arg: Any = None) -> None:
        self.calls.append((what, arg))
        if what in self.fail:
            raise DetailLookupError(what, "boom")

    async def fetch_killmail(self, killmail_id: int, killmail_hash: str) -> KillmailDetail:
        self._check("killmail", killmail_id)
        if not killmail_hash:
            raise DetailLookupError(f"killmail {killmail_id}", "missing verification hash")
        detail = self.killmails.get(killmail_id)
        if detail is None:
            raise DetailLookupError(f"killmail {killmail_id}", "status 404")
        return detail

    async def _name(self, kind: str, entity_id: int) -> str:
        self._check(kind, entity_id)
        name = self.names.get((kind, entity_id))
        if name is None:
            raise DetailLookupError(f"{kind} {entity_id}", "status 404")
        return name

    async def resolve_character_name(self, character_id: int) -> str:
        return await self._name("character", character_id)

    async def resolve_corporation_name(self, corporation_id: int) -> str:
        return await self._name("corporation", corporation_id)

    async def resolve_alliance_name(self, alliance_id: int) -> str:
        return await self._name("alliance", alliance_id)

    async def resolve_system_name(self, system_id: int) -> str:
        return await self._name("system", system_id)

    async def resolve_type_name(self, type_id: int) -> str:
        return await self._name("type", type_id)

    async def list_monitored_systems(self) -> List[MonitoredSystem]:
        self._check("systems")
        return list(self.systems)

    async def list_local_characters(self) -> List[LocalCharacter]:
        self._check("characters")
        return list(self.characters)


class RecordingSink:
    """NotificationSink that keeps what it was asked to send."""

    def __init__(self, fail: Sequence[Channel] = ()) -> None:
        self.sent: List[Tuple[Channel, str, Optional[Embed]]] = []
        self.fail = set(fail)

    async def send(self, channel: Channel, content: str, embed: Optional[Embed]) -> None:
        self.sent.append((channel, content, embed))
        if channel in self.fail:
            raise DispatchError(f"{channel.value} webhook got status 500")

    def on(self, channel: Channel) -> List[Tuple[Channel, str, Optional[Embed]]]:
        return [item for item in self.sent if item[0] is channel]


Frame = Union[str, bytes, Dict[str, Any], None]


class FakeConnection:
    """Serves scripted frames; ``None`` in the script means the peer closed."""

    def __init__(self, frames: Sequence[Frame], *, hang: bool = False) -> None:
        self._frames = list(frames)
        self._hang = hang
        self._closed = asyncio.Event()
        self.sent: List[Dict[str, Any]] = []
        self.close_calls = 0

    async def send_json(self, payload: Dict[str, Any]) -> None:
        self.sent.append(payload)

    async def receive(self) -> Optional[Union[str, bytes]]:
        if self._closed.is_set():
            return None
        if not self._frames:
            if self._hang:
                await self._closed.wait()
            return None
        frame = self._frames.pop(0)
        if isinstance(frame, dict):
            return json.dumps(frame)
        return frame

    async def close(self) -> None:
        self.close_calls += 1
        self._closed.set()


class FakeTransport:
    """Hands out scripted connections; an exception in the script fails that dial."""

    def __init__(self, script: Sequence[Union[FakeConnection, BaseException]]) -> None:
        self._script = list(script)
        self.urls: List[str] = []

    async def connect(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if not self._script:
            raise FeedConnectionError(f"dial {url} failed: connection refused")
        item = self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item
