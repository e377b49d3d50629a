"""Reference data cache: monitored systems and local characters.

Readers get an immutable :class:`ReferenceSnapshot`; :meth:`ReferenceCache.refresh`
builds a new snapshot and swaps the reference in one assignment, so a
reader never sees a mix of old and new lists.
"""

from __future__ import annotations

import asyncio
import logging
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, Mapping, Optional

from .providers.base import DetailProvider
from .schemas import LocalCharacter, MonitoredSystem

logger = logging.getLogger(__name__)

FailureHook = Callable[[str, BaseException], Awaitable[None]]
SuccessHook = Callable[[str], Awaitable[None]]

SYSTEMS_PART = "monitored systems"
CHARACTERS_PART = "local characters"


def is_chain_alias(alias: str) -> bool:
    """Chain system labels end in a digit or symbol; a trailing letter
    marks a non-chain system."""
    alias = alias or ""
    return bool(alias) and alias[-1] not in string.ascii_letters


def build_system_index(systems: Iterable[MonitoredSystem]) -> Mapping[int, MonitoredSystem]:
    index = {}
    for system in systems:
        if not is_chain_alias(system.alias):
            logger.debug("Skipping non-chain system %s (%s)", system.system_id, system.alias)
            continue
        index[system.system_id] = system
    return MappingProxyType(index)


@dataclass(frozen=True)
class ReferenceSnapshot:
    systems: Mapping[int, MonitoredSystem] = field(
        default_factory=lambda: MappingProxyType({})
    )
    local_character_ids: FrozenSet[int] = frozenset()
    refreshed_at: Optional[datetime] = None

    def system(self, system_id: int) -> Optional[MonitoredSystem]:
        return self.systems.get(system_id)


EMPTY_SNAPSHOT = ReferenceSnapshot()


class ReferenceCache:
    """Holds the current :class:`ReferenceSnapshot` and refreshes it.

    ``refresh_minutes`` controls :meth:`refresh_if_stale`; ``0`` means a
    refresh is due on every call. A failed refresh never raises: the
    failing part keeps its previous value and ``on_failure`` is awaited.
    ``on_success`` is awaited for every part that did refresh.
    """

    def __init__(
        self,
        provider: DetailProvider,
        *,
        refresh_minutes: int = 0,
        on_failure: Optional[FailureHook] = None,
        on_success: Optional[SuccessHook] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._refresh_seconds = max(refresh_minutes, 0) * 60
        self._on_failure = on_failure
        self._on_success = on_success
        self._clock = clock
        self._snapshot = EMPTY_SNAPSHOT
        self._lock = asyncio.Lock()
        self._last_attempt: Optional[float] = None

    def snapshot(self) -> ReferenceSnapshot:
        return self._snapshot

    def systems(self) -> Mapping[int, MonitoredSystem]:
        return self._snapshot.systems

    def local_characters(self) -> FrozenSet[int]:
        return self._snapshot.local_character_ids

    def is_stale(self) -> bool:
        if self._last_attempt is None:
            return True
        return self._clock() - self._last_attempt >= self._refresh_seconds

    async def refresh_if_stale(self) -> bool:
        """Refresh when due; concurrent callers do not stack refreshes."""
        if not self.is_stale() or self._lock.locked():
            return False
        return await self.refresh()

    async def refresh(self) -> bool:
        """Replace the snapshot. Returns True when both lists refreshed."""
        async with self._lock:
            self._last_attempt = self._clock()
            outcome = await self._refresh_locked()

        for what, exc in outcome.items():
            try:
                if exc is None:
                    if self._on_success is not None:
                        await self._on_success(what)
                elif self._on_failure is not None:
                    await self._on_failure(what, exc)
            except Exception:
                logger.exception("Reference refresh hook raised for %s", what)
        return all(exc is None for exc in outcome.values())

    async def _refresh_locked(self) -> Dict[str, Optional[BaseException]]:
        """Swap in a new snapshot; maps each part to its error, or None."""
        previous = self._snapshot
        systems_result, characters_result = await asyncio.gather(
            self._provider.list_monitored_systems(),
            self._provider.list_local_characters(),
            return_exceptions=True,
        )

        outcome: Dict[str, Optional[BaseException]] = {
            SYSTEMS_PART: None,
            CHARACTERS_PART: None,
        }
        systems = previous.systems
        local_ids = previous.local_character_ids

        for result in (systems_result, characters_result):
            if isinstance(result, asyncio.CancelledError):
                raise result

        if isinstance(systems_result, BaseException):
            logger.warning("Monitored system refresh failed: %s", systems_result)
            outcome[SYSTEMS_PART] = systems_result
        else:
            systems = build_system_index(systems_result)

        if isinstance(characters_result, BaseException):
            logger.warning("Local character refresh failed: %s", characters_result)
            outcome[CHARACTERS_PART] = characters_result
        else:
            local_ids = _character_ids(characters_result)

        self._snapshot = ReferenceSnapshot(
            systems=systems,
            local_character_ids=local_ids,
            refreshed_at=datetime.now(timezone.utc),
        )
        failed = sum(1 for exc in outcome.values() if exc is not None)
        logger.info(
            "Reference cache refreshed: %d systems, %d local characters%s",
            len(systems),
            len(local_ids),
            f" ({failed} part(s) kept from previous snapshot)" if failed else "",
        )
        return outcome


def _character_ids(characters: Iterable[LocalCharacter]) -> FrozenSet[int]:
    return frozenset(c.character_id for c in characters if c.character_id > 0)
