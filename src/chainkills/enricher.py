"""Merge a feed event with authoritative killmail detail.

Only the killmail detail fetch is required; every name lookup is
best-effort and leaves its field blank on failure.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Sequence

from .errors import DetailLookupError
from .providers.base import DetailProvider
from .schemas import Attacker, CanonicalRecord, Classification, RawEvent

logger = logging.getLogger(__name__)


def select_final_attacker(attackers: Sequence[Attacker]) -> Optional[Attacker]:
    """First attacker flagged with the final blow, else the first attacker."""
    for attacker in attackers:
        if attacker.final_blow:
            return attacker
    return attackers[0] if attackers else None


class Enricher:
    def __init__(self, provider: DetailProvider) -> None:
        self._provider = provider

    async def enrich(self, event: RawEvent, classification: Classification) -> CanonicalRecord:
        """Build the canonical record for a LOSS/KILL event.

        Raises :class:`DetailLookupError` when the killmail detail cannot
        be fetched; the event is then dropped by the caller.
        """
        if not classification.needs_enrichment:
            raise ValueError(f"{classification.kind.value} events are not enriched")

        detail = await self._provider.fetch_killmail(
            event.killmail_id, event.verification_hash
        )

        attackers = detail.attackers or event.attackers
        final = select_final_attacker(attackers) or Attacker()
        victim = detail.victim
        system_id = detail.solar_system_id or event.solar_system_id

        p = self._provider
        lookups: Dict[str, Callable[[int], Awaitable[str]]] = {
            "system_name": p.resolve_system_name,
            "victim_ship_name": p.resolve_type_name,
            "final_attacker_ship_name": p.resolve_type_name,
            "victim_character_name": p.resolve_character_name,
            "victim_corporation_name": p.resolve_corporation_name,
            "victim_alliance_name": p.resolve_alliance_name,
            "final_attacker_name": p.resolve_character_name,
            "final_attacker_corporation_name": p.resolve_corporation_name,
            "final_attacker_alliance_name": p.resolve_alliance_name,
        }
        ids = {
            "system_name": system_id,
            "victim_ship_name": victim.ship_type_id,
            "final_attacker_ship_name": final.ship_type_id,
            "victim_character_name": victim.character_id,
            "victim_corporation_name": victim.corporation_id,
            "victim_alliance_name": victim.alliance_id,
            "final_attacker_name": final.character_id,
            "final_attacker_corporation_name": final.corporation_id,
            "final_attacker_alliance_name": final.alliance_id,
        }
        fields = list(lookups)
        names = await asyncio.gather(
            *(
                self._resolve(event.killmail_id, name, lookups[name], ids[name])
                for name in fields
            )
        )

        zkb = event.zkb
        return CanonicalRecord(
            killmail_id=event.killmail_id,
            killmail_hash=event.verification_hash,
            killmail_time=detail.killmail_time,
            solar_system_id=system_id,
            victim_character_id=victim.character_id,
            victim_corporation_id=victim.corporation_id,
            victim_alliance_id=victim.alliance_id,
            victim_ship_type_id=victim.ship_type_id,
            final_attacker_id=final.character_id,
            final_attacker_corporation_id=final.corporation_id,
            final_attacker_alliance_id=final.alliance_id,
            final_attacker_ship_type_id=final.ship_type_id,
            attacker_count=len(attackers),
            location_id=zkb.location_id,
            total_value=zkb.total_value,
            destroyed_value=zkb.destroyed_value,
            dropped_value=zkb.dropped_value,
            fitted_value=zkb.fitted_value,
            points=zkb.points,
            npc=zkb.npc,
            solo=zkb.solo,
            awox=zkb.awox,
            **dict(zip(fields, names)),
        )

    async def _resolve(
        self,
        killmail_id: int,
        field_name: str,
        lookup: Callable[[int], Awaitable[str]],
        entity_id: int,
    ) -> str:
        if entity_id <= 0:
            return ""
        try:
            return await lookup(entity_id)
        except DetailLookupError as exc:
            logger.warning("Kill %d: %s lookup failed: %s", killmail_id, field_name, exc)
        except Exception:
            logger.exception("Kill %d: %s lookup crashed", killmail_id, field_name)
        return ""
