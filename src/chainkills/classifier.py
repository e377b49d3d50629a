"""Relevance classification for feed events.

Precedence, first match wins:

1. victim corporation/alliance is tracked            -> LOSS
2. an attacker's corporation/alliance/character is
   tracked, or the attacker is a local character      -> KILL
3. the event is in a monitored, non-ignored system
   and no attacker is a local character              -> CHAIN
4. otherwise                                         -> NONE
"""

from __future__ import annotations

import logging
from typing import AbstractSet, Optional

from .cache import ReferenceSnapshot
from .schemas import (
    NOT_RELEVANT,
    Classification,
    ClassificationKind,
    MatchReason,
    RawEvent,
)

logger = logging.getLogger(__name__)


def _tracked(entity_id: int, ids: AbstractSet[int]) -> bool:
    return entity_id > 0 and entity_id in ids


def _victim_match(event: RawEvent, tracked_ids: AbstractSet[int]) -> Optional[int]:
    victim = event.victim
    for entity_id in (victim.corporation_id, victim.alliance_id):
        if _tracked(entity_id, tracked_ids):
            return entity_id
    return None


def _attacker_match(
    event: RawEvent,
    tracked_ids: AbstractSet[int],
    local_ids: AbstractSet[int],
) -> Optional[int]:
    for attacker in event.attackers:
        for entity_id in (
            attacker.corporation_id,
            attacker.alliance_id,
            attacker.character_id,
        ):
            if _tracked(entity_id, tracked_ids):
                return entity_id
        if _tracked(attacker.character_id, local_ids):
            return attacker.character_id
    return None


def classify(
    event: RawEvent,
    snapshot: ReferenceSnapshot,
    tracked_ids: AbstractSet[int],
    ignore_system_ids: AbstractSet[int] = frozenset(),
    *,
    attacker_match_local_characters: bool = True,
) -> Classification:
    """Classify one event against a single reference snapshot."""
    local_ids = snapshot.local_character_ids

    matched = _victim_match(event, tracked_ids)
    if matched is not None:
        logger.info("Kill %d: victim match on %d", event.killmail_id, matched)
        return Classification(
            kind=ClassificationKind.LOSS,
            reason=MatchReason.VICTIM,
            matched_id=matched,
        )

    matched = _attacker_match(
        event,
        tracked_ids,
        local_ids if attacker_match_local_characters else frozenset(),
    )
    if matched is not None:
        logger.info("Kill %d: attacker match on %d", event.killmail_id, matched)
        return Classification(
            kind=ClassificationKind.KILL,
            reason=MatchReason.ATTACKER,
            matched_id=matched,
        )

    system = snapshot.system(event.solar_system_id)
    if system is None or system.system_id in ignore_system_ids:
        return NOT_RELEVANT

    if any(_tracked(a.character_id, local_ids) for a in event.attackers):
        logger.info(
            "Kill %d in %s: local characters among attackers, no chain alert",
            event.killmail_id,
            system.alias,
        )
        return NOT_RELEVANT

    logger.info(
        "Kill %d: system match %s (%d), %d attacker(s)",
        event.killmail_id,
        system.alias,
        system.system_id,
        len(event.attackers),
    )
    return Classification(
        kind=ClassificationKind.CHAIN,
        reason=MatchReason.SYSTEM,
        matched_id=system.system_id,
        system=system,
    )
