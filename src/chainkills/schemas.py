from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from .errors import ParseError


def _none_to_zero(value: Any) -> Any:
    return 0 if value is None else value


# Feed and ESI omit ids that do not apply (e.g. no alliance); 0 means absent.
EntityId = Annotated[int, BeforeValidator(_none_to_zero)]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


# ── Feed / ESI killmail shapes ───────────────────────────────


class Victim(_Frozen):
    character_id: EntityId = 0
    corporation_id: EntityId = 0
    alliance_id: EntityId = 0
    ship_type_id: EntityId = 0
    damage_taken: EntityId = 0


class Attacker(_Frozen):
    character_id: EntityId = 0
    corporation_id: EntityId = 0
    alliance_id: EntityId = 0
    ship_type_id: EntityId = 0
    weapon_type_id: EntityId = 0
    damage_done: EntityId = 0
    final_blow: bool = False
    security_status: float = 0.0


class ValueBlock(_Frozen):
    """Economic and participation data attached to a feed event."""

    location_id: EntityId = Field(0, alias="locationID")
    hash: str = ""
    fitted_value: float = Field(0.0, alias="fittedValue")
    dropped_value: float = Field(0.0, alias="droppedValue")
    destroyed_value: float = Field(0.0, alias="destroyedValue")
    total_value: float = Field(0.0, alias="totalValue")
    points: int = 0
    npc: bool = False
    solo: bool = False
    awox: bool = False


class RawEvent(_Frozen):
    killmail_id: int
    solar_system_id: EntityId = 0
    victim: Victim = Field(default_factory=Victim)
    attackers: Tuple[Attacker, ...] = ()
    zkb: ValueBlock = Field(default_factory=ValueBlock)

    @property
    def verification_hash(self) -> str:
        return self.zkb.hash


class KillmailDetail(_Frozen):
    """Authoritative killmail record from the detail provider."""

    killmail_id: int
    killmail_time: Optional[datetime] = None
    solar_system_id: EntityId = 0
    victim: Victim = Field(default_factory=Victim)
    attackers: Tuple[Attacker, ...] = ()


def parse_raw_event(frame: Union[bytes, str]) -> RawEvent:
    """Decode one feed frame into a :class:`RawEvent`.

    Raises :class:`ParseError` for anything that is not a kill record.
    """
    try:
        return RawEvent.model_validate_json(frame)
    except ValidationError as exc:
        raise ParseError(f"malformed feed frame: {exc.error_count()} error(s)") from exc


# ── Reference data ───────────────────────────────────────────


class MonitoredSystem(_Frozen):
    system_id: int
    alias: str


class LocalCharacter(_Frozen):
    character_id: int
    corporation_id: int = 0
    alliance_id: int = 0


# ── Classification ───────────────────────────────────────────


class ClassificationKind(str, Enum):
    NONE = "none"
    LOSS = "loss"
    KILL = "kill"
    CHAIN = "chain"


class MatchReason(str, Enum):
    VICTIM = "victim_match"
    ATTACKER = "attacker_match"
    SYSTEM = "system_match"


class Classification(_Frozen):
    kind: ClassificationKind = ClassificationKind.NONE
    reason: Optional[MatchReason] = None
    matched_id: int = 0
    system: Optional[MonitoredSystem] = None

    @property
    def is_relevant(self) -> bool:
        return self.kind is not ClassificationKind.NONE

    @property
    def needs_enrichment(self) -> bool:
        return self.kind in (ClassificationKind.LOSS, ClassificationKind.KILL)


NOT_RELEVANT = Classification()


# ── Enriched record ──────────────────────────────────────────


class CanonicalRecord(_Frozen):
    killmail_id: int
    killmail_hash: str = ""
    killmail_time: Optional[datetime] = None
    solar_system_id: int = 0
    system_name: str = ""

    victim_character_id: int = 0
    victim_corporation_id: int = 0
    victim_alliance_id: int = 0
    victim_ship_type_id: int = 0
    victim_character_name: str = ""
    victim_corporation_name: str = ""
    victim_alliance_name: str = ""
    victim_ship_name: str = ""

    final_attacker_id: int = 0
    final_attacker_corporation_id: int = 0
    final_attacker_alliance_id: int = 0
    final_attacker_ship_type_id: int = 0
    final_attacker_name: str = ""
    final_attacker_corporation_name: str = ""
    final_attacker_alliance_name: str = ""
    final_attacker_ship_name: str = ""
    attacker_count: int = 0

    location_id: int = 0
    total_value: float = 0.0
    destroyed_value: float = 0.0
    dropped_value: float = 0.0
    fitted_value: float = 0.0
    points: int = 0
    npc: bool = False
    solo: bool = False
    awox: bool = False


# ── Notifications ────────────────────────────────────────────


class Channel(str, Enum):
    KILLS = "kills"
    CHAIN = "chain"
    INFO = "info"


class EmbedAuthor(_Frozen):
    name: str
    url: Optional[str] = None
    icon_url: Optional[str] = None


class EmbedImage(_Frozen):
    url: str


class EmbedFooter(_Frozen):
    text: str


class EmbedField(_Frozen):
    name: str
    value: str
    inline: bool = True


class Embed(_Frozen):
    title: str
    description: str = ""
    url: Optional[str] = None
    color: int = 0
    timestamp: Optional[datetime] = None
    thumbnail: Optional[EmbedImage] = None
    author: Optional[EmbedAuthor] = None
    footer: Optional[EmbedFooter] = None
    fields: Tuple[EmbedField, ...] = ()

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Notification(_Frozen):
    channel: Channel
    content: str = ""
    embed: Optional[Embed] = None

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if self.content:
            body["content"] = self.content
        embeds: List[Dict[str, Any]] = []
        if self.embed is not None:
            embeds.append(self.embed.to_payload())
        if embeds:
            body["embeds"] = embeds
        return body
