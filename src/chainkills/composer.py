"""Render canonical records, chain alerts and info text as notifications."""

from __future__ import annotations

import re
from typing import List

from .config import Settings
from .schemas import (
    CanonicalRecord,
    Channel,
    Classification,
    ClassificationKind,
    Embed,
    EmbedAuthor,
    EmbedField,
    EmbedFooter,
    EmbedImage,
    Notification,
    RawEvent,
)

UNKNOWN_VICTIM = "UnknownVictim"
UNKNOWN_ATTACKER = "UnknownAttacker"
UNKNOWN_SHIP = "UnknownShip"
UNKNOWN_GROUP = "UnknownGroup"
UNKNOWN_SYSTEM = "UnknownSystem"

KILL_LABEL = "Kill"
LOSS_LABEL = "Loss"
AWOX_LABEL = "Cowardly"

DEFAULT_COLOR = 0xFFFFFF
BELOW_MILLION_LABEL = "< 1m"

IMAGE_BASE_URL = "https://images.evetech.net"
ZKILL_BASE_URL = "https://zkillboard.com"

_HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")


def parse_hex_color(value: str) -> int:
    """``"#RRGGBB"`` -> int; anything else falls back to white."""
    match = _HEX_COLOR_RE.match(str(value or "").strip())
    if not match:
        return DEFAULT_COLOR
    return int(match.group(1), 16)


def format_isk(value: float, style: str = "abbreviated") -> str:
    """Render a monetary value.

    ``abbreviated``: ``2_500_000 -> "2.50m"``, anything under a million
    collapses to ``"< 1m"``. ``full``: ``2_500_000 -> "2,500,000"``.
    """
    value = float(value or 0.0)
    if style == "full":
        return f"{value:,.0f}"
    if value < 1_000_000:
        return BELOW_MILLION_LABEL
    return f"{value / 1_000_000:.2f}m"


def _group_name(corporation: str, alliance: str) -> str:
    names = [n for n in (corporation, alliance) if n]
    return " / ".join(names) if names else UNKNOWN_GROUP


class Composer:
    def __init__(self, settings: Settings) -> None:
        self.kill_color = parse_hex_color(settings.kill_color)
        self.loss_color = parse_hex_color(settings.loss_color)
        self.value_format = settings.value_format
        self.kill_url_template = settings.kill_url_template

    def kill_url(self, killmail_id: int) -> str:
        return self.kill_url_template.format(killmail_id=killmail_id)

    def compose(self, record: CanonicalRecord, classification: Classification) -> Notification:
        """Kill/loss embed for the kills channel."""
        is_kill = classification.kind is ClassificationKind.KILL
        label = KILL_LABEL if is_kill else LOSS_LABEL
        if record.awox:
            label = AWOX_LABEL

        victim = record.victim_character_name or UNKNOWN_VICTIM
        victim_ship = record.victim_ship_name or UNKNOWN_SHIP
        victim_group = _group_name(
            record.victim_corporation_name, record.victim_alliance_name
        )
        attacker = record.final_attacker_name or UNKNOWN_ATTACKER
        attacker_ship = record.final_attacker_ship_name or UNKNOWN_SHIP
        attacker_group = _group_name(
            record.final_attacker_corporation_name,
            record.final_attacker_alliance_name,
        )
        system = record.system_name or UNKNOWN_SYSTEM
        value = format_isk(record.total_value, self.value_format)

        footer_parts: List[str] = [
            f"Points: {record.points}",
            f"Attackers: {record.attacker_count}",
        ]
        if record.solo:
            footer_parts.append("Solo")
        if record.npc:
            footer_parts.append("NPC")

        thumbnail = None
        if record.victim_ship_type_id > 0:
            thumbnail = EmbedImage(
                url=f"{IMAGE_BASE_URL}/types/{record.victim_ship_type_id}/render?size=128"
            )

        author = EmbedAuthor(name=attacker)
        if record.final_attacker_id > 0:
            author = EmbedAuthor(
                name=attacker,
                url=f"{ZKILL_BASE_URL}/character/{record.final_attacker_id}/",
                icon_url=(
                    f"{IMAGE_BASE_URL}/characters/{record.final_attacker_id}"
                    "/portrait?size=64"
                ),
            )

        embed = Embed(
            title=f"{label}: {victim_ship} destroyed in {system} ({value})",
            description=(
                f"**{victim}** ({victim_group}) lost a **{victim_ship}** to "
                f"**{attacker}** ({attacker_group}) flying a **{attacker_ship}**."
            ),
            url=self.kill_url(record.killmail_id),
            color=self.kill_color if is_kill else self.loss_color,
            timestamp=record.killmail_time,
            thumbnail=thumbnail,
            author=author,
            footer=EmbedFooter(text=" | ".join(footer_parts)),
            fields=(
                EmbedField(
                    name="Destroyed",
                    value=format_isk(record.destroyed_value, self.value_format),
                ),
                EmbedField(
                    name="Dropped",
                    value=format_isk(record.dropped_value, self.value_format),
                ),
                EmbedField(
                    name="Fitted",
                    value=format_isk(record.fitted_value, self.value_format),
                ),
            ),
        )
        return Notification(channel=Channel.KILLS, embed=embed)

    def compose_chain_alert(self, event: RawEvent, classification: Classification) -> Notification:
        alias = classification.system.alias if classification.system else UNKNOWN_SYSTEM
        content = (
            f"@here A ship just died in {alias} to {len(event.attackers)} people, "
            f"zkill link: {self.kill_url(event.killmail_id)}"
        )
        return Notification(channel=Channel.CHAIN, content=content)

    def compose_info(self, text: str) -> Notification:
        return Notification(channel=Channel.INFO, content=text)
