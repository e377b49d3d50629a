from __future__ import annotations

import os
from dataclasses import dataclass
from typing import FrozenSet, List

from .errors import ConfigurationError

VALUE_FORMATS = ("abbreviated", "full")


def _env_bool(name: str, default: str = "0") -> bool:
    value = os.getenv(name, default)
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _parse_id_list(raw: str) -> List[int]:
    out: List[int] = []
    for value in str(raw or "").split(","):
        value = value.strip()
        if not value:
            continue
        try:
            parsed = int(value)
        except ValueError:
            continue
        if parsed > 0:
            out.append(parsed)
    return out


@dataclass(frozen=True)
class Settings:
    # ── Feed ─────────────────────────────────────────────────
    feed_url: str = os.getenv("FEED_URL", "wss://zkillboard.com/websocket/")
    feed_channel: str = os.getenv("FEED_CHANNEL", "killstream")
    reconnect_delay_seconds: float = float(os.getenv("RECONNECT_DELAY_SECONDS", "10"))
    reconnect_jitter_seconds: float = float(
        os.getenv("RECONNECT_JITTER_SECONDS", "0")
    )
    reconnect_max_attempts: int = int(os.getenv("RECONNECT_MAX_ATTEMPTS", "0"))
    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
    user_agent: str = os.getenv("USER_AGENT", "chainkills/0.1")

    # ── Detail lookups ───────────────────────────────────────
    esi_base_url: str = os.getenv("ESI_BASE_URL", "https://esi.evetech.net/latest")
    esi_datasource: str = os.getenv("ESI_DATASOURCE", "tranquility")
    map_api_base_url: str = os.getenv("MAP_API_BASE_URL", "")
    map_api_slug: str = os.getenv("MAP_API_SLUG", "")
    map_api_token: str = os.getenv("MAP_API_TOKEN", "")
    kill_url_template: str = os.getenv(
        "KILL_URL_TEMPLATE", "https://zkillboard.com/kill/{killmail_id}/"
    )

    # ── Classification ───────────────────────────────────────
    tracked_ids: str = os.getenv("TRACKED_IDS", "")
    ignore_system_ids: str = os.getenv("IGNORE_SYSTEM_IDS", "")
    attacker_match_local_characters: bool = _env_bool(
        "ATTACKER_MATCH_LOCAL_CHARACTERS", "1"
    )

    # ── Reference cache ──────────────────────────────────────
    # 0 refreshes on every event.
    reference_refresh_minutes: int = int(os.getenv("REFERENCE_REFRESH_MINUTES", "1"))
    # Timer-driven refresh, independent of the event flow. 0 disables.
    reference_refresh_interval_minutes: int = int(
        os.getenv("REFERENCE_REFRESH_INTERVAL_MINUTES", "15")
    )

    # ── Notifications ────────────────────────────────────────
    webhook_base_url: str = os.getenv(
        "WEBHOOK_BASE_URL", "https://discord.com/api/webhooks"
    )
    discord_corpkill_webhook_id: str = os.getenv("DISCORD_CORPKILL_WEBHOOK_ID", "")
    discord_corpkill_webhook_token: str = os.getenv(
        "DISCORD_CORPKILL_WEBHOOK_TOKEN", ""
    )
    discord_chainkill_webhook_id: str = os.getenv("DISCORD_CHAINKILL_WEBHOOK_ID", "")
    discord_chainkill_webhook_token: str = os.getenv(
        "DISCORD_CHAINKILL_WEBHOOK_TOKEN", ""
    )
    discord_info_webhook_id: str = os.getenv("DISCORD_INFO_WEBHOOK_ID", "")
    discord_info_webhook_token: str = os.getenv("DISCORD_INFO_WEBHOOK_TOKEN", "")
    kill_color: str = os.getenv("KILL_COLOR", "#00FF00")
    loss_color: str = os.getenv("LOSS_COLOR", "#FF0000")
    value_format: str = os.getenv("VALUE_FORMAT", "abbreviated")
    # 0 disables the periodic "still running" info message.
    status_report_minutes: int = int(os.getenv("STATUS_REPORT_MINUTES", "60"))

    # ── Worker ───────────────────────────────────────────────
    worker_concurrency: int = int(os.getenv("WORKER_CONCURRENCY", "8"))
    queue_size: int = int(os.getenv("QUEUE_SIZE", "256"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    worker_heartbeat_dir: str = os.getenv(
        "WORKER_HEARTBEAT_DIR", "/tmp/chainkills/heartbeats"
    )

    @property
    def tracked_ids_set(self) -> FrozenSet[int]:
        return frozenset(_parse_id_list(self.tracked_ids))

    @property
    def ignore_system_ids_set(self) -> FrozenSet[int]:
        return frozenset(_parse_id_list(self.ignore_system_ids))

    @property
    def map_api_enabled(self) -> bool:
        return bool(self.map_api_base_url and self.map_api_slug)


def get_settings() -> Settings:
    return Settings()


def validate_settings(settings: Settings) -> None:
    """Reject settings the worker cannot run with.

    Missing webhook credentials are *not* fatal here: the dispatcher
    skips the affected channel and logs instead.
    """
    problems: List[str] = []
    if not settings.feed_url:
        problems.append("FEED_URL is empty")
    if settings.reconnect_delay_seconds < 0:
        problems.append("RECONNECT_DELAY_SECONDS must be >= 0")
    if settings.reconnect_jitter_seconds < 0:
        problems.append("RECONNECT_JITTER_SECONDS must be >= 0")
    if settings.reconnect_max_attempts < 0:
        problems.append("RECONNECT_MAX_ATTEMPTS must be >= 0")
    if settings.http_timeout_seconds <= 0:
        problems.append("HTTP_TIMEOUT_SECONDS must be > 0")
    if settings.reference_refresh_minutes < 0:
        problems.append("REFERENCE_REFRESH_MINUTES must be >= 0")
    if settings.value_format not in VALUE_FORMATS:
        problems.append(
            f"VALUE_FORMAT must be one of {', '.join(VALUE_FORMATS)}"
        )
    if settings.worker_concurrency < 1:
        problems.append("WORKER_CONCURRENCY must be >= 1")
    if settings.queue_size < 1:
        problems.append("QUEUE_SIZE must be >= 1")
    if settings.map_api_base_url and not settings.map_api_slug:
        problems.append("MAP_API_SLUG is required when MAP_API_BASE_URL is set")
    if problems:
        raise ConfigurationError("; ".join(problems))
