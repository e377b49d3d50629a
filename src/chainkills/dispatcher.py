"""Notification sinks and the at-most-once dispatcher.

A :class:`NotificationSink` delivers one message to one channel. The
:class:`Dispatcher` never retries: any failure is logged and the
notification is considered handled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol

import httpx

from .config import Settings
from .errors import ConfigurationError, DispatchError
from .schemas import Channel, Embed, Notification

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, channel: Channel, content: str, embed: Optional[Embed]) -> None:
        ...


@dataclass(frozen=True)
class WebhookCredentials:
    webhook_id: str = ""
    token: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.webhook_id and self.token)


def webhook_credentials(settings: Settings) -> Dict[Channel, WebhookCredentials]:
    return {
        Channel.KILLS: WebhookCredentials(
            settings.discord_corpkill_webhook_id,
            settings.discord_corpkill_webhook_token,
        ),
        Channel.CHAIN: WebhookCredentials(
            settings.discord_chainkill_webhook_id,
            settings.discord_chainkill_webhook_token,
        ),
        Channel.INFO: WebhookCredentials(
            settings.discord_info_webhook_id,
            settings.discord_info_webhook_token,
        ),
    }


class DiscordWebhookSink:
    """Posts ``{"content", "embeds"}`` bodies to Discord-style webhooks."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: Mapping[Channel, WebhookCredentials],
        base_url: str = "https://discord.com/api/webhooks",
    ) -> None:
        self._client = client
        self._credentials = dict(credentials)
        self._base_url = base_url.rstrip("/")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(self, channel: Channel, content: str, embed: Optional[Embed]) -> None:
        creds = self._credentials.get(channel)
        if creds is None or not creds.configured:
            raise ConfigurationError(
                f"{channel.value} webhook not configured (id/token missing)"
            )
        body = Notification(channel=channel, content=content, embed=embed).to_payload()
        url = f"{self._base_url}/{creds.webhook_id}/{creds.token}"
        try:
            resp = await self._client.post(url, json=body)
        except httpx.HTTPError as exc:
            reason = str(exc) or type(exc).__name__
            raise DispatchError(f"{channel.value} webhook request failed: {reason}") from exc
        if resp.status_code < 200 or resp.status_code > 299:
            raise DispatchError(f"{channel.value} webhook got status {resp.status_code}")


def create_webhook_sink(settings: Settings) -> DiscordWebhookSink:
    client = httpx.AsyncClient(
        headers={"User-Agent": settings.user_agent},
        timeout=settings.http_timeout_seconds,
    )
    return DiscordWebhookSink(
        client,
        webhook_credentials(settings),
        base_url=settings.webhook_base_url,
    )


class Dispatcher:
    def __init__(self, sink: NotificationSink) -> None:
        self._sink = sink

    async def dispatch(self, notification: Notification) -> bool:
        """Send once. Returns False when the notification was not delivered."""
        channel = notification.channel.value
        try:
            await self._sink.send(
                notification.channel, notification.content, notification.embed
            )
        except ConfigurationError as exc:
            logger.warning("Skipping %s notification: %s", channel, exc)
            return False
        except DispatchError as exc:
            logger.warning("Failed to send %s notification: %s", channel, exc)
            return False
        except Exception:
            logger.exception("Sink crashed sending %s notification", channel)
            return False
        logger.debug("Sent %s notification", channel)
        return True
