"""Resilient kill feed subscriber.

State machine::

    DISCONNECTED -> CONNECTING -> SUBSCRIBED -> STREAMING
          ^______________________________________|   (any failure)

``close()`` moves to ``CLOSED`` from any state and stops reconnecting.
Frames are decoded once into :class:`~chainkills.schemas.RawEvent`;
undecodable frames are logged and dropped without touching the
connection.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import random
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Protocol,
    Union,
)

import aiohttp

from .errors import FeedConnectionError, ParseError
from .schemas import RawEvent, parse_raw_event

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    STREAMING = "streaming"
    CLOSED = "closed"


class FeedConnection(Protocol):
    async def send_json(self, payload: Dict[str, Any]) -> None:
        ...

    async def receive(self) -> Optional[Frame]:
        """Next frame, or None once the peer closed the connection."""
        ...

    async def close(self) -> None:
        ...


class FeedTransport(Protocol):
    async def connect(self, url: str) -> FeedConnection:
        ...


# ── aiohttp websocket transport ──────────────────────────────


class AiohttpFeedConnection:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
    ) -> None:
        self._session = session
        self._ws = ws

    async def send_json(self, payload: Dict[str, Any]) -> None:
        try:
            await self._ws.send_json(payload)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            raise FeedConnectionError(f"send failed: {exc}") from exc

    async def receive(self) -> Optional[Frame]:
        try:
            msg = await self._ws.receive()
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise FeedConnectionError(f"read failed: {exc}") from exc
        if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
            return msg.data
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise FeedConnectionError(f"read failed: {self._ws.exception()}")
        return None

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._session.close()


class AiohttpFeedTransport:
    """Dials the feed with aiohttp's websocket client."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        heartbeat_seconds: float = 30.0,
        user_agent: str = "chainkills/0.1",
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self.user_agent = user_agent

    async def connect(self, url: str) -> FeedConnection:
        # No total timeout: the socket lives for hours. The handshake is
        # bounded by wait_for below.
        timeout = aiohttp.ClientTimeout(
            total=None,
            connect=self.timeout_seconds,
            sock_connect=self.timeout_seconds,
        )
        session = aiohttp.ClientSession(
            timeout=timeout, headers={"User-Agent": self.user_agent}
        )
        try:
            ws = await asyncio.wait_for(
                session.ws_connect(url, heartbeat=self.heartbeat_seconds),
                timeout=self.timeout_seconds,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            await session.close()
            reason = str(exc) or type(exc).__name__
            raise FeedConnectionError(f"dial {url} failed: {reason}") from exc
        return AiohttpFeedConnection(session, ws)


# ── Subscriber ───────────────────────────────────────────────


class FeedSubscriber:
    def __init__(
        self,
        url: str,
        channel: str,
        transport: FeedTransport,
        *,
        reconnect_delay: float = 10.0,
        reconnect_jitter: float = 0.0,
        max_attempts: int = 0,
        on_state_change: Optional[Callable[[FeedState], None]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.url = url
        self.channel = channel
        self._transport = transport
        self.reconnect_delay = max(reconnect_delay, 0.0)
        self.reconnect_jitter = max(reconnect_jitter, 0.0)
        self.max_attempts = max(max_attempts, 0)
        self._on_state_change = on_state_change
        self._sleep = sleep or self._wait_or_closed
        self._state = FeedState.DISCONNECTED
        self._closed = asyncio.Event()
        self._connection: Optional[FeedConnection] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self.frames_received = 0
        self.frames_dropped = 0
        self.connect_failures = 0

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _set_state(self, state: FeedState) -> None:
        if state is self._state:
            return
        logger.debug("Feed state %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("Feed state hook raised")

    async def _wait_or_closed(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def next_delay(self) -> float:
        if self.reconnect_jitter <= 0:
            return self.reconnect_delay
        return self.reconnect_delay + random.uniform(0.0, self.reconnect_jitter)

    async def events(self) -> AsyncIterator[RawEvent]:
        """Yield decoded events until :meth:`close` is called.

        Reconnects forever unless ``max_attempts`` is set, in which case
        :class:`FeedConnectionError` is raised after that many
        consecutive failed attempts.
        """
        self._loop = asyncio.get_running_loop()
        consecutive_failures = 0

        while not self.closed:
            try:
                self._set_state(FeedState.CONNECTING)
                self._connection = await self._transport.connect(self.url)
                if self.closed:
                    break
                logger.info("Connected to feed %s", self.url)

                subscription = {"action": "sub", "channel": self.channel}
                await self._connection.send_json(subscription)
                logger.info("Subscribed to feed channel %s", self.channel)
                self._set_state(FeedState.SUBSCRIBED)
                consecutive_failures = 0

                self._set_state(FeedState.STREAMING)
                while not self.closed:
                    frame = await self._connection.receive()
                    if frame is None:
                        raise FeedConnectionError("feed closed the connection")
                    self.frames_received += 1
                    try:
                        event = parse_raw_event(frame)
                    except ParseError as exc:
                        self.frames_dropped += 1
                        logger.warning("Dropping feed frame: %s", exc)
                        continue
                    yield event
            except Exception as exc:
                if self.closed:
                    break
                if isinstance(exc, FeedConnectionError):
                    logger.warning("Feed connection error: %s", exc)
                else:
                    logger.exception("Unexpected feed failure")
                consecutive_failures += 1
                self.connect_failures += 1
            finally:
                await self._drop_connection()

            if self.closed:
                break
            self._set_state(FeedState.DISCONNECTED)
            if self.max_attempts and consecutive_failures >= self.max_attempts:
                await self.close()
                raise FeedConnectionError(
                    f"giving up after {consecutive_failures} failed attempt(s)"
                )
            delay = self.next_delay()
            logger.info("Reconnecting to feed in %.1fs", delay)
            await self._sleep(delay)

        self._set_state(FeedState.CLOSED)

    async def _drop_connection(self) -> None:
        conn, self._connection = self._connection, None
        if conn is None:
            return
        try:
            await conn.close()
        except Exception:
            logger.debug("Error while closing feed connection", exc_info=True)

    async def close(self) -> None:
        """Stop reconnecting and tear down the active connection.

        Idempotent. From another thread use :meth:`close_threadsafe`.
        """
        if self.closed:
            return
        logger.info("Feed subscriber closing")
        self._closed.set()
        self._set_state(FeedState.CLOSED)
        await self._drop_connection()

    def close_threadsafe(self) -> Optional[concurrent.futures.Future[None]]:
        """Schedule :meth:`close` on the subscriber's loop from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return None
        return asyncio.run_coroutine_threadsafe(self.close(), loop)
