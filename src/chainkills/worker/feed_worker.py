"""Kill feed worker.

Long-running process that reads the kill feed and pushes relevant kills
to the configured webhooks.

* One reader task owns the feed connection and parses each frame once
* Parsed events go through a fixed-capacity queue (``QUEUE_SIZE``); when
  it is full the reader waits, so bursts queue up instead of fanning out
* ``WORKER_CONCURRENCY`` worker tasks run the classify/enrich/dispatch
  pipeline
* The reference cache is refreshed at startup, every
  ``REFERENCE_REFRESH_INTERVAL_MINUTES`` and opportunistically per event
* Gracefully shuts down on SIGINT/SIGTERM, draining queued events first
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import asdict
from typing import List, Optional, Set

from ..cache import ReferenceCache
from ..config import Settings, get_settings, validate_settings
from ..dispatcher import NotificationSink, create_webhook_sink
from ..errors import ConfigurationError, FeedConnectionError
from ..feed import AiohttpFeedTransport, FeedState, FeedSubscriber, FeedTransport
from ..pipeline import KillPipeline, build_pipeline
from ..providers import create_detail_provider
from ..providers.base import DetailProvider
from ..schemas import RawEvent
from ._base import install_signal_handlers, reset_shutdown
from .heartbeat import WorkerHeartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "feed-worker"
HEARTBEAT_INTERVAL_SECONDS = 30.0


async def read_feed(
    subscriber: FeedSubscriber,
    queue: "asyncio.Queue[RawEvent]",
) -> None:
    """Move parsed events from the feed onto the queue."""
    saturated = False
    async for event in subscriber.events():
        if queue.full():
            if not saturated:
                logger.warning(
                    "Event queue full (%d); feed reads wait for workers",
                    queue.maxsize,
                )
            saturated = True
        else:
            saturated = False
        await queue.put(event)


async def process_events(
    name: str,
    pipeline: KillPipeline,
    queue: "asyncio.Queue[RawEvent]",
) -> None:
    while True:
        event = await queue.get()
        try:
            await pipeline.handle(event)
        except Exception:
            logger.exception("%s: kill %d crashed the pipeline", name, event.killmail_id)
        finally:
            queue.task_done()


async def reference_refresh_loop(
    cache: ReferenceCache,
    interval_seconds: float,
    shutdown: asyncio.Event,
) -> None:
    """Refresh the reference cache on a timer until shutdown."""
    while not shutdown.is_set():
        try:
            await asyncio.wait_for(shutdown.wait(), timeout=interval_seconds)
            return
        except asyncio.TimeoutError:
            pass
        await cache.refresh()


async def heartbeat_loop(
    heartbeat: WorkerHeartbeat,
    subscriber: FeedSubscriber,
    pipeline: KillPipeline,
    queue: "asyncio.Queue[RawEvent]",
    shutdown: asyncio.Event,
) -> None:
    while not shutdown.is_set():
        heartbeat.update(
            None,
            {
                "feed_state": subscriber.state.value,
                "frames_received": subscriber.frames_received,
                "frames_dropped": subscriber.frames_dropped,
                "connect_failures": subscriber.connect_failures,
                "queue_depth": queue.qsize(),
                **asdict(pipeline.stats),
            },
        )
        try:
            await asyncio.wait_for(shutdown.wait(), timeout=HEARTBEAT_INTERVAL_SECONDS)
            return
        except asyncio.TimeoutError:
            pass


async def feed_worker_loop(
    settings: Optional[Settings] = None,
    *,
    provider: Optional[DetailProvider] = None,
    sink: Optional[NotificationSink] = None,
    transport: Optional[FeedTransport] = None,
) -> None:
    settings = settings or get_settings()
    heartbeat = WorkerHeartbeat(settings, WORKER_NAME)
    logging.basicConfig(level=settings.log_level)
    shutdown = reset_shutdown()

    try:
        validate_settings(settings)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        heartbeat.update("error", {"reason": f"config error: {exc}"})
        return

    owned: List[object] = []
    if provider is None:
        provider = create_detail_provider(settings)
        owned.append(provider)
    if sink is None:
        sink = create_webhook_sink(settings)
        owned.append(sink)
    if transport is None:
        transport = AiohttpFeedTransport(
            timeout_seconds=settings.http_timeout_seconds,
            user_agent=settings.user_agent,
        )

    pipeline = build_pipeline(settings, provider=provider, sink=sink)
    tracked = pipeline.tracked_ids
    if not tracked:
        logger.warning("TRACKED_IDS is empty; only chain alerts will be sent")

    loop = asyncio.get_running_loop()
    install_signal_handlers(loop, WORKER_NAME)
    background: Set[asyncio.Task] = set()

    def _on_state_change(state: FeedState) -> None:
        heartbeat.update("running", {"feed_state": state.value})
        if state is FeedState.SUBSCRIBED:
            task = loop.create_task(pipeline.send_info("Kill feed socket opened."))
            background.add(task)
            task.add_done_callback(background.discard)

    subscriber = FeedSubscriber(
        settings.feed_url,
        settings.feed_channel,
        transport,
        reconnect_delay=settings.reconnect_delay_seconds,
        reconnect_jitter=settings.reconnect_jitter_seconds,
        max_attempts=settings.reconnect_max_attempts,
        on_state_change=_on_state_change,
    )

    heartbeat.update("starting", {"feed_url": settings.feed_url})
    await pipeline.cache.refresh()

    concurrency = settings.worker_concurrency
    queue: "asyncio.Queue[RawEvent]" = asyncio.Queue(maxsize=settings.queue_size)
    logger.info(
        "Feed worker started: feed=%s, concurrency=%d, queue_size=%d, tracked_ids=%d",
        settings.feed_url,
        concurrency,
        settings.queue_size,
        len(tracked),
    )
    heartbeat.update(
        "running",
        {
            "concurrency": concurrency,
            "queue_size": settings.queue_size,
            "tracked_ids": len(tracked),
        },
    )

    workers = [
        asyncio.create_task(process_events(f"worker-{i}", pipeline, queue))
        for i in range(concurrency)
    ]
    reader = asyncio.create_task(read_feed(subscriber, queue))
    helpers = [
        asyncio.create_task(
            heartbeat_loop(heartbeat, subscriber, pipeline, queue, shutdown)
        )
    ]
    refresh_minutes = settings.reference_refresh_interval_minutes
    if refresh_minutes > 0:
        helpers.append(
            asyncio.create_task(
                reference_refresh_loop(pipeline.cache, refresh_minutes * 60, shutdown)
            )
        )
    shutdown_wait = asyncio.create_task(shutdown.wait())

    try:
        await asyncio.wait({reader, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        shutdown.set()
        await subscriber.close()
        try:
            await reader
        except FeedConnectionError as exc:
            logger.error("Feed worker giving up: %s", exc)
            heartbeat.update("error", {"reason": str(exc)})
        except Exception:
            logger.exception("Feed reader crashed")

        if queue.qsize():
            logger.info("Shutdown: draining %d queued event(s)...", queue.qsize())
        await queue.join()
        if background:
            await asyncio.gather(*background, return_exceptions=True)

        for task in [*workers, *helpers, shutdown_wait]:
            task.cancel()
        for task in [*workers, *helpers, shutdown_wait]:
            with suppress(asyncio.CancelledError):
                await task

        for resource in owned:
            with suppress(Exception):
                await resource.aclose()  # type: ignore[attr-defined]

    logger.info("Feed worker stopped")
    heartbeat.update("stopped", asdict(pipeline.stats))


def main() -> None:
    asyncio.run(feed_worker_loop())


if __name__ == "__main__":
    main()
