"""Shutdown primitives shared by worker entry points."""

from __future__ import annotations

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)

_shutdown = asyncio.Event()


def shutdown_event() -> asyncio.Event:
    return _shutdown


def reset_shutdown() -> asyncio.Event:
    """Install a fresh shutdown event for a new worker run.

    An ``asyncio.Event`` binds to the first loop that waits on it, so each
    ``asyncio.run`` needs its own.
    """
    global _shutdown
    _shutdown = asyncio.Event()
    return _shutdown


def request_shutdown(worker_name: str) -> None:
    logger.info("%s: shutdown signal received", worker_name)
    _shutdown.set()


def install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    worker_name: str,
) -> None:
    """Install SIGINT/SIGTERM handlers with portable fallback."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown, worker_name)
        except (NotImplementedError, RuntimeError, ValueError):
            try:
                signal.signal(
                    sig,
                    lambda *_: loop.call_soon_threadsafe(request_shutdown, worker_name),
                )
            except (ValueError, OSError):
                logger.warning(
                    "%s: unable to install signal handler for %s",
                    worker_name,
                    sig.name,
                )
