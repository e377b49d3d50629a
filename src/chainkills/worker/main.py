"""Entry point for ``python -m chainkills.worker.main``.

Runs the kill feed worker (same as ``python -m chainkills.worker.feed_worker``).
"""

from __future__ import annotations

from .feed_worker import main

if __name__ == "__main__":
    main()
