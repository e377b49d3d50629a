"""Error taxonomy for the kill feed pipeline.

Each error also derives from the closest builtin so callers that only
know about ``ConnectionError`` / ``LookupError`` / ``ValueError`` still
catch them.
"""

from __future__ import annotations


class ChainkillsError(Exception):
    """Base class for every error raised by this package."""


class FeedConnectionError(ChainkillsError, ConnectionError):
    """Dialing, subscribing to, or reading from the feed failed."""


class ParseError(ChainkillsError, ValueError):
    """An inbound frame or lookup response could not be decoded."""


class DetailLookupError(ChainkillsError, LookupError):
    """A single detail-provider call failed."""

    def __init__(self, what: str, reason: str = "") -> None:
        self.what = what
        self.reason = reason
        super().__init__(f"{what}: {reason}" if reason else what)


class ConfigurationError(ChainkillsError):
    """Settings are invalid or a destination is missing credentials."""


class DispatchError(ChainkillsError):
    """A notification sink rejected or failed to deliver a message."""
