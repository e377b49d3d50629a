"""Per-event orchestration: classify, enrich, compose, dispatch."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import AbstractSet, Callable, Dict, Optional

from .cache import ReferenceCache
from .classifier import classify
from .composer import Composer
from .config import Settings
from .dispatcher import Dispatcher, NotificationSink
from .enricher import Enricher
from .errors import DetailLookupError
from .providers.base import DetailProvider
from .schemas import Classification, ClassificationKind, Notification, RawEvent

logger = logging.getLogger(__name__)


@dataclass
class PipelineStats:
    events_seen: int = 0
    losses: int = 0
    kills: int = 0
    chain_alerts: int = 0
    ignored: int = 0
    enrichment_failures: int = 0
    dispatched: int = 0
    dispatch_failures: int = 0


class KillPipeline:
    def __init__(
        self,
        *,
        cache: ReferenceCache,
        enricher: Enricher,
        composer: Composer,
        dispatcher: Dispatcher,
        tracked_ids: AbstractSet[int],
        ignore_system_ids: AbstractSet[int] = frozenset(),
        attacker_match_local_characters: bool = True,
        status_report_minutes: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache = cache
        self.enricher = enricher
        self.composer = composer
        self.dispatcher = dispatcher
        self.tracked_ids = frozenset(tracked_ids)
        self.ignore_system_ids = frozenset(ignore_system_ids)
        self.attacker_match_local_characters = attacker_match_local_characters
        self._status_seconds = max(status_report_minutes, 0) * 60
        self._clock = clock
        self._last_status = clock()
        self._refresh_errors: Dict[str, str] = {}
        self.stats = PipelineStats()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        cache: ReferenceCache,
        enricher: Enricher,
        dispatcher: Dispatcher,
    ) -> "KillPipeline":
        return cls(
            cache=cache,
            enricher=enricher,
            composer=Composer(settings),
            dispatcher=dispatcher,
            tracked_ids=settings.tracked_ids_set,
            ignore_system_ids=settings.ignore_system_ids_set,
            attacker_match_local_characters=settings.attacker_match_local_characters,
            status_report_minutes=settings.status_report_minutes,
        )

    async def send_info(self, text: str) -> bool:
        logger.info("Info: %s", text)
        return await self._dispatch_and_count(self.composer.compose_info(text))

    async def report_refresh_failure(self, what: str, exc: BaseException) -> None:
        message = f"Error refreshing {what}: {exc}"
        # Repeats of the same failure per part are logged by the cache, not re-posted.
        if self._refresh_errors.get(what) == message:
            return
        self._refresh_errors[what] = message
        await self.send_info(message)

    async def report_refresh_success(self, what: str) -> None:
        if self._refresh_errors.pop(what, None) is not None:
            logger.info("Reference refresh of %s recovered", what)

    async def _maybe_report_status(self) -> None:
        if self._status_seconds <= 0:
            return
        now = self._clock()
        if now - self._last_status < self._status_seconds:
            return
        self._last_status = now
        await self.send_info("Chainkills checker running.")

    async def handle(self, event: RawEvent) -> Classification:
        """Run one event through the pipeline.

        Returns the classification; lookup, configuration and sink
        failures are logged here and never propagate.
        """
        self.stats.events_seen += 1
        await self._maybe_report_status()
        await self.cache.refresh_if_stale()

        classification = classify(
            event,
            self.cache.snapshot(),
            self.tracked_ids,
            self.ignore_system_ids,
            attacker_match_local_characters=self.attacker_match_local_characters,
        )

        if not classification.is_relevant:
            self.stats.ignored += 1
            logger.debug("Kill %d: not relevant", event.killmail_id)
            return classification

        if classification.kind is ClassificationKind.CHAIN:
            self.stats.chain_alerts += 1
            await self._dispatch_and_count(
                self.composer.compose_chain_alert(event, classification)
            )
            return classification

        if classification.kind is ClassificationKind.LOSS:
            self.stats.losses += 1
        else:
            self.stats.kills += 1

        try:
            record = await self.enricher.enrich(event, classification)
        except DetailLookupError as exc:
            self.stats.enrichment_failures += 1
            logger.warning("Kill %d: dropped, enrichment failed: %s", event.killmail_id, exc)
            return classification

        await self._dispatch_and_count(self.composer.compose(record, classification))
        return classification

    async def _dispatch_and_count(self, notification: Notification) -> bool:
        sent = await self.dispatcher.dispatch(notification)
        if sent:
            self.stats.dispatched += 1
        else:
            self.stats.dispatch_failures += 1
        return sent


def build_pipeline(
    settings: Settings,
    *,
    provider: DetailProvider,
    sink: NotificationSink,
) -> KillPipeline:
    """Wire a pipeline whose cache reports refresh failures to the info channel."""
    pipeline: Optional[KillPipeline] = None

    async def _on_refresh_failure(what: str, exc: BaseException) -> None:
        if pipeline is not None:
            await pipeline.report_refresh_failure(what, exc)

    async def _on_refresh_success(what: str) -> None:
        if pipeline is not None:
            await pipeline.report_refresh_success(what)

    cache = ReferenceCache(
        provider,
        refresh_minutes=settings.reference_refresh_minutes,
        on_failure=_on_refresh_failure,
        on_success=_on_refresh_success,
    )
    pipeline = KillPipeline.from_settings(
        settings,
        cache=cache,
        enricher=Enricher(provider),
        dispatcher=Dispatcher(sink),
    )
    return pipeline
