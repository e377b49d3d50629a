from __future__ import annotations

import asyncio

from chainkills.cache import ReferenceCache
from chainkills.composer import Composer
from chainkills.config import Settings
from chainkills.dispatcher import Dispatcher
from chainkills.enricher import Enricher
from chainkills.pipeline import KillPipeline, build_pipeline
from chainkills.schemas import (
    Channel,
    ClassificationKind,
    KillmailDetail,
    LocalCharacter,
    MonitoredSystem,
    RawEvent,
)

from .fakes import FakeProvider, RecordingSink, make_event

TRACKED_CORP = 99000001


def _detail() -> KillmailDetail:
    return KillmailDetail.model_validate(
        {
            "killmail_id": 100,
            "killmail_time": "2024-03-01T12:00:00Z",
            "solar_system_id": 30000142,
            "victim": {"corporation_id": TRACKED_CORP, "ship_type_id": 587},
            "attackers": [{"character_id": 500, "ship_type_id": 17738, "final_blow": True}],
        }
    )


def _provider(**kwargs) -> FakeProvider:
    kwargs.setdefault("killmails", {100: _detail()})
    kwargs.setdefault(
        "names",
        {
            ("system", 30000142): "Jita",
            ("type", 587): "Rifter",
            ("character", 500): "Final Blow",
        },
    )
    kwargs.setdefault(
        "systems", [MonitoredSystem(system_id=31000005, alias="C2")]
    )
    kwargs.setdefault("characters", [LocalCharacter(character_id=2112000001)])
    return FakeProvider(**kwargs)


def _pipeline(provider, sink, clock=None, **overrides) -> KillPipeline:
    kwargs = dict(
        cache=ReferenceCache(provider, refresh_minutes=1),
        enricher=Enricher(provider),
        composer=Composer(Settings()),
        dispatcher=Dispatcher(sink),
        tracked_ids={TRACKED_CORP},
    )
    if clock is not None:
        kwargs["clock"] = clock
    kwargs.update(overrides)
    return KillPipeline(**kwargs)


def _event(**kwargs) -> RawEvent:
    return RawEvent.model_validate(make_event(**kwargs))


def test_tracked_loss_is_enriched_and_posted():
    provider = _provider()
    sink = RecordingSink()
    pipeline = _pipeline(provider, sink)

    result = asyncio.run(pipeline.handle(_event()))

    assert result.kind is ClassificationKind.LOSS
    assert len(sink.sent) == 1
    channel, content, embed = sink.sent[0]
    assert channel is Channel.KILLS
    assert "Rifter" in embed.title
    assert "2.50m" in embed.title
    # Victim corporation name lookup failed; the notification still goes out.
    assert "(UnknownGroup)" in embed.description
    assert pipeline.stats.losses == 1
    assert pipeline.stats.dispatched == 1


def test_irrelevant_event_makes_no_lookups_or_sends():
    provider = _provider()
    sink = RecordingSink()
    pipeline = _pipeline(provider, sink)
    event = _event(victim={"corporation_id": 7}, attackers=[{"character_id": 1}])

    result = asyncio.run(pipeline.handle(event))

    assert result.kind is ClassificationKind.NONE
    assert sink.sent == []
    # Only the reference refresh touched the provider.
    assert {what for what, _ in provider.calls} == {"systems", "characters"}
    assert pipeline.stats.ignored == 1


def test_chain_alert_skips_enrichment():
    provider = _provider()
    sink = RecordingSink()
    pipeline = _pipeline(provider, sink)
    event = _event(
        killmail_id=200,
        system_id=31000005,
        victim={"corporation_id": 7},
        attackers=[{"character_id": 1}, {"character_id": 2}, {"character_id": 3}],
    )

    result = asyncio.run(pipeline.handle(event))

    assert result.kind is ClassificationKind.CHAIN
    assert sink.sent == [
        (
            Channel.CHAIN,
            "@here A ship just died in C2 to 3 people, "
            "zkill link: https://zkillboard.com/kill/200/",
            None,
        )
    ]
    assert "killmail" not in {what for what, _ in provider.calls}


def test_enrichment_failure_drops_event():
    provider = _provider(killmails={})
    sink = RecordingSink()
    pipeline = _pipeline(provider, sink)

    result = asyncio.run(pipeline.handle(_event()))

    assert result.kind is ClassificationKind.LOSS
    assert sink.sent == []
    assert pipeline.stats.enrichment_failures == 1


def test_dispatch_failure_is_counted_not_raised():
    provider = _provider()
    sink = RecordingSink(fail=[Channel.KILLS])
    pipeline = _pipeline(provider, sink)

    asyncio.run(pipeline.handle(_event()))

    assert pipeline.stats.dispatch_failures == 1
    assert pipeline.stats.dispatched == 0


def test_periodic_status_message():
    now = [0.0]
    sink = RecordingSink()
    pipeline = _pipeline(
        _provider(), sink, clock=lambda: now[0], status_report_minutes=60
    )
    event = _event(victim={"corporation_id": 7}, attackers=[{"character_id": 1}])

    async def scenario():
        await pipeline.handle(event)
        now[0] = 3600.0
        await pipeline.handle(event)
        await pipeline.handle(event)

    asyncio.run(scenario())
    assert [content for _, content, _ in sink.on(Channel.INFO)] == [
        "Chainkills checker running."
    ]


def test_build_pipeline_reports_refresh_failures_once():
    provider = _provider(fail={"systems"})
    sink = RecordingSink()
    settings = Settings(tracked_ids=str(TRACKED_CORP), reference_refresh_minutes=0)
    pipeline = build_pipeline(settings, provider=provider, sink=sink)
    event = _event(victim={"corporation_id": 7}, attackers=[{"character_id": 1}])

    async def scenario():
        await pipeline.handle(event)
        await pipeline.handle(event)

    asyncio.run(scenario())
    info = [content for _, content, _ in sink.on(Channel.INFO)]
    assert info == ["Error refreshing monitored systems: systems: boom"]
    assert pipeline.cache.local_characters() == frozenset({2112000001})


def test_build_pipeline_uses_settings():
    settings = Settings(
        tracked_ids="1,2",
        ignore_system_ids="31000005",
        attacker_match_local_characters=False,
    )
    pipeline = build_pipeline(settings, provider=_provider(), sink=RecordingSink())
    assert pipeline.tracked_ids == frozenset({1, 2})
    assert pipeline.ignore_system_ids == frozenset({31000005})
    assert pipeline.attacker_match_local_characters is False


def test_refresh_failures_are_tracked_per_part_and_reset_on_recovery():
    provider = _provider(fail={"systems", "characters"})
    sink = RecordingSink()
    settings = Settings(tracked_ids=str(TRACKED_CORP), reference_refresh_minutes=0)
    pipeline = build_pipeline(settings, provider=provider, sink=sink)
    event = _event(victim={"corporation_id": 7}, attackers=[{"character_id": 1}])

    def info():
        return [content for _, content, _ in sink.on(Channel.INFO)]

    async def scenario():
        for _ in range(3):
            await pipeline.handle(event)
        outage = info()

        provider.fail = set()
        await pipeline.handle(event)
        recovered = info()

        provider.fail = {"systems", "characters"}
        await pipeline.handle(event)
        await pipeline.handle(event)
        return outage, recovered, info()

    outage, recovered, again = asyncio.run(scenario())
    expected = [
        "Error refreshing monitored systems: systems: boom",
        "Error refreshing local characters: characters: boom",
    ]
    assert outage == expected
    assert recovered == expected
    assert again == expected + expected


def test_changed_failure_reason_is_reported_again():
    provider = _provider(fail={"systems"})
    sink = RecordingSink()
    settings = Settings(tracked_ids=str(TRACKED_CORP), reference_refresh_minutes=0)
    pipeline = build_pipeline(settings, provider=provider, sink=sink)

    async def scenario():
        await pipeline.report_refresh_failure("monitored systems", RuntimeError("timeout"))
        await pipeline.report_refresh_failure("monitored systems", RuntimeError("timeout"))
        await pipeline.report_refresh_failure("monitored systems", RuntimeError("status 502"))

    asyncio.run(scenario())
    assert [content for _, content, _ in sink.on(Channel.INFO)] == [
        "Error refreshing monitored systems: timeout",
        "Error refreshing monitored systems: status 502",
    ]
