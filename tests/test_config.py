from __future__ import annotations

from dataclasses import replace

import pytest

from chainkills.config import Settings, _parse_id_list, get_settings, validate_settings
from chainkills.errors import ConfigurationError


def test_parse_id_list_skips_blanks_junk_and_non_positive():
    assert _parse_id_list("99000001, 99000002,,abc, 0, -5 ,") == [99000001, 99000002]
    assert _parse_id_list("") == []


def test_id_sets_are_parsed_from_comma_lists():
    settings = Settings(tracked_ids="1,2,2", ignore_system_ids="31000005")
    assert settings.tracked_ids_set == frozenset({1, 2})
    assert settings.ignore_system_ids_set == frozenset({31000005})


def test_map_api_enabled_needs_base_url_and_slug():
    assert not Settings(map_api_base_url="", map_api_slug="chain").map_api_enabled
    assert not Settings(map_api_base_url="https://map.local/api", map_api_slug="").map_api_enabled
    assert Settings(map_api_base_url="https://map.local/api", map_api_slug="chain").map_api_enabled


def test_validate_settings_accepts_defaults():
    validate_settings(replace(get_settings(), map_api_base_url="", value_format="abbreviated"))


@pytest.mark.parametrize(
    "overrides, needle",
    [
        ({"feed_url": ""}, "FEED_URL"),
        ({"reconnect_delay_seconds": -1.0}, "RECONNECT_DELAY_SECONDS"),
        ({"reconnect_max_attempts": -1}, "RECONNECT_MAX_ATTEMPTS"),
        ({"http_timeout_seconds": 0.0}, "HTTP_TIMEOUT_SECONDS"),
        ({"value_format": "scientific"}, "VALUE_FORMAT"),
        ({"worker_concurrency": 0}, "WORKER_CONCURRENCY"),
        ({"queue_size": 0}, "QUEUE_SIZE"),
        ({"map_api_base_url": "https://map.local/api", "map_api_slug": ""}, "MAP_API_SLUG"),
    ],
)
def test_validate_settings_rejects_bad_values(overrides, needle):
    settings = replace(get_settings(), **overrides)
    with pytest.raises(ConfigurationError, match=needle):
        validate_settings(settings)


def test_validate_settings_reports_every_problem():
    settings = replace(get_settings(), feed_url="", queue_size=0)
    with pytest.raises(ConfigurationError) as info:
        validate_settings(settings)
    assert "FEED_URL" in str(info.value)
    assert "QUEUE_SIZE" in str(info.value)
