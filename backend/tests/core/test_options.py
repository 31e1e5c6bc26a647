"""Component Options — verifies defaults and fatal validation of bad values."""

import dataclasses

import pytest

from backbone.core.domain_types import ChangeEvent
from backbone.core.errors import ConfigurationError
from backbone.core.options import MonitorConfig, QueryOptions, SubscriptionOptions


def test_monitor_defaults():
    config = MonitorConfig()
    assert config.health_check_interval_ms == 30_000
    assert config.health_check_timeout_ms == 5_000
    assert config.auto_reconnect is True
    assert config.max_reconnect_attempts == 5
    assert config.reconnect_delay_ms == 2_000


def test_query_defaults():
    opts = QueryOptions()
    assert opts.retry_on_failure is True
    assert opts.max_retries == 3
    assert opts.retry_delay_ms == 1_000
    assert opts.show_error_to_user is True
    assert opts.log_error is True
    assert opts.context == {}


def test_subscription_defaults_and_channel_spec():
    opts = SubscriptionOptions(table="lessons", filter="course_id=eq.7")
    assert opts.event is ChangeEvent.ALL
    assert opts.schema == "public"
    assert opts.max_reconnect_attempts == 5
    assert opts.reconnect_delay_ms == 2_000
    spec = opts.channel_spec
    assert (spec.table, spec.schema, spec.filter) == ("lessons", "public", "course_id=eq.7")


@pytest.mark.parametrize("kwargs", [
    {"health_check_interval_ms": 0},
    {"health_check_timeout_ms": -1},
    {"max_reconnect_attempts": -1},
    {"reconnect_delay_ms": -5},
])
def test_invalid_monitor_config_is_fatal(kwargs):
    with pytest.raises(ConfigurationError):
        MonitorConfig(**kwargs)


def test_negative_retries_rejected():
    with pytest.raises(ConfigurationError):
        QueryOptions(max_retries=-1)


def test_empty_table_rejected():
    with pytest.raises(ConfigurationError):
        SubscriptionOptions(table="")


def test_zero_attempts_allowed():
    assert MonitorConfig(max_reconnect_attempts=0).max_reconnect_attempts == 0
    assert QueryOptions(max_retries=0).max_retries == 0


def test_options_are_frozen():
    with pytest.raises(dataclasses.FrozenInstanceError):
        QueryOptions().max_retries = 9
