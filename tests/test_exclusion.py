import datetime
import re
import unittest
from unittest.mock import patch

import pytest

from faultline import exclusion
from faultline.event import Event, EventType
from faultline.exclusion import ExclusionFilter, combined, is_bot_request, is_user_input_error


class CheckoutTimeout(TimeoutError):
    pass


def exception_event(exception: BaseException, **kwargs) -> Event:
    return Event.build(EventType.EXCEPTION, exception=exception, **kwargs)


class TestExclusionFilter(unittest.TestCase):
    def test_exception_types(self):
        excluder = ExclusionFilter(
            excluded_exceptions=[LookupError, "TimeoutError", re.compile(r"Permission")]
        )
        assert excluder.should_exclude(exception_event(KeyError("k")))
        # names match against the whole class hierarchy
        assert excluder.should_exclude(exception_event(CheckoutTimeout("slow")))
        assert excluder.should_exclude(exception_event(PermissionError("denied")))
        assert not excluder.should_exclude(exception_event(ValueError("v")))

    def test_patterns_match_class_or_message(self):
        excluder = ExclusionFilter(excluded_patterns=[re.compile(r"wp-admin"), "Bot"])
        assert excluder.should_exclude(exception_event(RuntimeError("GET /wp-admin failed")))
        assert excluder.should_exclude(exception_event(type("BotDetected", (Exception,), {})()))
        assert not excluder.should_exclude(exception_event(RuntimeError("fine")))

    def test_messages(self):
        excluder = ExclusionFilter(excluded_messages=["Forbidden"])
        assert excluder.should_exclude(exception_event(RuntimeError("403 Forbidden")))
        assert not excluder.should_exclude(Event.build(EventType.MESSAGE, message="Forbidden"))

    def test_environments(self):
        excluder = ExclusionFilter(excluded_environments=["test"])
        assert excluder.should_exclude(exception_event(ValueError("v"), environment="test"))
        assert not excluder.should_exclude(exception_event(ValueError("v"), environment="prod"))
        assert excluder.should_exclude(
            exception_event(ValueError("v"), context={"tags": {"environment": "test"}})
        )

        with_default = ExclusionFilter(excluded_environments=["test"], default_environment="test")
        assert with_default.should_exclude(Event(type=EventType.MESSAGE, message="m"))

    def test_custom_filters_and_failures(self):
        def broken(event):
            raise RuntimeError("bug in filter")

        excluder = ExclusionFilter(custom_filters=[broken, lambda event: event.level == "fatal"])
        assert excluder.should_exclude(Event.build(EventType.MESSAGE, "fatal", message="m"))
        assert not excluder.should_exclude(Event.build(EventType.MESSAGE, "info", message="m"))

    def test_inclusion_overrides_win(self):
        excluder = ExclusionFilter(excluded_exceptions=[ValueError])
        excluder.add_inclusion_override(lambda event: "critical" in event.message)

        assert not excluder.should_exclude(exception_event(ValueError("critical path broke")))
        assert excluder.should_exclude(exception_event(ValueError("ordinary")))

    def test_add_and_clear(self):
        excluder = ExclusionFilter()
        excluder.add_exclusion("exception", KeyError)
        excluder.add_exclusion("message", "nope")

        assert excluder.exclusion_stats()["excluded_exceptions"] == 1
        assert excluder.exclusion_stats()["excluded_messages"] == 1

        excluder.clear_exclusions("exception")
        assert excluder.exclusion_stats()["excluded_exceptions"] == 0
        assert excluder.exclusion_stats()["excluded_messages"] == 1

        excluder.clear_exclusions()
        assert set(excluder.exclusion_stats().values()) == {0}

        with pytest.raises(ValueError):
            excluder.add_exclusion("colour", "red")  # type: ignore[arg-type]
        with pytest.raises(ValueError):
            excluder.clear_exclusions("colour")  # type: ignore[arg-type]


class TestPresets(unittest.TestCase):
    def test_combined_dedups(self):
        settings = combined(["production", "security_focused"])
        assert settings["excluded_messages"].count("Forbidden") == 1
        assert is_bot_request in settings["custom_filters"]

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            combined(["nonexistent"])

    def test_mapping_presets(self):
        excluder = ExclusionFilter.from_presets("development", {"excluded_messages": ["flaky"]})
        assert excluder.should_exclude(exception_event(KeyboardInterrupt()))
        assert excluder.should_exclude(exception_event(RuntimeError("flaky network")))

    def test_every_preset_builds(self):
        for name in exclusion.PRESETS:
            assert isinstance(ExclusionFilter.from_presets(name), ExclusionFilter)

    def test_bot_requests(self):
        event = exception_event(
            RuntimeError("x"),
            context={"extra": {"request": {"headers": {"User-Agent": "Googlebot/2.1"}}}},
        )
        assert is_bot_request(event)
        assert not is_bot_request(exception_event(RuntimeError("x")))

    def test_user_input_errors(self):
        assert is_user_input_error(exception_event(ValueError("email is required")))
        assert not is_user_input_error(exception_event(ValueError("disk full")))

    def test_timeouts_at_peak(self):
        tuesday_noon = datetime.datetime(2024, 1, 2, 12)
        saturday_noon = datetime.datetime(2024, 1, 6, 12)
        assert exclusion.is_peak_hours(tuesday_noon)
        assert not exclusion.is_peak_hours(saturday_noon)

        with patch.object(exclusion, "is_peak_hours", return_value=True):
            assert exclusion.is_timeout_at_peak(exception_event(TimeoutError()))
            assert exclusion.is_timeout_at_peak(exception_event(RuntimeError("Read timeout")))
            assert not exclusion.is_timeout_at_peak(exception_event(RuntimeError("other")))

        with patch.object(exclusion, "is_peak_hours", return_value=False):
            assert not exclusion.is_timeout_at_peak(exception_event(TimeoutError()))
