import concurrent.futures
import threading
import time
import unittest
from unittest.mock import MagicMock, patch

import pytest

import faultline
from faultline.adapters import DummyAdapter
from faultline.client import Client
from faultline.configuration import FaultlineConfig
from faultline.event import Event, EventType, Level
from faultline.exclusion import ExclusionFilter
from faultline.pipeline import PipelineBuilder
from faultline.registry import Registry
from faultline.sampling import UniformSampler


def make_client(**settings) -> tuple[Client, DummyAdapter]:
    settings.setdefault("async_dispatch", False)
    settings.setdefault("backtrace_enable_code_context", False)
    registry = Registry()
    adapter = registry.register(DummyAdapter())
    return Client(config=FaultlineConfig(**settings), registry=registry), adapter


def raised(exception: BaseException) -> BaseException:
    try:
        raise exception
    except BaseException as e:
        return e


class TestCapture(unittest.TestCase):
    def test_capture_exception(self):
        client, adapter = make_client(environment="production", release="2.0.1")
        error = raised(ValueError("bad total"))

        event = client.capture_exception(error, context={"order": 17})

        assert event is adapter.last_event
        assert event.type == EventType.EXCEPTION
        assert event.level == Level.ERROR
        assert event.exception is error
        assert event.environment == "production"
        assert event.context["release"] == "2.0.1"
        assert event.context["context"] == {"order": 17}
        assert event.backtrace_frames[0].function == "raised"
        assert event.fingerprint is None

    def test_fingerprint_requires_configuration(self):
        client, adapter = make_client()
        assert client.capture_message("User 1234 not found").fingerprint is None

        client, adapter = make_client(fingerprint_callback=lambda event: "checkout")
        assert client.capture_message("User 1234 not found").fingerprint == "checkout"

        client, adapter = make_client(fingerprint_patterns="default")
        assert client.capture_message("User 1234 not found").fingerprint == "user-lookup-error"

        client, adapter = make_client(
            fingerprint_patterns=[{"pattern": "card declined", "fingerprint": "payments"}]
        )
        assert client.capture_message("card declined").fingerprint == "payments"
        assert len(client.capture_message("cart empty").fingerprint) == 16

    def test_capture_message(self):
        client, adapter = make_client()

        event = client.capture_message("cache warmed", level="warn")

        assert adapter.events == [event]
        assert event.level == Level.WARNING
        assert event.message == "cache warmed"

    def test_scope_data_is_attached(self):
        client, adapter = make_client(default_tags={"service": "billing"})
        client.current_scope().set_user({"id": 42})
        client.add_breadcrumb("opened cart", type="navigation", cart=3)

        event = client.capture_message("checkout failed", tags={"step": "payment"})

        assert event.tags == {"service": "billing", "step": "payment"}
        assert event.user == {"id": 42}
        assert event.breadcrumbs[0]["message"] == "opened cart"
        assert event.breadcrumbs[0]["metadata"] == {"cart": 3}
        # overrides only apply to that capture
        assert client.current_scope().tags == {}

    def test_with_scope_transaction(self):
        client, adapter = make_client()

        with client.with_scope({"transaction_name": "POST /orders", "user": {"id": 1}}):
            event = client.capture_message("inside")
        outside = client.capture_message("outside")

        assert event.transaction == "POST /orders"
        assert event.user == {"id": 1}
        assert outside.transaction is None
        assert outside.user == {}

    def test_disabled_client(self):
        client, adapter = make_client(enabled=False)
        assert client.capture_message("ignored") is None
        assert adapter.events == []

    def test_capture_never_raises(self):
        client, adapter = make_client()
        with patch.object(client.processor, "process_exception", side_effect=RuntimeError("bug")):
            assert client.capture_exception(raised(ValueError("x"))) is None

        client.router = MagicMock()
        client.router.process_event.side_effect = RuntimeError("router bug")
        assert client.capture_message("still fine") is None

    def test_adapter_failures_do_not_reach_the_caller(self):
        client, adapter = make_client(error_handler=MagicMock())
        client.registry.register(DummyAdapter(name="broken", failure=ConnectionError("down")))

        event = client.capture_message("delivered anyway")

        assert adapter.last_event is event
        client.config.error_handler.assert_called_once()


class TestProcessing(unittest.TestCase):
    def test_pipeline_runs_first(self):
        calls = []
        pipeline = PipelineBuilder().transform_events(
            lambda event, hint: calls.append("pipeline") or event.with_changes(message="piped")
        )
        before_send = MagicMock(side_effect=lambda event: calls.append("before_send") or event)
        client, adapter = make_client(pipeline=pipeline, before_send=before_send)

        event = client.capture_message("raw")

        assert calls == ["pipeline", "before_send"]
        assert event.message == "piped"

    def test_pipeline_can_be_disabled(self):
        pipeline = PipelineBuilder().filter_if(lambda event, hint: False)
        client, adapter = make_client(pipeline=pipeline, enable_pipeline=False)
        assert client.capture_message("kept") is not None

    def test_exclusion_filter(self):
        client, adapter = make_client(exclusion_filter=ExclusionFilter(excluded_exceptions=[KeyError]))

        assert client.capture_exception(KeyError("k")) is None
        assert client.capture_exception(ValueError("v")) is not None
        assert len(adapter.events) == 1

    def test_sampling(self):
        client, adapter = make_client(sampling_strategy=UniformSampler(0.0))
        assert client.capture_message("dropped") is None

        client, adapter = make_client(sample_rate=0.0)
        assert client.capture_message("dropped") is None

        client, adapter = make_client(sampling_strategy=lambda event, hint: hint.get("keep"))
        assert client.capture_message("dropped") is None
        assert client.capture_message("kept", hint={"keep": True}) is not None

    def test_before_send(self):
        client, adapter = make_client(before_send=lambda event: event.with_changes(fingerprint="mine"))
        assert client.capture_message("m").fingerprint == "mine"

        client, adapter = make_client(before_send=lambda event: None)
        assert client.capture_message("m") is None

        client, adapter = make_client(before_send=lambda event: {"not": "an event"})
        assert client.capture_message("m") is None
        assert adapter.events == []

    def test_scrubbing(self):
        client, adapter = make_client(default_extra={"api_token": "s3cr3t", "cart": 3})
        event = client.capture_message("m")
        assert event.extra == {"api_token": "[FILTERED]", "cart": 3}

        client, adapter = make_client(default_extra={"api_token": "s3cr3t"}, scrub_enabled=False)
        assert client.capture_message("m").extra == {"api_token": "s3cr3t"}


class TestDispatch(unittest.TestCase):
    def test_async_dispatch_returns_future(self):
        client, adapter = make_client(async_dispatch=True, async_max_workers=2)
        release = threading.Event()
        adapter.capture = MagicMock(side_effect=lambda event: release.wait(5) and event)

        future = client.capture_message("queued")

        assert isinstance(future, concurrent.futures.Future)
        assert client.pending() == 1
        assert not client.flush(timeout=0.01)

        release.set()
        assert client.flush(timeout=5)
        assert future.result(timeout=5)[0].delivered
        client.shutdown()

    def test_flush_flushes_adapters(self):
        client, adapter = make_client()
        assert client.flush(timeout=1.0)
        assert adapter.flush_calls == [1.0]

    def test_shutdown(self):
        client, adapter = make_client(async_dispatch=True)
        client.capture_message("last words")

        client.shutdown()

        assert adapter.shutdown_called
        assert len(adapter.events) == 1
        assert not client.enabled
        assert client.capture_message("too late") is None
        # idempotent
        client.shutdown()

    def test_dispatch_after_shutdown_does_not_restart_the_pool(self):
        client, adapter = make_client(async_dispatch=True)
        event = Event.build(EventType.MESSAGE, message="raced")
        client.shutdown()

        # a capture that passed the enabled check before shutdown reaches dispatch late
        assert client.dispatch(event) is None
        assert client._executor is None
        assert client.pending() == 0
        assert adapter.events == []

    def test_shutdown_does_not_wait_for_hung_adapters(self):
        client, adapter = make_client(async_dispatch=True)
        release = threading.Event()
        adapter.capture = MagicMock(side_effect=lambda event: release.wait(10) and event)
        client.capture_message("stuck")

        started = time.monotonic()
        client.shutdown(timeout=0.05)
        elapsed = time.monotonic() - started
        release.set()

        assert elapsed < 5
        assert not client.enabled


class TestFacade(unittest.TestCase):
    def setUp(self):
        self.adapter = DummyAdapter(name="memory")
        faultline.configure(adapters=[self.adapter], environment="facade")

    def test_configure_overrides_settings(self):
        assert faultline.client().config.environment == "facade"
        assert faultline.client().config.async_dispatch is False
        assert faultline.registry().get("memory") is self.adapter

    def test_reconfigure_shuts_down_previous_client(self):
        previous = faultline.client()
        faultline.configure(adapters=[DummyAdapter(name="other")])

        assert faultline.client() is not previous
        assert not previous.enabled
        assert self.adapter.shutdown_called

    def test_configured_adapters(self):
        config = FaultlineConfig(async_dispatch=False)
        config.register_adapter("audit", "dummy", should_log=True)
        client = faultline.configure(config)
        assert isinstance(client.registry.get("audit"), DummyAdapter)

    def test_capture_helpers(self):
        faultline.add_breadcrumb("step one")
        with faultline.with_scope({"tags": {"job": "sync"}}):
            faultline.capture_message("hello")

        event = self.adapter.last_event
        assert event.tags == {"job": "sync"}
        assert event.breadcrumbs[0]["message"] == "step one"
        assert faultline.current_scope().tags == {}

    def test_handle(self):
        def fail():
            raise ValueError("handled failure")

        assert faultline.handle(fail, fallback=lambda: "fallback") == "fallback"
        assert faultline.handle(lambda: "ok") == "ok"
        assert self.adapter.last_event.context["context"] == {"handled": True}

        with pytest.raises(KeyError):
            faultline.handle(lambda: {}["missing"], error_class=ValueError)

    def test_record(self):
        def fail():
            raise ValueError("recorded failure")

        with pytest.raises(ValueError):
            faultline.record(fail, context={"job": "nightly"})

        assert self.adapter.last_event.context["context"] == {"job": "nightly", "handled": False}

    def test_report(self):
        event = faultline.report(RuntimeError("reported"), level=Level.WARNING)
        assert event.level == Level.WARNING
        assert event.context["context"] == {"handled": True}

    def test_flush_and_shutdown(self):
        assert faultline.flush(timeout=0.5)
        faultline.shutdown()
        assert self.adapter.shutdown_called
        assert faultline._client is None


def test_default_client_is_injected(registry):
    client = faultline.client()
    assert client.registry is registry
    assert client.config.environment == "test"
    assert isinstance(client.capture_message("via injector"), Event)
