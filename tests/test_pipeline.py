import datetime
import os
import subprocess
import unittest
from unittest.mock import MagicMock, patch

import pytest

from faultline.errors import PipelineBuiltError
from faultline.event import Event, EventType, Level
from faultline.pipeline import (
    ConditionalFilter,
    EventEnricher,
    ExceptionFilter,
    MetricsCollector,
    Middleware,
    Pipeline,
    PipelineBuilder,
    RateLimiter,
    ReleaseTracker,
    SampleFilter,
    UserContextEnhancer,
)
from faultline.pipeline import release
from faultline.sampling import UniformSampler


def message_event(**context) -> Event:
    return Event.build(EventType.MESSAGE, Level.INFO, message="hello", context=context)


def exception_event(exception: BaseException) -> Event:
    return Event.build(EventType.EXCEPTION, Level.ERROR, exception=exception)


class Recorder(Middleware):
    def __init__(self, app, calls: list, label: str):
        super().__init__(app)
        self.calls = calls
        self.label = label

    def __call__(self, event, hint):
        self.calls.append(self.label)
        return self.app(event, hint)


class Dropper(Middleware):
    def __call__(self, event, hint):
        return None


class TestPipeline(unittest.TestCase):
    def test_runs_in_insertion_order(self):
        calls: list[str] = []
        pipeline = Pipeline().use(Recorder, calls, "first").use(Recorder, calls, "second")

        event = message_event()
        assert pipeline(event) is event
        assert calls == ["first", "second"]

    def test_short_circuits(self):
        calls: list[str] = []
        pipeline = Pipeline().use(Dropper).use(Recorder, calls, "never")

        assert pipeline(message_event()) is None
        assert calls == []

    def test_empty_pipeline_passes_event_through(self):
        event = message_event()
        assert Pipeline()(event) is event

    def test_cannot_modify_after_build(self):
        pipeline = Pipeline().use(Dropper)
        pipeline.build()

        assert pipeline.built
        with pytest.raises(PipelineBuiltError):
            pipeline.use(Dropper)

    def test_first_call_builds(self):
        pipeline = Pipeline()
        pipeline(message_event())
        with pytest.raises(PipelineBuiltError):
            pipeline.use(Dropper)

    def test_reset(self):
        pipeline = Pipeline().use(Dropper)
        pipeline.build()
        pipeline.reset()

        assert not pipeline.built
        assert pipeline.middlewares == []
        pipeline.use(Dropper)
        assert len(pipeline.middlewares) == 1

    def test_hint_is_passed_along(self):
        seen = {}

        def transformer(event, hint):
            seen.update(hint)
            return event

        pipeline = PipelineBuilder().transform_events(transformer).pipeline
        pipeline(message_event(), {"request_id": "r1"})
        assert seen == {"request_id": "r1"}


class TestMiddleware(unittest.TestCase):
    def test_sample_filter(self):
        event = message_event()
        keep_all = SampleFilter(lambda e, h: e, sample_rate=0.5, rand=lambda: 0.4)
        drop_all = SampleFilter(lambda e, h: e, sample_rate=0.5, rand=lambda: 0.6)
        vetoed = SampleFilter(lambda e, h: e, sample_callback=lambda e, h: False)

        assert keep_all(event, {}) is event
        assert drop_all(event, {}) is None
        assert vetoed(event, {}) is None

    def test_builder_sample_with_sampler(self):
        pipeline = PipelineBuilder().sample_with(UniformSampler(0.0)).pipeline
        assert pipeline(message_event()) is None

    def test_exception_filter(self):
        middleware = ExceptionFilter(
            lambda e, h: e, excluded_exceptions=[LookupError], excluded_patterns=["health check"]
        )
        assert middleware(exception_event(KeyError("k")), {}) is None
        assert middleware(exception_event(RuntimeError("health check failed")), {}) is None
        assert middleware(exception_event(RuntimeError("real failure")), {}) is not None
        assert middleware(message_event(), {}) is not None

    def test_user_context_enhancer(self):
        middleware = UserContextEnhancer(
            lambda e, h: e, user_provider=lambda e, h: {"id": 9, "email": "a@b.c"}
        )
        event = middleware(message_event(user={"name": "ada"}), {})
        assert event.user == {"name": "ada", "id": 9, "email": "a@b.c"}

        private = UserContextEnhancer(
            lambda e, h: e, user_provider={"id": 9, "email": "a@b.c"}, privacy_mode=True
        )
        assert private(message_event(), {}).user == {"id": 9}

    def test_failing_user_provider_is_ignored(self):
        def provider(event, hint):
            raise RuntimeError("db down")

        event = message_event(user={"id": 1})
        assert UserContextEnhancer(lambda e, h: e, user_provider=provider)(event, {}) is event

    def test_rate_limiter_sliding_window(self):
        now = [0.0]
        limiter = RateLimiter(lambda e, h: e, max_events=2, time_window=10, clock=lambda: now[0])
        event = message_event()

        assert limiter(event, {}) is event
        assert limiter(event, {}) is event
        assert limiter(event, {}) is None

        now[0] = 10.5
        assert limiter(event, {}) is event

    def test_release_tracker(self):
        detector = MagicMock(return_value={"commit_sha": "abc123"})

        provided = ReleaseTracker(lambda e, h: e, release_provider=lambda e, h: {"version": "2.1"}, detector=detector)
        assert provided(message_event(), {}).context["release"] == {"version": "2.1"}
        detector.assert_not_called()

        detected = ReleaseTracker(lambda e, h: e, detector=detector)
        assert detected(message_event(), {}).context["release"] == {"commit_sha": "abc123"}

        nothing = ReleaseTracker(lambda e, h: e, detector=lambda: None)
        assert "release" not in nothing(message_event(), {}).context

    def test_metrics_collector(self):
        collector = MagicMock()
        pipeline = (
            PipelineBuilder()
            .collect_metrics(collector)
            .filter_if(lambda event, hint: event.level == Level.ERROR)
            .pipeline
        )

        pipeline(message_event())
        pipeline(exception_event(ValueError("v")))

        app = pipeline.build()
        assert isinstance(app, MetricsCollector)
        metrics = app.metrics
        assert metrics["events_processed"] == 2
        assert metrics["events_dropped"] == 1
        assert metrics["events_by_level"] == {"info": 1, "error": 1}
        assert collector.call_count == 2

    def test_event_enricher(self):
        def add_region(event, hint):
            return {"region": "eu"}

        def retitle(event, hint):
            return event.with_changes(message="enriched")

        def broken(event, hint):
            raise RuntimeError("enricher bug")

        middleware = EventEnricher(lambda e, h: e, enrichers=[add_region, broken, retitle, lambda e, h: None])
        event = middleware(message_event(), {})

        assert event.context["region"] == "eu"
        assert event.message == "enriched"

    def test_conditional_filter(self):
        middleware = ConditionalFilter(lambda e, h: e, lambda event, hint: hint.get("keep"))
        assert middleware(message_event(), {"keep": True}) is not None
        assert middleware(message_event(), {}) is None


class TestPipelineBuilder(unittest.TestCase):
    def test_full_chain(self):
        pipeline = (
            PipelineBuilder()
            .exclude_exceptions(KeyboardInterrupt, patterns=["ignore me"])
            .rate_limit(max_events=5, time_window=60)
            .enhance_user_context({"id": 1})
            .track_releases(lambda event, hint: {"version": "1.0"})
            .enrich_events(lambda event, hint: {"service": "billing"})
            .pipeline
        )

        event = pipeline(exception_event(ValueError("boom")))

        assert event.user == {"id": 1}
        assert event.context["release"] == {"version": "1.0"}
        assert event.context["service"] == "billing"
        assert pipeline(exception_event(RuntimeError("ignore me"))) is None
        assert [spec.middleware_class for spec in pipeline.middlewares][:2] == [ExceptionFilter, RateLimiter]


class TestReleaseDetection(unittest.TestCase):
    def setUp(self):
        release.clear_release_cache()

    def tearDown(self):
        release.clear_release_cache()

    def test_deployment_info(self):
        info = release.detect_deployment_info(
            {
                "DEPLOYMENT_ID": "d-1",
                "DEPLOYMENT_TIME": "2024-05-01T12:00:00+00:00",
                "HEROKU_APP_NAME": "shop",
                "DYNO": "web.1",
                "KUBERNETES_SERVICE_HOST": "10.0.0.1",
                "HOSTNAME": "shop-7f9",
            }
        )
        assert info == {
            "deployment_id": "d-1",
            "deployment_time": datetime.datetime(2024, 5, 1, 12, tzinfo=datetime.timezone.utc),
            "platform": "kubernetes",
            "app_name": "shop",
            "dyno": "web.1",
            "pod_name": "shop-7f9",
        }

    def test_no_deployment_info(self):
        assert release.detect_deployment_info({}) is None
        assert release.parse_deployment_time("yesterday") is None

    def test_git_info(self):
        outputs = {
            ("rev-parse", "HEAD"): "abc123",
            ("rev-parse", "--abbrev-ref", "HEAD"): "main",
            ("log", "-1", "--format=%ct"): "1700000000",
            ("describe", "--exact-match", "--tags", "HEAD"): None,
        }

        def fake_git(*args, cwd=None):
            return outputs[args]

        with patch.object(release, "_git", side_effect=fake_git), patch.object(
            os.path, "exists", return_value=True
        ):
            info = release.detect_git_info("/srv/app")

        assert info == {
            "commit_sha": "abc123",
            "branch": "main",
            "commit_timestamp": datetime.datetime.fromtimestamp(
                1700000000, tz=datetime.timezone.utc
            ),
        }

    def test_git_failures_are_quiet(self):
        with patch.object(subprocess, "run", side_effect=FileNotFoundError("git")):
            assert release._git("status") is None

    def test_outside_a_checkout(self):
        assert release.detect_git_info("/definitely/not/a/checkout") is None

    def test_detect_release_merges_sources(self):
        with patch.object(release, "detect_git_info", return_value={"commit_sha": "abc"}):
            assert release.detect_release(environ={"BUILD_NUMBER": "7"}) == {
                "commit_sha": "abc",
                "build_number": "7",
            }
