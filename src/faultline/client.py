"""
Turns exceptions and messages into Events and hands them to the Router.

A capture walks the following steps, any of which may drop the event:

build (scope + defaults) -> pipeline -> exclusion filter -> sampler -> before_send -> scrub -> dispatch

Dispatch is synchronous (the caller waits for every adapter) or, by default, runs on a small
bounded thread pool.  Capturing never raises: a failure in any step is logged and the event is
dropped.
"""

import concurrent.futures
import logging
import threading
from typing import Any, Mapping, Optional

from faultline.backtrace.processor import BacktraceConfig, BacktraceProcessor
from faultline.breadcrumbs import Breadcrumb
from faultline.configuration import FaultlineConfig
from faultline.dependency_injection import inject, injected
from faultline.event import Event, EventType, Level
from faultline.fingerprint import Fingerprinter
from faultline.pipeline import Pipeline, PipelineBuilder
from faultline.registry import Registry
from faultline.router import AdapterOutcome, Router
from faultline.sampling import Sampler, build_sampler
from faultline.scope import AnyScope, Scope, ScopeManager
from faultline.scrubber import Scrubber

logger = logging.getLogger(__name__)

CaptureResult = Event | concurrent.futures.Future | None


class Client:
    @inject
    def __init__(
        self,
        config: FaultlineConfig = injected,
        registry: Registry = injected,
        scopes: Optional[ScopeManager] = None,
    ):
        self.config = config
        self.registry = registry
        self.router = Router(registry=registry, error_handler=config.error_handler)
        self.scopes = scopes or ScopeManager()
        self.processor = BacktraceProcessor(BacktraceConfig.from_config(config))
        self.fingerprinter = Fingerprinter.from_config(config)
        self.scrubber = Scrubber.from_config(config) if config.scrub_enabled else None
        self.sampler: Optional[Sampler] = build_sampler(config.sampling_strategy, config.sample_rate)
        self.pipeline = self._resolve_pipeline(config.pipeline)

        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._pending: set[concurrent.futures.Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    @staticmethod
    def _resolve_pipeline(pipeline: Any) -> Any:
        if isinstance(pipeline, PipelineBuilder):
            return pipeline.pipeline
        if pipeline is None or isinstance(pipeline, Pipeline) or callable(pipeline):
            return pipeline
        logger.warning(f"Ignoring pipeline of unsupported type {type(pipeline).__name__}")
        return None

    @property
    def enabled(self) -> bool:
        return self.config.enabled and not self._closed

    def capture_exception(
        self,
        exception: BaseException,
        level: Level | str = Level.ERROR,
        context: Optional[Mapping[str, Any]] = None,
        hint: Optional[dict[str, Any]] = None,
        **scope_overrides: Any,
    ) -> CaptureResult:
        if not self.enabled:
            return None

        try:
            with self.scopes.with_scope(scope_overrides) as scope:
                event = Event.build(
                    EventType.EXCEPTION,
                    level,
                    exception=exception,
                    context=self._build_context(scope, context),
                    environment=self.config.environment,
                    transaction=scope.transaction_name,
                    processor=self.processor,
                    fingerprinter=self.fingerprinter,
                    follow_cause=self.config.backtrace_follow_cause,
                )
        except Exception:
            logger.exception("Failed to build exception event")
            return None

        return self.capture_event(event, {"exception": exception, **(hint or {})})

    def capture_message(
        self,
        message: str,
        level: Level | str = Level.INFO,
        context: Optional[Mapping[str, Any]] = None,
        hint: Optional[dict[str, Any]] = None,
        **scope_overrides: Any,
    ) -> CaptureResult:
        if not self.enabled:
            return None

        try:
            with self.scopes.with_scope(scope_overrides) as scope:
                event = Event.build(
                    EventType.MESSAGE,
                    level,
                    message=message,
                    context=self._build_context(scope, context),
                    environment=self.config.environment,
                    transaction=scope.transaction_name,
                    fingerprinter=self.fingerprinter,
                )
        except Exception:
            logger.exception("Failed to build message event")
            return None

        return self.capture_event(event, hint)

    def capture_event(self, event: Event, hint: Optional[dict[str, Any]] = None) -> CaptureResult:
        if not self.enabled:
            return None

        hint = hint if hint is not None else {}
        try:
            processed = self.process_event(event, hint)
            if processed is None:
                return None
            return self.dispatch(processed)
        except Exception:
            logger.exception("Failed to capture event")
            return None

    def process_event(self, event: Event, hint: dict[str, Any]) -> Optional[Event]:
        if self.config.enable_pipeline and self.pipeline is not None:
            event = self.pipeline(event, hint)
            if event is None:
                logger.debug("Event dropped by pipeline")
                return None

        exclusion_filter = self.config.exclusion_filter
        if exclusion_filter is not None and hasattr(exclusion_filter, "should_exclude"):
            if exclusion_filter.should_exclude(event):
                logger.debug("Event excluded by configured exclusion_filter")
                return None

        if self.sampler is not None and not self.sampler.sample(event, hint):
            logger.debug("Event dropped by sampler")
            return None

        if self.config.before_send is not None:
            result = self.config.before_send(event)
            if result is None:
                logger.debug("Event dropped by before_send")
                return None
            if not isinstance(result, Event):
                logger.warning(
                    f"before_send returned {type(result).__name__} instead of an Event, dropping it"
                )
                return None
            event = result

        if self.scrubber is not None:
            event = event.scrubbed(self.scrubber)

        return event

    def dispatch(self, event: Event) -> Optional[Event | concurrent.futures.Future]:
        if not self.config.async_dispatch:
            self.router.process_event(event)
            return event

        with self._lock:
            # a capture racing shutdown() must not bring the pool back
            if self._closed:
                logger.debug("Client is shut down, dropping event")
                return None
            if self._executor is None:
                self._executor = concurrent.futures.ThreadPoolExecutor(
                    max_workers=max(self.config.async_max_workers, 1),
                    thread_name_prefix="faultline-dispatch",
                )
            future = self._executor.submit(self._deliver, event)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _deliver(self, event: Event) -> list[AdapterOutcome]:
        try:
            return self.router.process_event(event)
        except Exception:
            logger.exception("Failed to deliver event in background")
            return []

    def _forget(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _build_context(
        self, scope: AnyScope, extra_context: Optional[Mapping[str, Any]]
    ) -> dict[str, Any]:
        defaults = self.config.default_context
        context: dict[str, Any] = {
            "tags": {**defaults["tags"], **scope.tags},
            "user": {**defaults["user"], **scope.user},
            "extra": {**defaults["extra"], **scope.extra},
            "breadcrumbs": list(scope.breadcrumbs),
        }
        if self.config.release:
            context["release"] = self.config.release
        if extra_context:
            context["context"] = dict(extra_context)
        return context

    def add_breadcrumb(self, message: Any, type: str = "default", **metadata: Any) -> Breadcrumb:
        return self.scopes.add_breadcrumb(message, type=type, **metadata)

    def with_scope(self, overrides: Optional[Mapping[str, Any]] = None):
        return self.scopes.with_scope(overrides)

    def isolated_scope(self):
        return self.scopes.isolated_scope()

    def current_scope(self) -> AnyScope:
        return self.scopes.current_scope()

    def clear_scope(self) -> Scope:
        return self.scopes.clear_scope()

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush(self, timeout: Optional[float] = 2.0) -> bool:
        """
        Waits up to `timeout` seconds for queued events, then flushes every active adapter.
        Returns False if some events were still being delivered when the timeout expired.
        """
        with self._lock:
            pending = list(self._pending)

        completed = True
        if pending:
            _, not_done = concurrent.futures.wait(pending, timeout=timeout)
            completed = not not_done
            if not_done:
                logger.warning(f"{len(not_done)} events were still being delivered after {timeout}s")

        for adapter in self.registry.active():
            try:
                adapter.flush(timeout)
            except Exception:
                logger.exception(f"Failed to flush adapter {adapter.name}")

        return completed

    def shutdown(self, timeout: Optional[float] = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self.flush(timeout)

        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            # flush already waited up to the timeout; a hung adapter must not block shutdown
            executor.shutdown(wait=False)

        self.registry.clear()
