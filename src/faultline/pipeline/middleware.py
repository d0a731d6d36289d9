import collections
import copy
import logging
import random
import re
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional

from faultline.pipeline.release import detect_release
from faultline.utils import qualified_class_name

if TYPE_CHECKING:
    from faultline.event import Event
    from faultline.sampling.base import Sampler

logger = logging.getLogger(__name__)

Hint = dict[str, Any]
App = Callable[["Event", Hint], Optional["Event"]]


class Middleware:
    """
    One step of a Pipeline.  Subclasses either hand a (possibly replaced) event on to `self.app`
    or return None, which stops the chain and drops the event.
    """

    def __init__(self, app: App):
        self.app = app

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        return self.app(event, hint)


class SampleFilter(Middleware):
    def __init__(
        self,
        app: App,
        sample_rate: float = 1.0,
        sample_callback: Optional[Callable[["Event", Hint], bool]] = None,
        rand: Callable[[], float] = random.random,
    ):
        super().__init__(app)
        self.sample_rate = sample_rate
        self.sample_callback = sample_callback
        self.rand = rand

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        if self.sample_callback is not None and not self.sample_callback(event, hint):
            return None
        if self.sample_rate < 1.0 and self.rand() > self.sample_rate:
            return None
        return self.app(event, hint)


class SamplingMiddleware(Middleware):
    def __init__(self, app: App, sampler: "Sampler"):
        super().__init__(app)
        self.sampler = sampler

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        if not self.sampler.sample(event, hint):
            return None
        return self.app(event, hint)


class ExceptionFilter(Middleware):
    """Drops events whose exception is an instance of an excluded class or matches a pattern."""

    def __init__(
        self,
        app: App,
        excluded_exceptions: Iterable[type[BaseException]] = (),
        excluded_patterns: Iterable[re.Pattern | str] = (),
    ):
        super().__init__(app)
        self.excluded_exceptions = tuple(excluded_exceptions)
        self.excluded_patterns = list(excluded_patterns)

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        if self.should_exclude(event):
            return None
        return self.app(event, hint)

    def should_exclude(self, event: "Event") -> bool:
        exception = event.exception
        if exception is None:
            return False

        if self.excluded_exceptions and isinstance(exception, self.excluded_exceptions):
            return True

        message = str(exception)
        class_name = qualified_class_name(exception)
        for pattern in self.excluded_patterns:
            if isinstance(pattern, re.Pattern):
                if pattern.search(message) or pattern.search(class_name):
                    return True
            elif isinstance(pattern, str):
                if pattern in message or pattern in class_name:
                    return True
        return False


PRIVATE_USER_KEYS = ("id", "uuid", "user_id")


class UserContextEnhancer(Middleware):
    """
    Merges user details from `user_provider` (a mapping, or a callable taking the event and
    hint) into the event's user context.  In privacy mode only identifiers are kept.
    """

    def __init__(
        self,
        app: App,
        user_provider: Mapping[str, Any] | Callable[["Event", Hint], Any] | None = None,
        privacy_mode: bool = False,
    ):
        super().__init__(app)
        self.user_provider = user_provider
        self.privacy_mode = privacy_mode

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        user_data = self.fetch_user(event, hint)
        if not user_data:
            return self.app(event, hint)

        user = {**event.user, **user_data}
        if self.privacy_mode:
            user = {k: v for k, v in user.items() if k in PRIVATE_USER_KEYS}

        return self.app(event.with_changes(context={**event.context, "user": user}), hint)

    def fetch_user(self, event: "Event", hint: Hint) -> Optional[Mapping[str, Any]]:
        if self.user_provider is None:
            return None
        if isinstance(self.user_provider, Mapping):
            return self.user_provider
        try:
            result = self.user_provider(event, hint)
        except Exception:
            logger.exception("User context provider failed")
            return None
        return result if isinstance(result, Mapping) else None


class RateLimiter(Middleware):
    """Sliding window: at most `max_events` events in any `time_window` seconds."""

    def __init__(
        self,
        app: App,
        max_events: int = 100,
        time_window: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app)
        self.max_events = max_events
        self.time_window = time_window
        self.clock = clock
        self._events: collections.deque[float] = collections.deque()
        self._lock = threading.Lock()

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        with self._lock:
            now = self.clock()
            while self._events and now - self._events[0] > self.time_window:
                self._events.popleft()

            if len(self._events) >= self.max_events:
                return None
            self._events.append(now)

        return self.app(event, hint)


class ReleaseTracker(Middleware):
    def __init__(
        self,
        app: App,
        release_provider: Optional[Callable[["Event", Hint], Any]] = None,
        detector: Callable[[], Optional[dict[str, Any]]] = detect_release,
    ):
        super().__init__(app)
        self.release_provider = release_provider
        self.detector = detector

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        release = None
        if self.release_provider is not None:
            release = self.release_provider(event, hint)
        if not release:
            release = self.detector()

        if release:
            event = event.with_changes(context={**event.context, "release": release})
        return self.app(event, hint)


class MetricsCollector(Middleware):
    """
    Counts processed events by type and level, and those dropped further down the chain.  The
    optional `collector` receives a snapshot of the counters after every event.
    """

    def __init__(
        self,
        app: App,
        collector: Optional[Callable[[dict[str, Any], "Event", Hint], Any]] = None,
    ):
        super().__init__(app)
        self.collector = collector
        self._metrics: dict[str, Any] = {
            "events_processed": 0,
            "events_dropped": 0,
            "events_by_type": collections.Counter(),
            "events_by_level": collections.Counter(),
        }
        self._lock = threading.Lock()

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        with self._lock:
            self._metrics["events_processed"] += 1
            self._metrics["events_by_type"][event.type.value] += 1
            self._metrics["events_by_level"][event.level.value] += 1

        result = self.app(event, hint)

        if result is None:
            with self._lock:
                self._metrics["events_dropped"] += 1

        if self.collector is not None:
            try:
                self.collector(self.metrics, event, hint)
            except Exception:
                logger.exception("Metrics collector failed")

        return result

    @property
    def metrics(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._metrics)


Enricher = Callable[["Event", Hint], Any]


class EventEnricher(Middleware):
    """
    Runs each enricher in turn.  An enricher returns a replacement Event, a mapping merged into
    the event context, or None to leave the event as it is.
    """

    def __init__(self, app: App, enrichers: Iterable[Enricher] = ()):
        super().__init__(app)
        self.enrichers = list(enrichers)

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        for enricher in self.enrichers:
            try:
                result = enricher(event, hint)
            except Exception:
                logger.exception(f"Event enricher {enricher!r} failed")
                continue

            if isinstance(result, Mapping):
                event = event.with_changes(context={**event.context, **result})
            elif result is not None and hasattr(result, "with_changes"):
                event = result
        return self.app(event, hint)


class ConditionalFilter(Middleware):
    """Keeps an event only when `condition(event, hint)` is truthy."""

    def __init__(self, app: App, condition: Callable[["Event", Hint], Any]):
        super().__init__(app)
        self.condition = condition

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        if not self.condition(event, hint):
            return None
        return self.app(event, hint)


class EventTransformer(Middleware):
    def __init__(self, app: App, transformer: Callable[["Event", Hint], Optional["Event"]]):
        super().__init__(app)
        self.transformer = transformer

    def __call__(self, event: "Event", hint: Hint) -> Optional["Event"]:
        transformed = self.transformer(event, hint)
        if transformed is None:
            return None
        return self.app(transformed, hint)
