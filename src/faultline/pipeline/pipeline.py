import dataclasses
import logging
import re
import threading
from typing import TYPE_CHECKING, Any, Callable, Optional

from faultline.errors import PipelineBuiltError
from faultline.pipeline.middleware import (
    App,
    ConditionalFilter,
    Enricher,
    EventEnricher,
    EventTransformer,
    ExceptionFilter,
    Hint,
    MetricsCollector,
    Middleware,
    RateLimiter,
    ReleaseTracker,
    SampleFilter,
    SamplingMiddleware,
    UserContextEnhancer,
)

if TYPE_CHECKING:
    from faultline.event import Event
    from faultline.sampling.base import Sampler

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class MiddlewareSpec:
    middleware_class: type[Middleware]
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = dataclasses.field(default_factory=dict)

    def instantiate(self, app: App) -> Middleware:
        return self.middleware_class(app, *self.args, **self.kwargs)


def _terminal(event: "Event", hint: Hint) -> Optional["Event"]:
    return event


class Pipeline:
    """
    An ordered chain of middleware.  The first middleware added runs first.  The chain is composed
    once, on `build()` or the first call; after that it can no longer be changed, short of `reset()`.
    """

    def __init__(self):
        self._specs: list[MiddlewareSpec] = []
        self._app: Optional[App] = None
        self._lock = threading.Lock()

    @property
    def built(self) -> bool:
        return self._app is not None

    @property
    def middlewares(self) -> list[MiddlewareSpec]:
        return list(self._specs)

    def use(self, middleware_class: type[Middleware], *args: Any, **kwargs: Any) -> "Pipeline":
        with self._lock:
            if self._app is not None:
                raise PipelineBuiltError("Cannot modify pipeline after it's built")
            self._specs.append(MiddlewareSpec(middleware_class, args, kwargs))
        return self

    def build(self) -> App:
        with self._lock:
            if self._app is None:
                app: App = _terminal
                for spec in reversed(self._specs):
                    app = spec.instantiate(app)
                self._app = app
            return self._app

    def reset(self) -> "Pipeline":
        with self._lock:
            self._specs.clear()
            self._app = None
        return self

    def __call__(self, event: "Event", hint: Optional[Hint] = None) -> Optional["Event"]:
        app = self._app or self.build()
        return app(event, hint if hint is not None else {})


class PipelineBuilder:
    """
    Fluent construction of a Pipeline:

    pipeline = (
        PipelineBuilder()
        .exclude_exceptions(KeyboardInterrupt, patterns=["health check"])
        .rate_limit(max_events=50, time_window=60)
        .track_releases()
        .pipeline
    )
    """

    def __init__(self):
        self.pipeline = Pipeline()

    def sample(
        self, rate: float = 1.0, callback: Optional[Callable[["Event", Hint], bool]] = None
    ) -> "PipelineBuilder":
        self.pipeline.use(SampleFilter, sample_rate=rate, sample_callback=callback)
        return self

    def sample_with(self, sampler: "Sampler") -> "PipelineBuilder":
        self.pipeline.use(SamplingMiddleware, sampler)
        return self

    def exclude_exceptions(
        self, *exception_classes: type[BaseException], patterns: list[re.Pattern | str] | None = None
    ) -> "PipelineBuilder":
        self.pipeline.use(
            ExceptionFilter,
            excluded_exceptions=exception_classes,
            excluded_patterns=patterns or [],
        )
        return self

    def enhance_user_context(
        self, provider: Any = None, privacy_mode: bool = False
    ) -> "PipelineBuilder":
        self.pipeline.use(UserContextEnhancer, user_provider=provider, privacy_mode=privacy_mode)
        return self

    def track_releases(self, provider: Optional[Callable[["Event", Hint], Any]] = None) -> "PipelineBuilder":
        self.pipeline.use(ReleaseTracker, release_provider=provider)
        return self

    def rate_limit(self, max_events: int = 100, time_window: float = 60) -> "PipelineBuilder":
        self.pipeline.use(RateLimiter, max_events=max_events, time_window=time_window)
        return self

    def collect_metrics(self, collector: Optional[Callable[..., Any]] = None) -> "PipelineBuilder":
        self.pipeline.use(MetricsCollector, collector=collector)
        return self

    def enrich_events(self, *enrichers: Enricher) -> "PipelineBuilder":
        self.pipeline.use(EventEnricher, enrichers=enrichers)
        return self

    def filter_if(self, condition: Callable[["Event", Hint], Any]) -> "PipelineBuilder":
        self.pipeline.use(ConditionalFilter, condition)
        return self

    def transform_events(
        self, transformer: Callable[["Event", Hint], Optional["Event"]]
    ) -> "PipelineBuilder":
        self.pipeline.use(EventTransformer, transformer)
        return self

    def use_middleware(
        self, middleware_class: type[Middleware], *args: Any, **kwargs: Any
    ) -> "PipelineBuilder":
        self.pipeline.use(middleware_class, *args, **kwargs)
        return self

    def build(self) -> App:
        return self.pipeline.build()
