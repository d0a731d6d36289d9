from faultline.pipeline.middleware import (
    ConditionalFilter,
    EventEnricher,
    EventTransformer,
    ExceptionFilter,
    MetricsCollector,
    Middleware,
    RateLimiter,
    ReleaseTracker,
    SampleFilter,
    SamplingMiddleware,
    UserContextEnhancer,
)
from faultline.pipeline.pipeline import MiddlewareSpec, Pipeline, PipelineBuilder

__all__ = [
    "ConditionalFilter",
    "EventEnricher",
    "EventTransformer",
    "ExceptionFilter",
    "MetricsCollector",
    "Middleware",
    "MiddlewareSpec",
    "Pipeline",
    "PipelineBuilder",
    "RateLimiter",
    "ReleaseTracker",
    "SampleFilter",
    "SamplingMiddleware",
    "UserContextEnhancer",
]
