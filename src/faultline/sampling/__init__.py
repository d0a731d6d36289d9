from faultline.sampling.base import CallableSampler, Sampler
from faultline.sampling.factory import (
    build_sampler,
    create_development_sampling,
    create_production_sampling,
    create_user_focused_sampling,
)
from faultline.sampling.rate_limiting import AdaptiveSampler, RateLimiter
from faultline.sampling.samplers import (
    CompositeSampler,
    ConsistentHashSampler,
    ExceptionTypeSampler,
    HealthBasedSampler,
    TimeBasedSampler,
    UniformSampler,
    UserBasedSampler,
)

__all__ = [
    "AdaptiveSampler",
    "CallableSampler",
    "CompositeSampler",
    "ConsistentHashSampler",
    "ExceptionTypeSampler",
    "HealthBasedSampler",
    "RateLimiter",
    "Sampler",
    "TimeBasedSampler",
    "UniformSampler",
    "UserBasedSampler",
    "build_sampler",
    "create_development_sampling",
    "create_production_sampling",
    "create_user_focused_sampling",
]
