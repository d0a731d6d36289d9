import logging
import numbers
import re
from typing import Any, Optional

from faultline.sampling.base import CallableSampler, Sampler
from faultline.sampling.rate_limiting import RateLimiter
from faultline.sampling.samplers import (
    CompositeSampler,
    ConsistentHashSampler,
    ExceptionTypeSampler,
    TimeBasedSampler,
    UniformSampler,
    UserBasedSampler,
)

logger = logging.getLogger(__name__)


def create_production_sampling() -> CompositeSampler:
    return CompositeSampler(
        samplers=[
            RateLimiter(max_events_per_second=50),
            ExceptionTypeSampler(
                {
                    RecursionError: 1.0,
                    MemoryError: 1.0,
                    PermissionError: 1.0,
                    ValueError: 0.1,
                    TypeError: 0.1,
                    re.compile("timeout", re.I): 0.3,
                    re.compile("connection", re.I): 0.3,
                    "default": 0.5,
                }
            ),
            TimeBasedSampler({"business_hours": 0.3, "weekends": 0.8, "default": 0.5}),
        ],
        strategy="all",
    )


def create_development_sampling() -> UniformSampler:
    return UniformSampler(1.0)


def create_user_focused_sampling() -> CompositeSampler:
    return CompositeSampler(
        samplers=[
            UserBasedSampler({"internal": 1.0, "premium": 0.8, "beta": 0.9, "default": 0.1}),
            ConsistentHashSampler(rate=0.1, key_extractor=lambda event, hint: event.user.get("id")),
        ],
        strategy="any",
    )


PRESETS = {
    "production": create_production_sampling,
    "development": create_development_sampling,
    "user_focused": create_user_focused_sampling,
}


def build_sampler(strategy: Any = None, sample_rate: float = 1.0) -> Optional[Sampler]:
    """
    Resolves the configured sampling strategy: a Sampler, a preset name, a rate, or a callable
    taking `(event, hint)`.  Without a strategy, a `sample_rate` below 1 yields a uniform sampler
    and anything else keeps every event (None).
    """
    if isinstance(strategy, Sampler):
        return strategy
    if isinstance(strategy, str) and strategy in PRESETS:
        return PRESETS[strategy]()
    if isinstance(strategy, numbers.Real) and not isinstance(strategy, bool):
        return UniformSampler(float(strategy))
    if callable(strategy):
        return CallableSampler(strategy)
    if strategy is not None:
        logger.warning(f"Ignoring unsupported sampling strategy {strategy!r}")

    if sample_rate < 1.0:
        return UniformSampler(sample_rate)
    return None
