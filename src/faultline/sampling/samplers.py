import datetime
import hashlib
import logging
import random
import re
from typing import TYPE_CHECKING, Any, Callable, Literal, Mapping, Optional

from faultline.sampling.base import Hint, RandomSource, Sampler
from faultline.utils import qualified_class_name

if TYPE_CHECKING:
    from faultline.event import Event

logger = logging.getLogger(__name__)

DEFAULT = "default"


class UniformSampler(Sampler):
    def __init__(self, rate: float, rand: RandomSource = random.random):
        super().__init__(rand)
        self.rate = rate

    def sample(self, event: "Event", hint: Hint = None) -> bool:
        return self.sample_at(self.rate)


class ExceptionTypeSampler(Sampler):
    """
    Rates keyed by exception class, class name substring or compiled pattern:

    ExceptionTypeSampler({KeyError: 0.1, "Timeout": 0.3, re.compile("connection", re.I): 0.3, "default": 0.5})

    The exact class wins, then the nearest ancestor, then the first name pattern that matches.
    Events without an exception use the default rate.
    """

    def __init__(self, rates: Mapping[Any, float] | None = None, rand: RandomSource = random.random):
        super().__init__(rand)
        self.rates = dict(rates or {})
        self.default_rate = self.rates.get(DEFAULT, 1.0)

    def sample(self, event: "Event", hint: Hint = None) -> bool:
        if event.exception is None:
            return self.sample_at(self.default_rate)
        return self.sample_at(self.rate_for(type(event.exception)))

    def rate_for(self, exception_class: type) -> float:
        for cls in exception_class.__mro__:
            if cls in self.rates:
                return self.rates[cls]

        name = qualified_class_name(exception_class)
        for pattern, rate in self.rates.items():
            if isinstance(pattern, re.Pattern):
                if pattern.search(name):
                    return rate
            elif isinstance(pattern, str) and pattern != DEFAULT:
                if pattern in name:
                    return rate

        return self.default_rate


USER_SEGMENTS = ("internal", "premium", "beta")


class UserBasedSampler(Sampler):
    """Rates keyed by user id, or by the `internal`, `premium` and `beta` user flags."""

    def __init__(self, rates: Mapping[Any, float] | None = None, rand: RandomSource = random.random):
        super().__init__(rand)
        self.rates = dict(rates or {})
        self.default_rate = self.rates.get(DEFAULT, 1.0)

    def sample(self, event: "Event", hint: Hint = None) -> bool:
        user = event.user
        if not user:
            return self.sample_at(self.default_rate)
        return self.sample_at(self.rate_for(user))

    def rate_for(self, user: Mapping[str, Any]) -> float:
        user_id = user.get("id")
        if user_id is not None and user_id in self.rates:
            return self.rates[user_id]

        for segment, rate in self.rates.items():
            if segment in USER_SEGMENTS and user.get(segment):
                return rate

        return self.default_rate


DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
BUSINESS_HOURS = range(9, 18)


class TimeBasedSampler(Sampler):
    """
    Rates keyed by `hour_<0-23>`, a lowercase day name, `business_hours` (9:00 to 17:59 on
    weekdays) or `weekends`, checked in that order.
    """

    def __init__(
        self,
        schedule: Mapping[str, float] | None = None,
        now: Callable[[], datetime.datetime] = datetime.datetime.now,
        rand: RandomSource = random.random,
    ):
        super().__init__(rand)
        self.schedule = dict(schedule or {})
        self.default_rate = self.schedule.get(DEFAULT, 1.0)
        self.now = now

    def sample(self, event: "Event", hint: Hint = None) -> bool:
        return self.sample_at(self.rate_for(self.now()))

    def rate_for(self, when: datetime.datetime) -> float:
        hour = when.hour
        weekday = when.weekday()

        hour_key = f"hour_{hour}"
        if hour_key in self.schedule:
            return self.schedule[hour_key]

        day_key = DAY_NAMES[weekday]
        if day_key in self.schedule:
            return self.schedule[day_key]

        if "business_hours" in self.schedule and hour in BUSINESS_HOURS and weekday < 5:
            return self.schedule["business_hours"]

        if "weekends" in self.schedule and weekday >= 5:
            return self.schedule["weekends"]

        return self.default_rate


def fingerprint_key(event: "Event", hint: Hint) -> Optional[str]:
    return event.fingerprint


class ConsistentHashSampler(Sampler):
    """
    Samples by hashing a key extracted from the event, so the same key is always either kept or
    dropped.  Events without a key fall back to a random draw at the same rate.
    """

    def __init__(
        self,
        rate: float,
        key_extractor: Callable[["Event", Hint], Any] = fingerprint_key,
        rand: RandomSource = random.random,
    ):
        super().__init__(rand)
        self.rate = rate
        self.key_extractor = key_extractor
        self.threshold = int(rate * 0xFFFFFFFF)

    def sample(self, event: "Event", hint: Hint = None) -> bool:
        key = self.key_extractor(event, hint)
        if key is None:
            return self.sample_at(self.rate)
        if self.rate <= 0:
            return False
        digest = hashlib.md5(str(key).encode("utf-8")).hexdigest()
        return int(digest[:8], 16) <= self.threshold


class HealthBasedSampler(Sampler):
    def __init__(
        self,
        health_check: Callable[[], bool],
        high_rate: float = 1.0,
        low_rate: float = 0.1,
        rand: RandomSource = random.random,
    ):
        super().__init__(rand)
        self.health_check = health_check
        self.high_rate = high_rate
        self.low_rate = low_rate

    def sample(self, event: "Event", hint: Hint = None) -> bool:
        try:
            healthy = bool(self.health_check())
        except Exception:
            logger.exception("Health check failed, sampling at the low rate")
            healthy = False
        return self.sample_at(self.high_rate if healthy else self.low_rate)


CompositeStrategy = Literal["all", "any", "first"]


class CompositeSampler(Sampler):
    """
    Combines samplers: `all` keeps an event only if every sampler does, `any` if at least one
    does, and `first` defers to the first sampler alone.  With no samplers every event is kept.
    """

    def __init__(
        self,
        samplers: list[Sampler] | None = None,
        strategy: CompositeStrategy = "all",
        rand: RandomSource = random.random,
    ):
        super().__init__(rand)
        if strategy not in ("all", "any", "first"):
            raise ValueError(f"Unknown composite sampling strategy: {strategy}")
        self.samplers = list(samplers or [])
        self.strategy = strategy

    def sample(self, event: "Event", hint: Hint = None) -> bool:
        if not self.samplers:
            return True
        if self.strategy == "all":
            return all(sampler.sample(event, hint) for sampler in self.samplers)
        if self.strategy == "any":
            return any(sampler.sample(event, hint) for sampler in self.samplers)
        return self.samplers[0].sample(event, hint)
