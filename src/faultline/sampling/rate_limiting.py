import logging
import random
import threading
import time
from typing import TYPE_CHECKING, Callable

from faultline.sampling.base import Hint, RandomSource, Sampler

if TYPE_CHECKING:
    from faultline.event import Event

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RateLimiter(Sampler):
    """
    Token bucket: refills at `max_events_per_second`, holds at most `burst` tokens (defaults to
    one second worth) and spends one token per kept event.
    """

    def __init__(
        self,
        max_events_per_second: float = 10,
        burst: float | None = None,
        clock: Clock = time.monotonic,
        rand: RandomSource = random.random,
    ):
        super().__init__(rand)
        self.max_events_per_second = max_events_per_second
        self.burst = burst if burst is not None else max_events_per_second
        self.clock = clock
        self._tokens = float(self.burst)
        self._last_refill = clock()
        self._lock = threading.Lock()

    @property
    def tokens(self) -> float:
        with self._lock:
            return self._tokens

    def sample(self, event: "Event", hint: Hint = None) -> bool:
        with self._lock:
            now = self.clock()
            elapsed = max(now - self._last_refill, 0.0)
            self._tokens = min(self._tokens + elapsed * self.max_events_per_second, self.burst)
            self._last_refill = now

            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False


class AdaptiveSampler(Sampler):
    """
    Keeps events at a rate that backs off under load.  Every `adjustment_period` seconds the rate
    is lowered by 10% if more than `high_volume` events were seen in the period (never below a
    tenth of the target), or raised by 10% towards the target if fewer than `low_volume` were.
    """

    def __init__(
        self,
        target_rate: float = 1.0,
        adjustment_period: float = 60,
        high_volume: int = 100,
        low_volume: int = 10,
        clock: Clock = time.monotonic,
        rand: RandomSource = random.random,
    ):
        super().__init__(rand)
        self.target_rate = target_rate
        self.adjustment_period = adjustment_period
        self.high_volume = high_volume
        self.low_volume = low_volume
        self.clock = clock
        self.current_rate = target_rate
        self._events_count = 0
        self._last_adjustment = clock()
        self._lock = threading.Lock()

    def sample(self, event: "Event", hint: Hint = None) -> bool:
        with self._lock:
            self._events_count += 1
            now = self.clock()
            if now - self._last_adjustment > self.adjustment_period:
                self._adjust_rate()
                self._last_adjustment = now
                self._events_count = 0
            rate = self.current_rate

        return self.sample_at(rate)

    def _adjust_rate(self) -> None:
        previous = self.current_rate
        if self._events_count > self.high_volume:
            self.current_rate = max(self.current_rate * 0.9, self.target_rate * 0.1)
        elif self._events_count < self.low_volume:
            self.current_rate = min(self.current_rate * 1.1, self.target_rate)

        if self.current_rate != previous:
            logger.debug(
                f"Adaptive sampling rate moved from {previous:.3f} to {self.current_rate:.3f} "
                f"after {self._events_count} events"
            )
