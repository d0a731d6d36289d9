import abc
import random
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from faultline.event import Event

Hint = Optional[dict[str, Any]]
RandomSource = Callable[[], float]


class Sampler(abc.ABC):
    """
    Decides whether an event is kept.  Randomness comes from `rand` so that tests can pin it.
    """

    def __init__(self, rand: RandomSource = random.random):
        self.rand = rand

    @abc.abstractmethod
    def sample(self, event: "Event", hint: Hint = None) -> bool:
        pass

    def sample_at(self, rate: float) -> bool:
        return rate > self.rand()

    def __call__(self, event: "Event", hint: Hint = None) -> bool:
        return self.sample(event, hint)


class CallableSampler(Sampler):
    """Wraps a plain `(event, hint) -> bool` callable."""

    def __init__(self, func: Callable[..., Any], rand: RandomSource = random.random):
        super().__init__(rand)
        self.func = func

    def sample(self, event: "Event", hint: Hint = None) -> bool:
        return bool(self.func(event, hint or {}))
