import dataclasses
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from faultline.dependency_injection import inject, injected
from faultline.registry import Registry
from faultline.utils import call_with_supported_args, exception_formatter

if TYPE_CHECKING:
    from faultline.event import Event

logger = logging.getLogger(__name__)

ErrorHandler = Callable[..., Any]


@dataclasses.dataclass(frozen=True)
class AdapterOutcome:
    adapter: str
    delivered: bool
    error: Optional[BaseException] = None


class Router:
    """
    Fans an event out to every active adapter.  A failing adapter is logged and reported to the
    error handler, which is called as `(adapter, event, error)`, `(event, error)` or `(error)`
    depending on how many arguments it accepts.  Nothing raised here reaches the caller.
    """

    @inject
    def __init__(self, registry: Registry = injected, error_handler: Optional[ErrorHandler] = None):
        self.registry = registry
        self.error_handler = error_handler

    def process_event(self, event: "Event") -> list[AdapterOutcome]:
        outcomes = []
        for adapter in self.registry.active():
            try:
                adapter.capture(event)
            except Exception as e:
                logger.error(f"Adapter {adapter.name} failed to capture event: {exception_formatter(e)}")
                self.report_error(adapter, event, e)
                outcomes.append(AdapterOutcome(adapter=adapter.name, delivered=False, error=e))
            else:
                outcomes.append(AdapterOutcome(adapter=adapter.name, delivered=True))
        return outcomes

    def report_error(self, adapter: Any, event: "Event", error: BaseException) -> None:
        if self.error_handler is None:
            return
        try:
            call_with_supported_args(self.error_handler, adapter, event, error)
        except Exception:
            logger.exception("Error handler failed")
