import dataclasses
import logging
import threading
from typing import TYPE_CHECKING, Any, Optional

from faultline.adapters.base import Adapter, Capabilities
from faultline.errors import DeliveryError

if TYPE_CHECKING:
    from faultline.event import Event

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class FakeHttpResponse:
    status_code: int
    content: bytes = b""


class DummyAdapter(Adapter):
    """
    Records events in memory instead of delivering them.  Used by tests and dry runs.

    Set `force_failure_status` to make every capture fail with a DeliveryError carrying that
    status, or `failure` to raise an arbitrary exception.
    """

    capabilities = Capabilities(errors=True, breadcrumbs=True)

    def __init__(
        self,
        name: str = "dummy",
        should_log: bool = False,
        force_failure_status: Optional[int] = None,
        failure: Optional[BaseException] = None,
        **settings: Any,
    ):
        super().__init__(name, **settings)
        self.should_log = should_log
        self.force_failure_status = force_failure_status
        self.failure = failure
        self.events: list["Event"] = []
        self.flush_calls: list[Optional[float]] = []
        self.shutdown_called = False
        self._lock = threading.Lock()

    def capture(self, event: "Event") -> "Event":
        if self.should_log:
            logger.info(f"Event captured by DummyAdapter {self.name}: {event.to_json()}")

        if self.failure is not None:
            raise self.failure
        if self.force_failure_status:
            raise DeliveryError(
                f"HTTP {self.force_failure_status}",
                response=FakeHttpResponse(status_code=self.force_failure_status),
            )

        with self._lock:
            self.events.append(event)
        return event

    @property
    def last_event(self) -> Optional["Event"]:
        with self._lock:
            return self.events[-1] if self.events else None

    def clear(self) -> None:
        with self._lock:
            self.events.clear()

    def flush(self, timeout: Optional[float] = None) -> None:
        self.flush_calls.append(timeout)

    def shutdown(self) -> None:
        super().shutdown()
        self.shutdown_called = True
