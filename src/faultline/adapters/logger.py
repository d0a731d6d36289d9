import logging
from typing import TYPE_CHECKING, Any, Optional

from faultline.adapters.base import Adapter, Capabilities
from faultline.event import Level

if TYPE_CHECKING:
    from faultline.event import Event

LOG_LEVELS = {
    Level.DEBUG: logging.DEBUG,
    Level.INFO: logging.INFO,
    Level.WARNING: logging.WARNING,
    Level.ERROR: logging.ERROR,
    Level.FATAL: logging.CRITICAL,
}


class LoggerAdapter(Adapter):
    """Writes a one line summary of every event to a standard library logger."""

    capabilities = Capabilities(errors=True, breadcrumbs=True, code_context=True)

    def __init__(
        self,
        name: str = "logger",
        logger: Optional[logging.Logger] = None,
        logger_name: str = "faultline.events",
        include_backtrace: bool = False,
        **settings: Any,
    ):
        super().__init__(name, **settings)
        self.logger = logger or logging.getLogger(logger_name)
        self.include_backtrace = include_backtrace

    def capture(self, event: "Event") -> None:
        self.logger.log(
            LOG_LEVELS.get(event.level, logging.INFO),
            self.format_event(event),
            extra={"faultline_event": event.to_dict()},
        )

    def format_event(self, event: "Event") -> str:
        if event.exception is not None:
            summary = f"[{event.level.upper()}] {event.exception_type}: {event.exception_message}"
        else:
            summary = f"[{event.level.upper()}] {event.message}"

        details = []
        if event.transaction:
            details.append(f"transaction={event.transaction}")
        if event.fingerprint:
            details.append(f"fingerprint={event.fingerprint}")
        if event.tags:
            details.append(f"tags={event.tags}")
        if details:
            summary = f"{summary} ({', '.join(details)})"

        if self.include_backtrace and event.backtrace_frames:
            lines = [
                f"  {frame.filename}:{frame.line_number} in {frame.function or frame.method_name}"
                for frame in event.backtrace_frames
            ]
            summary = "\n".join([summary, *lines])

        return summary
