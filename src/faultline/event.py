import datetime
import os
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from faultline.backtrace.frame import BacktraceFrame
from faultline.utils import json_dumps, qualified_class_name

if TYPE_CHECKING:
    from faultline.backtrace.processor import BacktraceProcessor
    from faultline.fingerprint import Fingerprinter
    from faultline.scrubber import Scrubber

ENVIRONMENT_VARIABLE = "FAULTLINE_ENVIRONMENT"


class EventType(StrEnum):
    EXCEPTION = "exception"
    MESSAGE = "message"
    TRANSACTION = "transaction"


class Level(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def at_least(self, other: "Level") -> bool:
        return self.rank >= Level.parse(other).rank

    @classmethod
    def parse(cls, value: "Level | str") -> "Level":
        if isinstance(value, Level):
            return value
        name = str(value).lower()
        return cls(_LEVEL_ALIASES.get(name, name))


_LEVEL_ORDER = [Level.DEBUG, Level.INFO, Level.WARNING, Level.ERROR, Level.FATAL]
_LEVEL_ALIASES = {"warn": "warning", "critical": "fatal", "err": "error"}


def default_environment() -> Optional[str]:
    return os.environ.get(ENVIRONMENT_VARIABLE) or None


class Event(BaseModel):
    """
    One captured occurrence.  Events are frozen once built: middleware and hooks that need to
    change one produce a copy through `with_changes`.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: EventType
    level: Level = Level.INFO
    timestamp: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )
    message: Optional[str] = None
    exception: Optional[BaseException] = None
    context: dict[str, Any] = Field(default_factory=dict)
    environment: Optional[str] = None
    fingerprint: Optional[str] = None
    backtrace_frames: Optional[tuple[BacktraceFrame, ...]] = None
    transaction: Optional[str] = None

    @model_validator(mode="after")
    def check_exception_present(self) -> "Event":
        if self.type == EventType.EXCEPTION and self.exception is None:
            raise ValueError("exception events require an exception")
        return self

    @classmethod
    def build(
        cls,
        type: EventType | str,
        level: Level | str = Level.INFO,
        *,
        message: Optional[str] = None,
        exception: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
        environment: Optional[str] = None,
        transaction: Optional[str] = None,
        timestamp: Optional[datetime.datetime] = None,
        fingerprint: Optional[str] = None,
        processor: Optional["BacktraceProcessor"] = None,
        fingerprinter: Optional["Fingerprinter"] = None,
        follow_cause: bool = False,
    ) -> "Event":
        if not message and exception is not None:
            message = str(exception) or qualified_class_name(exception)

        backtrace_frames = None
        if exception is not None and processor is not None:
            frames = processor.process_exception(exception, follow_cause=follow_cause)
            backtrace_frames = tuple(frames) if frames else None

        event = cls(
            type=EventType(type),
            level=Level.parse(level),
            timestamp=timestamp or datetime.datetime.now(datetime.timezone.utc),
            message=message or None,
            exception=exception,
            context=context or {},
            environment=environment or default_environment(),
            fingerprint=fingerprint,
            backtrace_frames=backtrace_frames,
            transaction=transaction,
        )

        if fingerprint is None and fingerprinter is not None and fingerprinter.is_configured:
            event = event.with_changes(fingerprint=fingerprinter.generate_fingerprint(event))

        return event

    def with_changes(self, **changes: Any) -> "Event":
        return self.model_copy(update=changes)

    @property
    def exception_type(self) -> Optional[str]:
        return qualified_class_name(self.exception) if self.exception is not None else None

    @property
    def exception_message(self) -> Optional[str]:
        return str(self.exception) if self.exception is not None else None

    @property
    def has_exception(self) -> bool:
        return self.exception is not None

    @property
    def has_backtrace(self) -> bool:
        return bool(self.backtrace_frames)

    @property
    def tags(self) -> dict[str, Any]:
        return self.context.get("tags") or {}

    @property
    def user(self) -> dict[str, Any]:
        return self.context.get("user") or {}

    @property
    def extra(self) -> dict[str, Any]:
        return self.context.get("extra") or {}

    @property
    def breadcrumbs(self) -> list[dict[str, Any]]:
        return self.context.get("breadcrumbs") or []

    @property
    def request_context(self) -> Optional[dict[str, Any]]:
        return self.extra.get("request") or self.context.get("request")

    def scrubbed(self, scrubber: "Scrubber") -> "Event":
        return self.with_changes(context=scrubber.scrub(self.context))

    def to_dict(self) -> dict[str, Any]:
        """JSON friendly representation with empty values dropped."""
        data: dict[str, Any] = {
            "type": self.type.value,
            "level": self.level.value,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "exception": (
                {"type": self.exception_type, "message": self.exception_message}
                if self.exception is not None
                else None
            ),
            "context": self.context,
            "environment": self.environment,
            "fingerprint": self.fingerprint,
            "backtrace_frames": (
                [frame.to_dict() for frame in self.backtrace_frames]
                if self.backtrace_frames
                else None
            ),
            "transaction": self.transaction,
        }
        return {k: v for k, v in data.items() if v not in (None, {}, [], "")}

    def to_json(self) -> str:
        return json_dumps(self.to_dict())
