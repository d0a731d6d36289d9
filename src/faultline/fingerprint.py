"""
Groups events that describe the same underlying problem.

Events get a fingerprint from, in order of precedence: a custom callback, the first matching
entry of a pattern table, or a hash of the exception class, its normalized message and the
primary application frame.  Nothing is fingerprinted unless a callback or a pattern table is
configured; `patterns="default"` selects the bundled table.  Normalization replaces the
volatile parts of a message (ids, hashes, paths, timestamps, urls) with placeholders so that
`User 1234 not found` and `User 5678 not found` land in the same group.
"""

import hashlib
import logging
import os
import re
from typing import TYPE_CHECKING, Any, Callable, Literal, Optional

from faultline.backtrace.frame import BacktraceFrame
from faultline.backtrace.parser import FrameFactory
from faultline.backtrace.processor import raw_backtrace
from faultline.utils import qualified_class_name

if TYPE_CHECKING:
    from faultline.configuration import FaultlineConfig
    from faultline.event import Event

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 16
DEFAULT_PATTERNS_KEY = "default"
ERROR_TEXT_TRACE_LINES = 3

DEFAULT_PATTERNS: list[dict[str, Any]] = [
    {"pattern": re.compile(r"User \d+ (not found|invalid|missing)", re.I), "fingerprint": "user-lookup-error"},
    {"pattern": re.compile(r"Record \d+ (not found|invalid|missing)", re.I), "fingerprint": "record-lookup-error"},
    {"pattern": re.compile(r"/users/\d+(/.*)?"), "fingerprint": "users-id-endpoint"},
    {"pattern": re.compile(r"/api/v\d+/.*"), "fingerprint": "api-endpoint"},
    {
        "pattern": re.compile(
            r"OperationalError.*(could not connect|connection|server closed)|"
            r"psycopg2?\.OperationalError|sqlite3\.OperationalError.*locked",
            re.I,
        ),
        "fingerprint": "database-connection-error",
    },
    {"pattern": re.compile(r"NoResultFound|DoesNotExist"), "fingerprint": "record-not-found"},
    {"pattern": re.compile(r"(QueryCanceled|StatementTimeout|statement timeout)", re.I), "fingerprint": "database-timeout"},
    {
        "pattern": re.compile(r"\b(TimeoutError|ReadTimeout|ConnectTimeout|socket\.timeout)\b"),
        "fingerprint": "network-timeout",
    },
    {
        "pattern": re.compile(r"\b(ConnectionRefusedError|ConnectionResetError|ConnectionError)\b"),
        "fingerprint": "network-connection-error",
    },
    {
        "pattern": re.compile(r"(FileNotFoundError|PermissionError).*/tmp/"),
        "fingerprint": "tmp-file-error",
    },
    {"pattern": re.compile(r"No such file or directory.*\.log"), "fingerprint": "log-file-missing"},
    {"pattern": re.compile(r"\b(MemoryError|RecursionError)\b"), "fingerprint": "memory-resource-error"},
]

_UUID = re.compile(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.I)
_HEX_HASH = re.compile(r"\b[0-9a-f]{32,}\b", re.I)
_NUMERIC_ID = re.compile(r"\b\d{3,}\b")
_FILE_PATH = re.compile(r"/[^/\s]+(?:/[^/\s]+)*\.[a-zA-Z0-9]+")
_DIR_PATH = re.compile(r"/[^/\s]+(?:/[^/\s]+)+/?")
_TIMESTAMP = re.compile(r"\b\d{4}-\d{2}-\d{2}[T\s]\d{2}:\d{2}:\d{2}")
_URL = re.compile(r"https?://\S+")
_SPACES = re.compile(r" {2,}")


class Fingerprinter:
    def __init__(
        self,
        custom_callback: Optional[Callable[["Event"], Optional[str]]] = None,
        patterns: list[dict[str, Any]] | Literal["default"] | None = None,
        normalize_paths: bool = True,
        normalize_ids: bool = True,
        include_environment: bool = False,
    ):
        self.custom_callback = custom_callback
        if patterns == DEFAULT_PATTERNS_KEY:
            patterns = DEFAULT_PATTERNS
        self.patterns: list[dict[str, Any]] = list(patterns or [])
        self.normalize_paths = normalize_paths
        self.normalize_ids = normalize_ids
        self.include_environment = include_environment
        self._frame_factory = FrameFactory()

    @classmethod
    def from_config(cls, config: "FaultlineConfig") -> "Fingerprinter":
        return cls(
            custom_callback=config.fingerprint_callback,
            patterns=config.fingerprint_patterns,
            normalize_paths=config.normalize_fingerprint_paths,
            normalize_ids=config.normalize_fingerprint_ids,
            include_environment=config.fingerprint_include_environment,
        )

    @property
    def is_configured(self) -> bool:
        return self.custom_callback is not None or bool(self.patterns)

    def generate_fingerprint(self, event: "Event") -> str:
        if self.custom_callback is not None:
            custom = self.custom_callback(event)
            if custom:
                return str(custom)

        matched = self.match_patterns(event)
        if matched:
            return matched

        return self.generate_default_fingerprint(event)

    def match_patterns(self, event: "Event") -> Optional[str]:
        text = self.error_text(event)
        for entry in self.patterns:
            pattern = entry.get("pattern")
            if isinstance(pattern, re.Pattern):
                if pattern.search(text):
                    return entry.get("fingerprint")
            elif isinstance(pattern, str) and pattern:
                if pattern in text:
                    return entry.get("fingerprint")
        return None

    def error_text(self, event: "Event") -> str:
        parts: list[str] = []
        if event.exception is not None:
            parts.append(qualified_class_name(event.exception))
            message = str(event.exception)
            if message:
                parts.append(message)
        if event.message:
            parts.append(event.message)
        parts.extend(raw_backtrace(event.exception)[:ERROR_TEXT_TRACE_LINES])
        return " ".join(parts)

    def generate_default_fingerprint(self, event: "Event") -> str:
        components: list[Optional[str]] = []

        if event.exception is not None:
            components.append(qualified_class_name(event.exception))
            components.append(self.normalize_message(str(event.exception)))
            components.append(self.primary_location(event))
        elif event.message:
            components.append("message")
            components.append(self.normalize_message(event.message))

        if self.include_environment and event.environment:
            components.append(event.environment)

        content = "|".join(c for c in components if c)
        return hashlib.sha256(content.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]

    def normalize_message(self, message: Optional[str]) -> Optional[str]:
        if not message:
            return None

        normalized = message
        if self.normalize_ids:
            # uuids and hashes contain digit runs, so they go before plain ids
            normalized = _UUID.sub(":uuid", normalized)
            normalized = _HEX_HASH.sub(":hash", normalized)
            normalized = _NUMERIC_ID.sub(":id", normalized)

        if self.normalize_paths:
            normalized = _FILE_PATH.sub(":filepath", normalized)
            normalized = _DIR_PATH.sub(":dirpath", normalized)
            normalized = _TIMESTAMP.sub(":timestamp", normalized)
            normalized = _URL.sub(":url", normalized)

        return _SPACES.sub(" ", normalized.strip())

    def primary_location(self, event: "Event") -> Optional[str]:
        frames: list[BacktraceFrame]
        if event.backtrace_frames:
            frames = list(event.backtrace_frames)
        else:
            frames = [
                self._frame_factory.create_frame(line) for line in raw_backtrace(event.exception)
            ]
        if not frames:
            return None

        frame = next((f for f in frames if f.in_app), frames[0])
        path = frame.source_path or frame.raw_line
        if frame.line_number is None:
            return frame.raw_line or path
        if self.normalize_paths:
            path = os.path.basename(path)
        return f"{path}:{frame.line_number}"
