import logging
import math
import os
import re
import sys
import threading
import traceback
from typing import TYPE_CHECKING, Any, Optional

from cachetools import TTLCache  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field

from faultline.backtrace.frame import BacktraceFrame, CodeContext
from faultline.backtrace.parser import FrameFactory
from faultline.utils import qualified_class_name

if TYPE_CHECKING:
    from faultline.configuration import FaultlineConfig

logger = logging.getLogger(__name__)

# Share of the frame budget spent on the most recent frames; the rest goes to the oldest ones.
HEAD_RATIO = 0.7
LIBRARY_FRAME_ALLOWANCE = 10
CONTEXT_LIBRARY_FRAMES = 3
FILE_CACHE_TTL_SECONDS = 60 * 60

DEFAULT_EXCLUDE_PATTERNS: list[re.Pattern | str] = [
    re.compile(r"/_pytest/"),
    re.compile(r"/pluggy/"),
    re.compile(r"/(pdb|bdb)\.py"),
    re.compile(r"/debugpy/"),
    re.compile(r"/pydevd"),
    re.compile(r"<frozen importlib\._bootstrap"),
]


class BacktraceConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    context_lines: int = 3
    max_frames: int = 100
    enable_code_context: bool = True
    strip_load_path: bool = True
    in_app_patterns: list[re.Pattern | str] = Field(default_factory=list)
    exclude_patterns: list[re.Pattern | str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS)
    )
    dedupe_frames: bool = True
    include_library_frames: bool = False
    file_cache_size_mb: int = 100
    max_file_size: int = 1024 * 1024

    @classmethod
    def from_config(cls, config: "FaultlineConfig") -> "BacktraceConfig":
        settings: dict[str, Any] = dict(
            context_lines=config.backtrace_context_lines,
            max_frames=config.backtrace_max_frames,
            enable_code_context=config.backtrace_enable_code_context,
            strip_load_path=config.backtrace_strip_load_path,
            in_app_patterns=config.backtrace_in_app_patterns,
        )
        if config.backtrace_exclude_patterns is not None:
            settings["exclude_patterns"] = config.backtrace_exclude_patterns
        return cls(**settings)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def raw_backtrace(exception: BaseException | None) -> list[str]:
    """
    The raw trace lines of an exception, most recent call first.  Exceptions relayed from other
    runtimes may carry a `backtrace` list of strings, which takes precedence over the Python
    traceback.
    """
    if exception is None:
        return []

    foreign = getattr(exception, "backtrace", None)
    if isinstance(foreign, (list, tuple)) and all(isinstance(line, str) for line in foreign):
        return list(foreign)

    tb = exception.__traceback__
    if tb is None:
        return []

    lines = [
        f'File "{summary.filename}", line {summary.lineno or 0}, in {summary.name}'
        for summary in traceback.extract_tb(tb)
    ]
    lines.reverse()
    return lines


def _lines_size(lines: list[str]) -> int:
    return max(sum(len(line) for line in lines), 1)


class BacktraceProcessor:
    """
    Parses raw trace lines into frames and prepares them for delivery:

    parse -> filter -> limit -> annotate (code context) -> deduplicate

    Source files read for code context are kept in a size-capped cache that expires entries
    after an hour, shared by every thread using this processor.
    """

    def __init__(self, config: BacktraceConfig | None = None):
        self.config = config or BacktraceConfig()
        self._file_cache: TTLCache = TTLCache(
            maxsize=self.config.file_cache_size_mb * 1024 * 1024,
            ttl=FILE_CACHE_TTL_SECONDS,
            getsizeof=_lines_size,
        )
        self._cache_lock = threading.Lock()

    def process_backtrace(self, backtrace: list[str] | None) -> list[BacktraceFrame]:
        if not backtrace:
            return []

        frames = self.parse_frames(backtrace)
        frames = self.filter_frames(frames)
        frames = self.limit_frames(frames)

        if self.config.enable_code_context:
            frames = self.add_code_context(frames)

        if self.config.dedupe_frames:
            frames = self.dedupe_frames(frames)

        return frames

    def process_exception(
        self, exception: BaseException | None, follow_cause: bool = False
    ) -> list[BacktraceFrame]:
        if exception is None:
            return []

        frames = self._exception_frames(exception)
        if frames:
            frames[0] = frames[0].with_changes(crash_frame=True)

        if follow_cause:
            seen = {id(exception)}
            cause = _cause_of(exception)
            while cause is not None and id(cause) not in seen:
                seen.add(id(cause))
                frames.extend(self._exception_frames(cause))
                cause = _cause_of(cause)

        return frames

    def _exception_frames(self, exception: BaseException) -> list[BacktraceFrame]:
        exception_class = qualified_class_name(exception)
        return [
            frame.with_changes(exception_class=exception_class)
            for frame in self.process_backtrace(raw_backtrace(exception))
        ]

    def parse_frames(self, backtrace: list[str]) -> list[BacktraceFrame]:
        factory = FrameFactory(
            in_app_patterns=self.config.in_app_patterns,
            load_paths=self.load_paths(),
        )
        frames = [factory.create_frame(line) for line in backtrace]
        return [frame for frame in frames if frame.is_valid]

    def filter_frames(self, frames: list[BacktraceFrame]) -> list[BacktraceFrame]:
        frames = [frame for frame in frames if not frame.is_excluded(self.config.exclude_patterns)]

        if self.config.include_library_frames:
            return frames

        kept = []
        library_count = 0
        for frame in frames:
            if frame.in_app:
                kept.append(frame)
            elif library_count < LIBRARY_FRAME_ALLOWANCE:
                library_count += 1
                kept.append(frame)
        return kept

    def limit_frames(self, frames: list[BacktraceFrame]) -> list[BacktraceFrame]:
        max_frames = self.config.max_frames
        if len(frames) <= max_frames:
            return frames

        head_count = round_half_up(max_frames * HEAD_RATIO)
        tail_count = max_frames - head_count

        head = frames[:head_count]
        tail = frames[-tail_count:] if tail_count > 0 else []
        return head + tail

    def add_code_context(self, frames: list[BacktraceFrame]) -> list[BacktraceFrame]:
        library_budget = CONTEXT_LIBRARY_FRAMES
        result = []
        for frame in frames:
            wants_context = frame.in_app
            if not frame.in_app and library_budget > 0:
                library_budget -= 1
                wants_context = True

            if wants_context and frame.line_number:
                context = self.get_code_context(
                    frame.source_path, frame.line_number, self.config.context_lines
                )
                if context is not None:
                    frame = frame.with_changes(code_context=context)
            result.append(frame)
        return result

    def dedupe_frames(self, frames: list[BacktraceFrame]) -> list[BacktraceFrame]:
        seen = set()
        result = []
        for frame in frames:
            key = frame.dedupe_key
            if key in seen:
                continue
            seen.add(key)
            result.append(frame)
        return result

    def get_code_context(
        self, filename: Optional[str], line_number: int, context_lines: int = 3
    ) -> Optional[CodeContext]:
        if not filename or not os.path.isfile(filename):
            return None

        try:
            if os.path.getsize(filename) > self.config.max_file_size:
                return None
        except OSError:
            return None

        lines = self._read_lines(filename)
        line_index = line_number - 1
        if not lines or line_index < 0 or line_index >= len(lines):
            return None

        start = max(0, line_index - context_lines)
        end = min(len(lines) - 1, line_index + context_lines)

        return CodeContext(
            pre_context=tuple(lines[start:line_index]),
            context_line=lines[line_index],
            post_context=tuple(lines[line_index + 1 : end + 1]),
            line_number=line_number,
            start_line=start + 1,
            end_line=end + 1,
        )

    def _read_lines(self, filename: str) -> list[str]:
        with self._cache_lock:
            cached = self._file_cache.get(filename)
        if cached is not None:
            return cached

        try:
            with open(filename, encoding="utf-8", errors="replace") as fp:
                lines = fp.read().splitlines()
        except OSError:
            logger.debug(f"Could not read {filename} for code context")
            lines = []

        with self._cache_lock:
            try:
                self._file_cache[filename] = lines
            except ValueError:
                # Larger than the whole cache, serve it uncached.
                pass
        return lines

    def load_paths(self) -> list[str]:
        if not self.config.strip_load_path:
            return []
        paths = [os.path.abspath(p) for p in sys.path if p]
        paths.append(os.getcwd())
        return paths

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._file_cache.clear()

    def stats(self) -> dict[str, Any]:
        with self._cache_lock:
            return {
                "file_cache": {
                    "type": type(self._file_cache).__name__,
                    "entries": len(self._file_cache),
                    "current_size": self._file_cache.currsize,
                    "configured_size": self._file_cache.maxsize,
                },
                "config": self.config.model_dump(),
                "load_paths": self.load_paths(),
            }

    def format_frames(self, frames: list[BacktraceFrame], style: str = "sentry") -> list[dict]:
        if style == "rollbar":
            return [
                _compact(
                    filename=f.filename,
                    lineno=f.line_number,
                    method=f.function or f.method_name,
                    code=f.code_context.context_line if f.code_context else None,
                )
                for f in frames
            ]
        if style == "bugsnag":
            return [
                _compact(
                    file=f.filename,
                    lineNumber=f.line_number,
                    method=f.function or f.method_name,
                    inProject=f.in_app,
                    code=(
                        {str(f.code_context.line_number): f.code_context.context_line}
                        if f.code_context
                        else None
                    ),
                )
                for f in frames
            ]

        formatted = []
        for f in frames:
            data = _compact(
                filename=f.filename,
                abs_path=f.absolute_path,
                lineno=f.line_number,
                function=f.function or f.method_name,
                module=f.module_name,
                in_app=f.in_app,
            )
            if f.code_context:
                data["pre_context"] = list(f.code_context.pre_context)
                data["context_line"] = f.code_context.context_line
                data["post_context"] = list(f.code_context.post_context)
            formatted.append(data)
        # Sentry expects the oldest frame first
        formatted.reverse()
        return formatted


def _cause_of(exception: BaseException) -> BaseException | None:
    if exception.__cause__ is not None:
        return exception.__cause__
    if exception.__suppress_context__:
        return None
    return exception.__context__


def _compact(**values: Any) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}
