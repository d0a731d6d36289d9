import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

# Method name used for frames that execute outside any method (script or module body).
TOP_LEVEL_METHOD = "<main>"


class CodeContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    pre_context: tuple[str, ...] = ()
    context_line: str
    post_context: tuple[str, ...] = ()
    line_number: int
    start_line: int
    end_line: int


class BlockInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: Optional[int] = None
    in_method: Optional[str] = None


class BacktraceFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: Optional[str]
    absolute_path: Optional[str] = None
    line_number: Optional[int] = None
    method_name: Optional[str] = None
    function: Optional[str] = None
    module_name: Optional[str] = None
    in_app: bool = False
    raw_line: str = ""
    code_context: Optional[CodeContext] = None
    block_info: Optional[BlockInfo] = None

    # Only set on frames produced from an exception chain.
    exception_class: Optional[str] = None
    crash_frame: bool = False

    @property
    def is_valid(self) -> bool:
        return bool(self.filename) and (self.line_number is None or self.line_number >= 0)

    @property
    def is_library_frame(self) -> bool:
        return not self.in_app

    @property
    def is_app_frame(self) -> bool:
        return self.in_app

    @property
    def source_path(self) -> Optional[str]:
        return self.absolute_path or self.filename

    @property
    def dedupe_key(self) -> tuple[Optional[str], Optional[int], Optional[str]]:
        return self.filename, self.line_number, self.function

    def is_excluded(self, exclude_patterns: list[re.Pattern | str]) -> bool:
        return matches_any(self.raw_line, exclude_patterns)

    def with_changes(self, **changes: Any) -> "BacktraceFrame":
        return self.model_copy(update=changes)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "filename": self.filename,
            "abs_path": self.absolute_path,
            "line_number": self.line_number,
            "method": self.method_name,
            "function": self.function,
            "module": self.module_name,
            "in_app": self.in_app,
            "code_context": self.code_context.model_dump() if self.code_context else None,
            "raw": self.raw_line,
            "exception_class": self.exception_class,
            "crash_frame": self.crash_frame or None,
        }
        return {k: v for k, v in data.items() if v is not None}


def matches_any(value: str | None, patterns: list[re.Pattern | str]) -> bool:
    if not value:
        return False
    for pattern in patterns:
        if isinstance(pattern, re.Pattern):
            if pattern.search(value):
                return True
        elif isinstance(pattern, str):
            if pattern in value:
                return True
    return False
