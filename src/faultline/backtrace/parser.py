"""
Turns raw trace lines into BacktraceFrames.

Lines come from native Python tracebacks (`File "app.py", line 3, in main`) as well as from
foreign runtimes that report to us through a `backtrace` list of strings, so the parser tries an
ordered list of matchers and the first one that recognises a line wins.  Each matcher yields a
tagged result: `WellFormed` (file, numeric line and method all present), `Partial` (some part was
missing or malformed and has been defaulted) or, when nothing matched, `Unparseable`.
"""

import dataclasses
import os
import re
import sysconfig
from typing import Optional, Union

from faultline.backtrace.frame import TOP_LEVEL_METHOD, BacktraceFrame, BlockInfo, matches_any


@dataclasses.dataclass(frozen=True)
class WellFormed:
    filename: str
    line_number: int
    method_name: str
    block_level: Optional[int] = None
    native_extension: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class Partial:
    filename: str
    line_number: Optional[int]
    method_name: str


@dataclasses.dataclass(frozen=True)
class Unparseable:
    raw_line: str


ParsedLine = Union[WellFormed, Partial, Unparseable]

_Q = "[`']"


@dataclasses.dataclass(frozen=True)
class LineMatcher:
    name: str
    pattern: re.Pattern
    default_filename: Optional[str] = None

    def match(self, line: str) -> Optional[ParsedLine]:
        m = self.pattern.match(line)
        if m is None:
            return None

        groups = m.groupdict()
        filename = groups.get("filename") or self.default_filename
        if not filename:
            return None

        method = groups.get("method")
        method = method.strip() if method else None

        raw_number = groups.get("line")
        if "line" not in groups:
            line_number = None
        elif raw_number and raw_number.isdigit():
            line_number = int(raw_number)
        else:
            line_number = 0

        if line_number is None or line_number == 0 and raw_number != "0" or not method:
            return Partial(
                filename=filename,
                line_number=line_number,
                method_name=method or TOP_LEVEL_METHOD,
            )

        block_level = groups.get("block_level")
        return WellFormed(
            filename=filename,
            line_number=line_number,
            method_name=method,
            block_level=int(block_level) if block_level else None,
            native_extension=groups.get("native"),
        )


LINE_MATCHERS: list[LineMatcher] = [
    # File "app/models.py", line 12, in find_user
    LineMatcher(
        "python",
        re.compile(r'^File "(?P<filename>[^"]+)", line (?P<line>\d+)(?:, in (?P<method>.+))?$'),
    ),
    # (eval):3:in `compute'
    LineMatcher(
        "eval",
        re.compile(rf"^\(eval\):(?P<line>\d+):in {_Q}(?P<method>.*?){_Q}$"),
        default_filename="(eval)",
    ),
    # [native_ext] ext.c:12:in `call'
    LineMatcher(
        "native",
        re.compile(
            rf"^\[(?P<native>[^\]]+)\]\s*(?P<filename>[^:]+):(?P<line>\d+):in {_Q}(?P<method>.*?){_Q}$"
        ),
    ),
    # app.rb:12:in `block (2 levels) in process'
    LineMatcher(
        "block",
        re.compile(
            rf"^(?P<filename>[^:]+):(?P<line>\d+):in {_Q}"
            r"(?P<method>block (?:\((?P<block_level>\d+)\s+levels?\)\s+)?in .*?)"
            rf"{_Q}$"
        ),
    ),
    # app.rb:12:in `process'
    LineMatcher(
        "standard",
        re.compile(rf"^(?P<filename>[^:]+):(?P<line>\d+):in {_Q}(?P<method>.*?){_Q}$"),
    ),
    # app.rb:12
    LineMatcher("file_line", re.compile(r"^(?P<filename>[^:]+):(?P<line>\d+)$")),
    # app.rb:12:in process
    LineMatcher(
        "unquoted", re.compile(r"^(?P<filename>[^:]+):(?P<line>\d+):in (?P<method>.*)$")
    ),
    # org.example.Runner.run(Runner.java:123)
    LineMatcher(
        "java",
        re.compile(r"^(?P<method>[^(]+)\((?P<filename>[^:)]+):(?P<line>\d+)\)$"),
    ),
    # org.example.Runner.run(Runner.java)
    LineMatcher("java_no_line", re.compile(r"^(?P<method>[^(]+)\((?P<filename>[^:)]+)\)$")),
    # app.rb:abc:in `process'
    LineMatcher(
        "bad_line_number",
        re.compile(rf"^(?P<filename>[^:]+):(?P<line>[^:]*):in {_Q}(?P<method>.*?){_Q}$"),
    ),
    # app.rb::in `process'
    LineMatcher(
        "missing_line_number",
        re.compile(rf"^(?P<filename>[^:]+):(?P<line>):in {_Q}(?P<method>.*?){_Q}$"),
    ),
    # app.rb:12:in
    LineMatcher("missing_method", re.compile(r"^(?P<filename>[^:]+):(?P<line>\d+):in$")),
]


def _stdlib_indicators() -> list[str]:
    paths = set()
    for key in ("stdlib", "platstdlib"):
        path = sysconfig.get_paths().get(key)
        if path:
            paths.add(path.rstrip("/") + "/")
    return sorted(paths)


# Path fragments (substrings or patterns) that mark a frame as dependency, runtime or REPL code.
# Version-shaped patterns keep ordinary directories such as `lib/python_tools/` in the app.
LIBRARY_INDICATORS: list[re.Pattern | str] = [
    "/site-packages/",
    "/dist-packages/",
    re.compile(r"/lib/python\d+(\.\d+)?/"),
    "/.pyenv/",
    "<frozen ",
    "/node_modules/",
    "/gems/",
    "/.bundle/",
    re.compile(r"/vendor/(bundle|cache|gems|ruby)/"),
    re.compile(r"/lib/ruby/(gems/)?\d+\.\d+(\.\d+)?/"),
    re.compile(r"/ruby[-/]\d+\.\d+(\.\d+)?/"),
    "(eval)",
    "(irb)",
    "/.rbenv/",
    "/.rvm/",
    "/System/Library/Frameworks/",
    *_stdlib_indicators(),
]


def is_library_path(filename: str) -> bool:
    for indicator in LIBRARY_INDICATORS:
        if isinstance(indicator, re.Pattern):
            if indicator.search(filename):
                return True
        elif indicator in filename:
            return True
    return False


def is_pseudo_path(filename: str) -> bool:
    return (filename.startswith("(") and filename.endswith(")")) or (
        filename.startswith("<") and filename.endswith(">")
    )


def parse_line(raw_line: str, matchers: list[LineMatcher] | None = None) -> ParsedLine:
    line = raw_line.strip()
    for matcher in matchers if matchers is not None else LINE_MATCHERS:
        parsed = matcher.match(line)
        if parsed is not None:
            return parsed
    return Unparseable(raw_line=line)


def split_method_name(
    method_name: Optional[str], block_level: Optional[int] = None
) -> tuple[Optional[str], Optional[str], Optional[BlockInfo]]:
    """
    Splits `Module.method` / `Module#method` into (function, module), and extracts block nesting
    information from `block (2 levels) in method`.
    """
    if not method_name:
        return None, None, None

    function: Optional[str] = method_name
    module_name: Optional[str] = None
    block_info: Optional[BlockInfo] = None

    if method_name.startswith("block"):
        block_match = re.match(r"block (?:\((\d+)\s+levels?\)\s+)?in (.+)", method_name)
        if block_match:
            level = block_level
            if level is None and block_match.group(1):
                level = int(block_match.group(1))
            block_info = BlockInfo(level=level, in_method=block_match.group(2).strip())
        else:
            block_info = BlockInfo(level=block_level)
    elif method_name.startswith("<"):
        pass
    elif "#" in method_name:
        module_name, _, function = method_name.partition("#")
    elif "." in method_name:
        module_name, _, function = method_name.rpartition(".")

    function = function.strip() if function else method_name
    module_name = module_name.strip() if module_name else None
    return function, module_name, block_info


class FrameFactory:
    """
    Builds BacktraceFrames from raw lines, classifying them as in-app or library code and
    normalizing their filenames against the configured load paths.
    """

    def __init__(
        self,
        in_app_patterns: list[re.Pattern | str] | None = None,
        load_paths: list[str] | None = None,
        matchers: list[LineMatcher] | None = None,
    ):
        self.in_app_patterns = list(in_app_patterns or [])
        self.load_paths = sorted(
            {p.rstrip("/") or "/" for p in (load_paths or []) if p and p != "/"},
            key=len,
            reverse=True,
        )
        self.matchers = matchers

    def create_frame(self, raw_line: str) -> BacktraceFrame:
        raw_line = str(raw_line).strip()
        parsed = parse_line(raw_line, self.matchers)

        if isinstance(parsed, Unparseable):
            # Keep the whole line as the filename so that nothing reported is lost.
            filename, line_number, method_name = raw_line, None, TOP_LEVEL_METHOD
            function, module_name, block_info = TOP_LEVEL_METHOD, None, None
        else:
            filename, line_number, method_name = (
                parsed.filename,
                parsed.line_number,
                parsed.method_name,
            )
            block_level = parsed.block_level if isinstance(parsed, WellFormed) else None
            function, module_name, block_info = split_method_name(method_name, block_level)

        return BacktraceFrame(
            filename=self.normalize_path(filename),
            absolute_path=filename,
            line_number=line_number,
            method_name=method_name,
            function=function,
            module_name=module_name,
            in_app=self.is_in_app(filename),
            raw_line=raw_line,
            block_info=block_info,
        )

    def is_in_app(self, filename: Optional[str]) -> bool:
        if not filename:
            return False

        if self.in_app_patterns:
            return matches_any(filename, self.in_app_patterns)

        if is_library_path(filename):
            return False

        return not is_pseudo_path(filename)

    def normalize_path(self, filename: Optional[str]) -> Optional[str]:
        if not filename:
            return filename

        if filename.startswith("./"):
            filename = os.path.abspath(filename)

        # Windows traces reported from a posix host
        if "\\" in filename and "/" not in filename:
            filename = filename.replace("\\", "/")

        if not self.load_paths:
            return filename

        relative = self._relative_to_load_path(filename)
        if not relative or relative == ".":
            return filename
        return relative

    def _relative_to_load_path(self, filename: str) -> str:
        for load_path in self.load_paths:
            if filename.startswith(load_path + "/"):
                relative = filename[len(load_path) + 1 :]
                if relative:
                    return relative
        return filename
