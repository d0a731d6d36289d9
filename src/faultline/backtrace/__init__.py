from faultline.backtrace.frame import BacktraceFrame, BlockInfo, CodeContext
from faultline.backtrace.parser import FrameFactory, parse_line
from faultline.backtrace.processor import BacktraceConfig, BacktraceProcessor, raw_backtrace

__all__ = [
    "BacktraceConfig",
    "BacktraceFrame",
    "BacktraceProcessor",
    "BlockInfo",
    "CodeContext",
    "FrameFactory",
    "parse_line",
    "raw_backtrace",
]
