"""
Masks sensitive values in event context before it leaves the process.

Keys are compared against the sensitive field list: plain strings match as case-insensitive
substrings (so `passw` covers `password` and `PASSWORD_CONFIRMATION`), compiled patterns are
searched.  A matching key has its whole value replaced; other mappings and sequences are walked.
"""

import io
import mimetypes
import os
import random
import re
from typing import TYPE_CHECKING, Any, Iterable, Optional

if TYPE_CHECKING:
    from faultline.configuration import FaultlineConfig

MASK = "[FILTERED]"
MIN_RANDOM_MASK = 3
MAX_RANDOM_MASK = 32

DEFAULT_SCRUB_FIELDS: list[str | re.Pattern] = [
    "passw",
    "email",
    "secret",
    "token",
    "_key",
    "crypt",
    "salt",
    "certificate",
    "otp",
    "ssn",
    "cvv",
    "cvc",
    "authorization",
    "cookie",
]


def is_file_like(value: Any) -> bool:
    if isinstance(value, io.IOBase):
        return True
    return callable(getattr(value, "read", None)) and (
        hasattr(value, "filename") or hasattr(value, "name")
    )


def describe_file(value: Any) -> dict[str, Any]:
    filename = getattr(value, "filename", None) or getattr(value, "name", None)
    if isinstance(filename, (bytes, int)):
        filename = None
    if filename:
        filename = os.path.basename(str(filename))

    content_type = getattr(value, "content_type", None)
    if not content_type and filename:
        content_type = mimetypes.guess_type(filename)[0]

    return {
        "content_type": content_type or "application/octet-stream",
        "filename": filename,
        "size": _file_size(value),
    }


def _file_size(value: Any) -> Optional[int]:
    size = getattr(value, "size", None)
    if isinstance(size, int):
        return size
    try:
        return os.fstat(value.fileno()).st_size
    except (AttributeError, OSError, ValueError, io.UnsupportedOperation):
        pass
    try:
        position = value.tell()
        value.seek(0, os.SEEK_END)
        end = value.tell()
        value.seek(position)
        return end
    except (AttributeError, OSError, ValueError, io.UnsupportedOperation):
        return None


class Scrubber:
    def __init__(
        self,
        scrub_fields: Optional[Iterable[str | re.Pattern]] = None,
        scrub_all: bool = False,
        whitelist_fields: Optional[Iterable[str]] = None,
        randomize_scrub_length: bool = False,
        base_fields: Optional[Iterable[str | re.Pattern]] = None,
    ):
        fields = list(base_fields) if base_fields else list(DEFAULT_SCRUB_FIELDS)
        fields.extend(scrub_fields or [])
        self.fields = fields
        self.scrub_all = scrub_all
        self.whitelist_fields = {str(f) for f in whitelist_fields or []}
        self.randomize_scrub_length = randomize_scrub_length

    @classmethod
    def from_config(
        cls,
        config: "FaultlineConfig",
        base_fields: Optional[Iterable[str | re.Pattern]] = None,
    ) -> "Scrubber":
        return cls(
            scrub_fields=config.scrub_fields,
            scrub_all=config.scrub_all,
            whitelist_fields=config.whitelist_fields,
            randomize_scrub_length=config.randomize_scrub_length,
            base_fields=base_fields,
        )

    def scrub(self, data: Any) -> Any:
        if data is None:
            return None
        if self.scrub_all:
            return self._scrub_all(data)
        return self._scrub(data)

    def is_sensitive(self, key: Any) -> bool:
        name = str(key)
        if name in self.whitelist_fields:
            return False
        lowered = name.lower()
        for field in self.fields:
            if isinstance(field, re.Pattern):
                if field.search(name):
                    return True
            elif str(field).lower() in lowered:
                return True
        return False

    def mask(self, value: Any = None) -> str:
        if not self.randomize_scrub_length:
            return MASK
        length = random.randint(MIN_RANDOM_MASK, MAX_RANDOM_MASK)
        return "*" * length

    def _scrub(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                k: self.mask(v) if self.is_sensitive(k) else self._scrub(v)
                for k, v in value.items()
            }
        if isinstance(value, (list, tuple)):
            scrubbed = [self._scrub(item) for item in value]
            return scrubbed if isinstance(value, list) else tuple(scrubbed)
        if is_file_like(value):
            return describe_file(value)
        return value

    def _scrub_all(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                k: v if str(k) in self.whitelist_fields else self._scrub_all(v)
                for k, v in value.items()
            }
        if isinstance(value, (list, tuple)):
            scrubbed = [self._scrub_all(item) for item in value]
            return scrubbed if isinstance(value, list) else tuple(scrubbed)
        if is_file_like(value):
            return describe_file(value)
        return self.mask(value)
