"""
Drops events for errors that are known not to be actionable: expected timeouts, bot traffic,
user input validation and so on.  Presets bundle the usual suspects per deployment type and can
be combined:

config.exclusion_filter = ExclusionFilter.from_presets("production", "security_focused")
"""

import datetime
import logging
import re
from typing import TYPE_CHECKING, Any, Callable, Iterable, Literal, Mapping, Optional

from faultline.utils import qualified_class_name

if TYPE_CHECKING:
    from faultline.event import Event

logger = logging.getLogger(__name__)

ExclusionKind = Literal["exception", "pattern", "message", "environment", "custom"]
EventPredicate = Callable[["Event"], Any]
Matcher = type | str | re.Pattern

_KIND_TO_ATTR = {
    "exception": "excluded_exceptions",
    "pattern": "excluded_patterns",
    "message": "excluded_messages",
    "environment": "excluded_environments",
    "custom": "custom_filters",
}


def _text_matches(text: str, matcher: Any) -> bool:
    if isinstance(matcher, re.Pattern):
        return bool(matcher.search(text))
    if isinstance(matcher, str):
        return matcher in text
    return False


class ExclusionFilter:
    def __init__(
        self,
        excluded_exceptions: Iterable[Matcher] = (),
        excluded_patterns: Iterable[re.Pattern | str] = (),
        excluded_messages: Iterable[re.Pattern | str] = (),
        excluded_environments: Iterable[str] = (),
        custom_filters: Iterable[EventPredicate] = (),
        inclusion_overrides: Iterable[EventPredicate] = (),
        default_environment: Optional[str] = None,
    ):
        self.excluded_exceptions = list(excluded_exceptions)
        self.excluded_patterns = list(excluded_patterns)
        self.excluded_messages = list(excluded_messages)
        self.excluded_environments = [str(e) for e in excluded_environments]
        self.custom_filters = list(custom_filters)
        self.inclusion_overrides = list(inclusion_overrides)
        self.default_environment = default_environment

    @classmethod
    def from_presets(cls, *presets: str | Mapping[str, Any], **kwargs: Any) -> "ExclusionFilter":
        return cls(**combined(presets), **kwargs)

    def should_exclude(self, event: "Event") -> bool:
        # Inclusion overrides take precedence over every exclusion
        if any(self._run_predicate(override, event) for override in self.inclusion_overrides):
            return False

        return (
            self.excluded_by_exception_type(event)
            or self.excluded_by_pattern(event)
            or self.excluded_by_message(event)
            or self.excluded_by_environment(event)
            or self.excluded_by_custom_filter(event)
        )

    def add_exclusion(self, kind: ExclusionKind, value: Any) -> None:
        if kind not in _KIND_TO_ATTR:
            raise ValueError(f"Unknown exclusion type: {kind}")
        getattr(self, _KIND_TO_ATTR[kind]).append(value)

    def add_inclusion_override(self, predicate: EventPredicate) -> None:
        self.inclusion_overrides.append(predicate)

    def clear_exclusions(self, kind: Optional[ExclusionKind] = None) -> None:
        if kind is not None and kind not in _KIND_TO_ATTR:
            raise ValueError(f"Unknown exclusion type: {kind}")
        for name, attr in _KIND_TO_ATTR.items():
            if kind is None or kind == name:
                getattr(self, attr).clear()

    def exclusion_stats(self) -> dict[str, int]:
        return {
            "excluded_exceptions": len(self.excluded_exceptions),
            "excluded_patterns": len(self.excluded_patterns),
            "excluded_messages": len(self.excluded_messages),
            "excluded_environments": len(self.excluded_environments),
            "custom_filters": len(self.custom_filters),
            "inclusion_overrides": len(self.inclusion_overrides),
        }

    def excluded_by_exception_type(self, event: "Event") -> bool:
        exception = event.exception
        if exception is None:
            return False

        class_name = qualified_class_name(exception)
        ancestor_names = {qualified_class_name(cls) for cls in type(exception).__mro__}
        for excluded in self.excluded_exceptions:
            if isinstance(excluded, type):
                if isinstance(exception, excluded):
                    return True
            elif isinstance(excluded, str):
                if excluded in ancestor_names or excluded in class_name:
                    return True
            elif isinstance(excluded, re.Pattern):
                if excluded.search(class_name):
                    return True
        return False

    def excluded_by_pattern(self, event: "Event") -> bool:
        exception = event.exception
        if exception is None:
            return False

        class_name = qualified_class_name(exception)
        message = str(exception)
        return any(
            _text_matches(class_name, pattern) or _text_matches(message, pattern)
            for pattern in self.excluded_patterns
        )

    def excluded_by_message(self, event: "Event") -> bool:
        exception = event.exception
        if exception is None:
            return False

        message = str(exception)
        return any(_text_matches(message, excluded) for excluded in self.excluded_messages)

    def excluded_by_environment(self, event: "Event") -> bool:
        if not self.excluded_environments:
            return False

        environment = (
            event.context.get("environment")
            or event.tags.get("environment")
            or event.environment
            or self.default_environment
        )
        if not environment:
            return False
        return str(environment) in self.excluded_environments

    def excluded_by_custom_filter(self, event: "Event") -> bool:
        return any(self._run_predicate(predicate, event) for predicate in self.custom_filters)

    def _run_predicate(self, predicate: EventPredicate, event: "Event") -> bool:
        try:
            return bool(predicate(event))
        except Exception:
            logger.exception(f"Exclusion predicate {predicate!r} failed")
            return False


BOT_USER_AGENTS = [
    re.compile(p, re.I) for p in (r"googlebot", r"bingbot", r"slurp", r"crawler", r"spider", r"bot")
]


def _request_user_agent(event: "Event") -> Optional[str]:
    request = event.request_context
    if not isinstance(request, Mapping):
        return None
    headers = request.get("headers") or {}
    if not isinstance(headers, Mapping):
        return None
    for key, value in headers.items():
        if str(key).lower() == "user-agent":
            return str(value)
    return None


def is_bot_request(event: "Event") -> bool:
    user_agent = _request_user_agent(event)
    if not user_agent:
        return False
    return any(pattern.search(user_agent) for pattern in BOT_USER_AGENTS)


def is_peak_hours(now: Optional[datetime.datetime] = None) -> bool:
    now = now or datetime.datetime.now()
    return 9 <= now.hour <= 17 and now.weekday() < 5


def is_timeout_at_peak(event: "Event") -> bool:
    if event.exception is None or not is_peak_hours():
        return False
    if isinstance(event.exception, TimeoutError):
        return True
    return bool(re.search(r"timeout", str(event.exception), re.I))


VALIDATION_KEYWORDS = ("invalid", "required", "missing", "format", "validation")


def is_user_input_error(event: "Event") -> bool:
    if event.exception is None:
        return False
    message = str(event.exception).lower()
    return any(keyword in message for keyword in VALIDATION_KEYWORDS)


def development() -> dict[str, Any]:
    return {
        "excluded_exceptions": [
            "_pytest.outcomes.Failed",
            "_pytest.outcomes.Skipped",
            "bdb.BdbQuit",
            "KeyboardInterrupt",
        ],
        "excluded_patterns": [
            re.compile(r"test", re.I),
            re.compile(r"spec", re.I),
            re.compile(r"debug", re.I),
            re.compile(r"development", re.I),
        ],
        "excluded_environments": ["test"],
    }


def production() -> dict[str, Any]:
    return {
        "excluded_exceptions": [
            "django.http.response.Http404",
            "django.core.exceptions.DisallowedHost",
            "django.core.exceptions.PermissionDenied",
            "werkzeug.exceptions.NotFound",
            "werkzeug.exceptions.MethodNotAllowed",
            "werkzeug.exceptions.BadRequest",
            "requests.exceptions.ReadTimeout",
            "requests.exceptions.ConnectTimeout",
            "TimeoutError",
        ],
        "excluded_patterns": [
            re.compile(r"bot", re.I),
            re.compile(r"crawler", re.I),
            re.compile(r"spider", re.I),
            re.compile(r"scraper", re.I),
            re.compile(r"sql.*injection", re.I),
            re.compile(r"xss", re.I),
            re.compile(r"csrf", re.I),
            re.compile(r"\.php$", re.I),
            re.compile(r"\.asp$", re.I),
            re.compile(r"wp-admin", re.I),
            re.compile(r"wp-login", re.I),
        ],
        "excluded_messages": [
            "No route matches",
            "CSRF verification failed",
            "Forbidden",
            "Unauthorized",
        ],
    }


def staging() -> dict[str, Any]:
    return {
        "excluded_exceptions": ["django.core.exceptions.ObjectDoesNotExist", "ValueError"],
        "excluded_patterns": [
            re.compile(r"test", re.I),
            re.compile(r"staging", re.I),
            re.compile(r"dummy", re.I),
            re.compile(r"fake", re.I),
        ],
        "excluded_environments": ["test", "development"],
    }


def security_focused() -> dict[str, Any]:
    return {
        "excluded_patterns": [
            re.compile(r"\.php$", re.I),
            re.compile(r"\.asp$", re.I),
            re.compile(r"\.jsp$", re.I),
            re.compile(r"wp-admin", re.I),
            re.compile(r"wp-login", re.I),
            re.compile(r"phpmyadmin", re.I),
            re.compile(r"admin", re.I),
            re.compile(r"login\.php", re.I),
            re.compile(r"index\.php", re.I),
            re.compile(r"union.*select", re.I),
            re.compile(r"insert.*into", re.I),
            re.compile(r"drop.*table", re.I),
            re.compile(r"delete.*from", re.I),
            re.compile(r"<script", re.I),
            re.compile(r"javascript:", re.I),
            re.compile(r"onclick=", re.I),
            re.compile(r"onerror=", re.I),
        ],
        "excluded_messages": ["CSRF verification failed", "Forbidden", "Unauthorized", "Access denied"],
        "custom_filters": [is_bot_request],
    }


def performance_focused() -> dict[str, Any]:
    return {
        "excluded_exceptions": [
            "requests.exceptions.ReadTimeout",
            "requests.exceptions.ConnectTimeout",
            "redis.exceptions.TimeoutError",
            "TimeoutError",
            "MemoryError",
            "RecursionError",
        ],
        "excluded_patterns": [
            re.compile(r"timeout", re.I),
            re.compile(r"memory", re.I),
            re.compile(r"resource", re.I),
            re.compile(r"limit", re.I),
        ],
        "custom_filters": [is_timeout_at_peak],
    }


def user_error_focused() -> dict[str, Any]:
    return {
        "excluded_exceptions": [
            "pydantic_core._pydantic_core.ValidationError",
            "django.core.exceptions.ValidationError",
            "ValueError",
            "TypeError",
        ],
        "excluded_patterns": [
            re.compile(r"validation", re.I),
            re.compile(r"invalid", re.I),
            re.compile(r"missing", re.I),
            re.compile(r"required", re.I),
            re.compile(r"format", re.I),
        ],
        "custom_filters": [is_user_input_error],
    }


PRESETS: dict[str, Callable[[], dict[str, Any]]] = {
    "development": development,
    "production": production,
    "staging": staging,
    "security_focused": security_focused,
    "performance_focused": performance_focused,
    "user_error_focused": user_error_focused,
}


def combined(presets: Iterable[str | Mapping[str, Any]]) -> dict[str, Any]:
    """Merges presets, given by name or as settings mappings, dropping duplicate entries."""
    result: dict[str, list[Any]] = {attr: [] for attr in _KIND_TO_ATTR.values()}

    for preset in presets:
        if isinstance(preset, Mapping):
            settings = preset
        elif preset in PRESETS:
            settings = PRESETS[preset]()
        else:
            raise ValueError(f"Unknown exclusion preset: {preset}")

        for attr, values in result.items():
            for value in settings.get(attr) or []:
                if value not in values:
                    values.append(value)

    return result
