"""
faultline captures exceptions and messages, enriches them with per-context scope data and
delivers them to any number of independently configured adapters.

import faultline

faultline.configure(environment="production", sample_rate=0.5)
faultline.registry().register(faultline.adapters.LoggerAdapter())

try:
    ...
except Exception as e:
    faultline.capture_exception(e, tags={"component": "billing"})
"""

import threading
from typing import Any, Callable, Mapping, Optional, TypeVar

from faultline.adapters.base import Adapter
from faultline.bootup import bootup
from faultline.client import CaptureResult, Client
from faultline.configuration import FaultlineConfig
from faultline.dependency_injection import resolve
from faultline.event import Event, EventType, Level
from faultline.registry import Registry

_T = TypeVar("_T")

_client: Optional[Client] = None
_client_lock = threading.Lock()


def configure(
    config: Optional[FaultlineConfig] = None,
    *,
    adapters: Optional[list[Adapter]] = None,
    **settings: Any,
) -> Client:
    """
    Boots a new Client, replacing (and shutting down) any previous one.  `settings` override the
    environment derived configuration field by field.
    """
    global _client

    if config is None:
        base = resolve(FaultlineConfig)
        overrides = FaultlineConfig.model_validate(settings)
        config = base.model_copy(
            update={name: getattr(overrides, name) for name in overrides.model_fields_set}
        )

    with _client_lock:
        previous, _client = _client, None
    if previous is not None:
        previous.shutdown()

    client = bootup(adapters=adapters, config=config)
    with _client_lock:
        _client = client
    return client


def client() -> Client:
    with _client_lock:
        if _client is not None:
            return _client
    return resolve(Client)


def registry() -> Registry:
    return client().registry


def capture_exception(exception: BaseException, **kwargs: Any) -> CaptureResult:
    return client().capture_exception(exception, **kwargs)


def capture_message(message: str, **kwargs: Any) -> CaptureResult:
    return client().capture_message(message, **kwargs)


def add_breadcrumb(message: Any, type: str = "default", **metadata: Any):
    return client().add_breadcrumb(message, type=type, **metadata)


def with_scope(overrides: Optional[Mapping[str, Any]] = None):
    return client().with_scope(overrides)


def current_scope():
    return client().current_scope()


def flush(timeout: Optional[float] = 2.0) -> bool:
    return client().flush(timeout)


def shutdown(timeout: Optional[float] = 2.0) -> None:
    global _client
    with _client_lock:
        current, _client = _client, None
    if current is not None:
        current.shutdown(timeout)


def handle(
    func: Callable[[], _T],
    *,
    error_class: type[BaseException] | tuple[type[BaseException], ...] = Exception,
    fallback: Any = None,
    **kwargs: Any,
) -> Any:
    """
    Runs `func`, reporting and swallowing `error_class` errors.  Returns the fallback (called
    first if it is callable) when `func` fails.
    """
    try:
        return func()
    except error_class as e:
        report(e, handled=True, **kwargs)
        return fallback() if callable(fallback) else fallback


def record(
    func: Callable[[], _T],
    *,
    error_class: type[BaseException] | tuple[type[BaseException], ...] = Exception,
    **kwargs: Any,
) -> _T:
    """Runs `func`, reporting `error_class` errors before re-raising them."""
    try:
        return func()
    except error_class as e:
        report(e, handled=False, **kwargs)
        raise


def report(exception: BaseException, handled: bool = True, **kwargs: Any) -> CaptureResult:
    context = {**(kwargs.pop("context", None) or {}), "handled": handled}
    return capture_exception(exception, context=context, **kwargs)


__all__ = [
    "Client",
    "Event",
    "EventType",
    "FaultlineConfig",
    "Level",
    "add_breadcrumb",
    "capture_exception",
    "capture_message",
    "client",
    "configure",
    "current_scope",
    "flush",
    "handle",
    "record",
    "registry",
    "report",
    "shutdown",
    "with_scope",
]
