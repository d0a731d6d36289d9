import datetime
import functools
import inspect
import json
import logging
import random
import time
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class FaultlineJSONEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (datetime.datetime, datetime.date)):
            return obj.isoformat()
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json")
        if isinstance(obj, BaseException):
            return exception_formatter(obj)
        if isinstance(obj, (set, frozenset, tuple)):
            return list(obj)
        return repr(obj)


def json_dumps(data, **kwargs) -> str:
    return json.dumps(data, cls=FaultlineJSONEncoder, **kwargs)


def qualified_class_name(obj_or_type: Any) -> str:
    """
    `module.QualName` for a class or instance, with builtins left unqualified so that
    `ValueError` reads as `ValueError` rather than `builtins.ValueError`.
    """
    cls = obj_or_type if isinstance(obj_or_type, type) else type(obj_or_type)
    if cls.__module__ in ("builtins", "__main__"):
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


def exception_formatter(exception: BaseException) -> str:
    return f"{qualified_class_name(exception)}: {exception}"


class MaxTriesExceeded(Exception):
    pass


def backoff_on_exception(
    is_exception_retryable: Callable[[Exception], bool],
    max_tries: int = 2,
    sleep_sec_scaler: Callable[[int], float] | None = None,
    jitterer: Callable[[], float] = lambda: random.uniform(0, 0.5),
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Returns a decorator which retries a function on exception iff `is_exception_retryable(exception)`.
    Defaults to exponential backoff with random jitter and one retry. No sleep happens after the
    final try; the last exception is chained onto `MaxTriesExceeded`.
    """

    if max_tries < 1:
        raise ValueError("max_tries must be at least 1")  # pragma: no cover

    if sleep_sec_scaler is None:
        sleep_sec_scaler = lambda num_tries: min(2**num_tries, 10.0)

    def decorator(func):
        @functools.wraps(func)
        def wrapped_func(*args, **kwargs):
            last_exception = None
            for num_tries in range(1, max_tries + 1):
                try:
                    result = func(*args, **kwargs)
                except Exception as exception:
                    last_exception = exception
                    if not is_exception_retryable(exception):
                        raise
                    if num_tries < max_tries:
                        sleep_sec = sleep_sec_scaler(num_tries) + jitterer()
                        logger.info(
                            f"Encountered {exception_formatter(exception)}. Sleeping for "
                            f"{sleep_sec:.2f} seconds before try {num_tries + 1}/{max_tries}."
                        )
                        sleep(sleep_sec)
                else:
                    if num_tries > 1:
                        logger.info(f"Retried call successful after {num_tries} tries.")
                    return result

            assert last_exception is not None
            raise MaxTriesExceeded(
                f"Max tries ({max_tries}) exceeded. "
                f"Last exception: {exception_formatter(last_exception)}"
            ) from last_exception

        return wrapped_func

    return decorator


def call_with_supported_args(func: Callable, *args: Any) -> Any:
    """
    Invokes `func` with as many of the trailing `args` as its signature accepts. A handler declared
    as `(error)` receives only the last argument, `(event, error)` the last two, and so on.
    """
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return func(*args)

    params = signature.parameters.values()
    if any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
        return func(*args)

    positional = [
        p
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    count = min(len(positional), len(args))
    if count == 0:
        return func()
    return func(*args[-count:])


def prefix_logger(prefix: str, logger: logging.Logger) -> logging.LoggerAdapter:
    """
    Returns a logger that prefixes all messages with `prefix`.
    """

    class PrefixedLoggingAdapter(logging.LoggerAdapter):
        def process(self, msg, kwargs):
            return f"{prefix}{msg}", kwargs

    return PrefixedLoggingAdapter(logger)
