"""
A small dependency injection system driven by callable annotations. It is how faultline
hands out its process-wide collaborators (the configuration, the adapter Registry and the
Client) without resorting to module globals.

Providers are registered on a `Module`:

@configuration_module.provider
def load_from_environment() -> FaultlineConfig:
  ...

and consumed by annotating a parameter with the provided type and defaulting it to `injected`:

@inject
def bootup(*, adapters: list[Adapter], config: FaultlineConfig = injected) -> Client:
  ...

bootup(adapters=[]) # config is resolved from the active modules and cached.

Several modules can be stacked.  The most recently enabled module wins, falling back to its
parents, which lets tests layer `configuration_test_module` on top of the defaults (see
tests/conftest.py).  Unlike request-scoped state, the active injector is shared by every thread
of the process: adapters and the registry they live in must be reachable from dispatch workers.
"""

import dataclasses
import functools
import inspect
import threading
from typing import Annotated, Any, Callable, TypeVar

from johen.generators.annotations import AnnotationProcessingContext
from pydantic import BaseModel
from pydantic.fields import FieldInfo

_A = TypeVar("_A")
_C = TypeVar("_C", bound=Callable[[], Any])


@dataclasses.dataclass
class Labeled:
    """
    Distinguishes two providers of the same underlying type, eg:

    @inject
    def build_transport(
        endpoint: Annotated[str, Labeled("webhook_endpoint")] = injected,
    ) -> HttpTransport: ...
    """

    label: str


@dataclasses.dataclass(frozen=True)
class FactoryAnnotation:
    concrete_type: type
    is_collection: bool
    is_type: bool
    label: str

    @classmethod
    def from_annotation(cls, source: Any) -> "FactoryAnnotation":
        annotation = AnnotationProcessingContext.from_source(source)
        if annotation.origin is Annotated:
            label = next((arg.label for arg in annotation.args[1:] if isinstance(arg, Labeled)), "")
            inner = FactoryAnnotation.from_annotation(annotation.args[0])
            assert not inner.label, f"Cannot get_factory {source}: Annotated has embedded Labeled"
            return dataclasses.replace(inner, label=label)
        elif annotation.concretely_implements(list):
            assert (
                len(annotation.args) == 1
            ), f"Cannot get_factory {source}: list requires exactly one argument"
            inner = FactoryAnnotation.from_annotation(annotation.args[0])
            assert not inner.label, f"Cannot get_factory {source}: list has embedded Labeled"
            assert (
                not inner.is_collection
            ), f"Cannot get_factory {source}: collections must be of concrete types, not other lists"
            return dataclasses.replace(inner, is_collection=True)
        elif annotation.origin is type:
            assert (
                len(annotation.args) == 1
            ), f"Cannot get_factory {source}: type requires exactly one argument"
            inner = FactoryAnnotation.from_annotation(annotation.args[0])
            assert not inner.label, f"Cannot get_factory {source}: type has embedded Labeled"
            assert (
                not inner.is_collection and not inner.is_type
            ), f"Cannot get_factory {source}: type factories must be of concrete types"
            return dataclasses.replace(inner, is_type=True)

        assert (
            annotation.origin is None
        ), f"Cannot get_factory {source}, only concrete types, type annotations, or lists of concrete types are supported"
        return FactoryAnnotation(
            concrete_type=annotation.source, is_collection=False, is_type=False, label=""
        )

    @classmethod
    def from_factory(cls, c: Callable) -> "FactoryAnnotation":
        argspec = inspect.getfullargspec(c)
        num_arg_defaults = len(argspec.defaults) if argspec.defaults is not None else 0
        num_kwd_defaults = len(argspec.kwonlydefaults) if argspec.kwonlydefaults is not None else 0

        # A class provides itself; its __init__ carries the implicit self.
        if inspect.isclass(c):
            num_arg_defaults += 1
            rv = c
        else:
            rv = argspec.annotations.get("return", None)
            assert rv is not None, "Cannot register a provider without a return annotation"

        assert num_arg_defaults >= len(
            argspec.args
        ), "Cannot register a provider with required positional args"
        assert num_kwd_defaults >= len(
            argspec.kwonlyargs
        ), "Cannot register a provider with required keyword args"
        return FactoryAnnotation.from_annotation(rv)


class FactoryNotFound(Exception):
    pass


@dataclasses.dataclass
class Module:
    registry: dict[FactoryAnnotation, Callable] = dataclasses.field(default_factory=dict)

    def provider(self, c: _C) -> _C:
        c = inject(c)

        key = FactoryAnnotation.from_factory(c)
        assert (
            key not in self.registry
        ), f"{key.concrete_type} is already registered for this module"
        self.registry[key] = c
        return c

    def constant(self, annotation: type[_A], val: _A) -> _A:
        key = FactoryAnnotation.from_annotation(annotation)
        self.registry[key] = lambda: val
        return val

    def enable(self) -> "Injector":
        with _state.lock:
            injector = Injector(self, _state.injector)
            _state.injector = injector
        return injector

    def __enter__(self):
        return self.enable()

    def __exit__(self, exc_type, exc_val, exc_tb):
        with _state.lock:
            assert _state.injector, "Injector state was tampered with, or __exit__ invoked prematurely"
            assert (
                _state.injector.module is self
            ), "Injector state was tampered with, or __exit__ invoked prematurely"
            _state.injector = _state.injector.parent


class _Injected:
    """
    Sentinel default marking a parameter to be filled from the active injector when the caller
    does not pass it explicitly.
    """

    pass


# Typed as Any so it can stand in for any annotation.
injected: Any = _Injected()


def _field_annotation(field: FieldInfo) -> Any:
    labels = [m for m in field.metadata if isinstance(m, Labeled)]
    if labels:
        return Annotated[field.annotation, labels[0]]
    return field.annotation


def inject(c: _A) -> _A:
    original_type = c
    model_injections: dict[str, Any] = {}
    if inspect.isclass(c):
        # pydantic models take keyword-only **data, so their injected defaults live on the fields
        if issubclass(c, BaseModel):
            model_injections = {
                name: _field_annotation(field)
                for name, field in c.model_fields.items()
                if field.default is injected
            }
        c = c.__init__

    argspec = inspect.getfullargspec(c)

    @functools.wraps(c)  # type: ignore
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        new_kwds = {**kwargs}

        for name, annotation in model_injections.items():
            if name not in new_kwds:
                new_kwds[name] = resolve(annotation)

        if argspec.defaults:
            offset = len(argspec.args) - len(argspec.defaults)
            for i, d in enumerate(argspec.defaults):
                arg_idx = offset + i
                arg_name = argspec.args[arg_idx]

                if d is injected and len(args) <= arg_idx and arg_name not in new_kwds:
                    try:
                        new_kwds[arg_name] = resolve(argspec.annotations[arg_name])
                    except KeyError:
                        raise AssertionError(
                            f"Cannot inject argument {arg_name} as it lacks annotations"
                        )

        if argspec.kwonlydefaults:
            for k, v in argspec.kwonlydefaults.items():
                if v is injected and k not in new_kwds:
                    try:
                        new_kwds[k] = resolve(argspec.annotations[k])
                    except KeyError:
                        raise AssertionError(f"Cannot inject argument {k} as it lacks annotations")

        return c(*args, **new_kwds)  # type: ignore

    if inspect.isclass(original_type):
        return type(original_type.__name__, (original_type,), dict(__init__=wrapper))  # type: ignore

    return wrapper  # type: ignore


def resolve(source: type[_A]) -> _A:
    injector = _state.injector
    if injector is None:
        raise FactoryNotFound(f"Cannot resolve '{source}', no module injector is currently active.")

    key = FactoryAnnotation.from_annotation(source)
    seen = _state.seen()

    try:
        if key in seen:
            raise FactoryNotFound(
                f"Circular dependency: {' -> '.join(str(k) for k in seen)} -> {key}"
            )
        seen.append(key)
        return injector.get(source)
    finally:
        seen.clear()


@dataclasses.dataclass
class Injector:
    module: Module
    parent: "Injector | None"
    _cache: dict[FactoryAnnotation, Any] = dataclasses.field(default_factory=dict)
    _lock: threading.RLock = dataclasses.field(default_factory=threading.RLock)

    @property
    def cache(self) -> dict[FactoryAnnotation, Any]:
        # Values are cached on the innermost active injector so that layering a test module
        # never leaks instances built against it into the base injector.
        if _state.injector is not None:
            return _state.injector._cache
        return self._cache

    def get(self, source: type[_A]) -> _A:
        key = FactoryAnnotation.from_annotation(source)
        with self._lock:
            cache = self.cache
            if key in cache:
                return cache[key]

            try:
                f = self.module.registry[key]
            except KeyError:
                if self.parent is not None:
                    return self.parent.get(source)
                raise FactoryNotFound(f"No registered factory for {source}")

            rv = cache[key] = f()
            return rv


class _State:
    def __init__(self):
        self.lock = threading.RLock()
        self.injector: Injector | None = None
        self._local = threading.local()

    def seen(self) -> list[FactoryAnnotation]:
        if not hasattr(self._local, "seen"):
            self._local.seen = []
        return self._local.seen


_state = _State()
