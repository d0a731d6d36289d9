"""
Per execution context state attached to every captured event.

Each thread and each asyncio task works against its own `Scope`.  `ScopeManager.with_scope`
layers temporary overrides on top of it through a `MergedScope`, which merges lazily and never
copies or mutates the scope underneath.
"""

import asyncio
import contextlib
import contextvars
import itertools
import threading
from collections import deque
from typing import Any, Iterator, Mapping, Optional, Union

from faultline.breadcrumbs import MAX_BREADCRUMBS, Breadcrumb, build_breadcrumb, normalize_breadcrumb

_manager_ids = itertools.count()


class Scope:
    def __init__(self):
        self.tags: dict[str, Any] = {}
        self.user: dict[str, Any] = {}
        self.extra: dict[str, Any] = {}
        self.breadcrumbs: deque[Breadcrumb] = deque(maxlen=MAX_BREADCRUMBS)
        self.transaction_name: Optional[str] = None
        self.transaction_source: Optional[str] = None

    def add_breadcrumb(self, message: Any, type: str = "default", **metadata: Any) -> Breadcrumb:
        crumb = build_breadcrumb(message, type=type, metadata=metadata)
        self.breadcrumbs.append(crumb)
        return crumb

    def apply_context(self, context: Mapping[str, Any]) -> None:
        self.tags.update(context.get("tags") or {})
        self.user.update(context.get("user") or {})
        self.extra.update(context.get("extra") or {})
        for crumb in context.get("breadcrumbs") or []:
            self.breadcrumbs.append(normalize_breadcrumb(crumb))

    def set_tag(self, key: str, value: Any) -> None:
        self.tags[key] = value

    def set_tags(self, tags: Mapping[str, Any]) -> None:
        self.tags.update(tags)

    def set_user(self, user: Mapping[str, Any]) -> None:
        self.user.update(user)

    def set_extra(self, key: str, value: Any) -> None:
        self.extra[key] = value

    def set_extras(self, extras: Mapping[str, Any]) -> None:
        self.extra.update(extras)

    set_context = set_extra

    def set_transaction_name(self, name: Optional[str], source: Optional[str] = None) -> None:
        self.transaction_name = name
        self.transaction_source = source

    def clear(self) -> None:
        self.tags.clear()
        self.user.clear()
        self.extra.clear()
        self.breadcrumbs.clear()
        self.transaction_name = None
        self.transaction_source = None


AnyScope = Union[Scope, "MergedScope"]


class MergedScope:
    """
    A read-only view of `base` with `layers` applied in order.  Merged mappings are computed on
    first read and memoized; appending a breadcrumb here only drops the memoized breadcrumbs.
    """

    def __init__(self, layers: list[Mapping[str, Any]], base: Optional[AnyScope] = None):
        self.layers = [layer or {} for layer in layers]
        self.base: AnyScope = base if base is not None else Scope()
        self._own_breadcrumbs: deque[Breadcrumb] = deque(maxlen=MAX_BREADCRUMBS)
        self._transaction_name: Optional[str] = None
        self._transaction_source: Optional[str] = None
        self._memo: dict[str, Any] = {}

    @property
    def tags(self) -> dict[str, Any]:
        return self._memoized("tags", lambda: self._merge_mapping("tags"))

    @property
    def user(self) -> dict[str, Any]:
        return self._memoized("user", lambda: self._merge_mapping("user"))

    @property
    def extra(self) -> dict[str, Any]:
        return self._memoized("extra", lambda: self._merge_mapping("extra"))

    @property
    def breadcrumbs(self) -> list[Breadcrumb]:
        return self._memoized("breadcrumbs", self._merge_breadcrumbs)

    @property
    def transaction_name(self) -> Optional[str]:
        if self._transaction_name is not None:
            return self._transaction_name
        for layer in reversed(self.layers):
            if layer.get("transaction_name"):
                return layer["transaction_name"]
        return self.base.transaction_name

    @property
    def transaction_source(self) -> Optional[str]:
        if self._transaction_source is not None:
            return self._transaction_source
        for layer in reversed(self.layers):
            if layer.get("transaction_source"):
                return layer["transaction_source"]
        return self.base.transaction_source

    def set_transaction_name(self, name: Optional[str], source: Optional[str] = None) -> None:
        self._transaction_name = name
        self._transaction_source = source

    def add_breadcrumb(self, message: Any, type: str = "default", **metadata: Any) -> Breadcrumb:
        crumb = build_breadcrumb(message, type=type, metadata=metadata)
        self._own_breadcrumbs.append(crumb)
        self._memo.pop("breadcrumbs", None)
        return crumb

    def _memoized(self, key: str, compute):
        if key not in self._memo:
            self._memo[key] = compute()
        return self._memo[key]

    def _merge_mapping(self, key: str) -> dict[str, Any]:
        result = dict(getattr(self.base, key))
        for layer in self.layers:
            result.update(layer.get(key) or {})
        return result

    def _merge_breadcrumbs(self) -> list[Breadcrumb]:
        result = list(self.base.breadcrumbs)
        for layer in self.layers:
            result.extend(normalize_breadcrumb(crumb) for crumb in layer.get("breadcrumbs") or [])
        result.extend(self._own_breadcrumbs)
        return result[-MAX_BREADCRUMBS:]


def _current_owner() -> tuple[int, Any]:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    return threading.get_ident(), task


class ScopeManager:
    """
    Tracks the active scope of every thread and asyncio task.

    Values of the underlying context variable are tagged with the thread and task that created
    them.  A task inherits a copy of its parent's context, so when the tag does not match the
    caller a fresh Scope is handed out instead of the parent's.
    """

    def __init__(self):
        self._current: contextvars.ContextVar[Optional[tuple[tuple[int, Any], AnyScope]]] = (
            contextvars.ContextVar(f"faultline_scope_{next(_manager_ids)}", default=None)
        )

    def current_scope(self) -> AnyScope:
        owner = _current_owner()
        value = self._current.get()
        if value is not None and value[0] == owner:
            return value[1]

        scope = Scope()
        self._current.set((owner, scope))
        return scope

    @contextlib.contextmanager
    def with_scope(self, overrides: Optional[Mapping[str, Any]] = None) -> Iterator[MergedScope]:
        merged = MergedScope([overrides or {}], self.current_scope())
        token = self._current.set((_current_owner(), merged))
        try:
            yield merged
        finally:
            self._current.reset(token)

    @contextlib.contextmanager
    def isolated_scope(self) -> Iterator[Scope]:
        scope = Scope()
        token = self._current.set((_current_owner(), scope))
        try:
            yield scope
        finally:
            self._current.reset(token)

    def clear_scope(self) -> Scope:
        scope = Scope()
        self._current.set((_current_owner(), scope))
        return scope

    def add_breadcrumb(self, message: Any, type: str = "default", **metadata: Any) -> Breadcrumb:
        return self.current_scope().add_breadcrumb(message, type=type, **metadata)
