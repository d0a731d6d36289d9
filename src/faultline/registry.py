import logging
import threading
from typing import Any, Optional

from faultline.adapters import ADAPTER_TYPES
from faultline.adapters.base import Adapter
from faultline.dependency_injection import Module
from faultline.errors import AdapterNotFoundError, DuplicateAdapterError

logger = logging.getLogger(__name__)

registry_module = Module()


class Registry:
    """
    The named adapters events are routed to, in registration order.  Every operation holds the
    registry lock, so adapters can be added or removed while events are being dispatched.
    """

    def __init__(self):
        self._adapters: dict[str, Adapter] = {}
        self._lock = threading.RLock()

    def register(self, adapter: Adapter) -> Adapter:
        with self._lock:
            if adapter.name in self._adapters:
                raise DuplicateAdapterError(f"Adapter '{adapter.name}' is already registered")
            self._adapters[adapter.name] = adapter
        logger.debug(f"Registered adapter {adapter!r}")
        return adapter

    def register_type(self, name: str, adapter_type: type[Adapter], **settings: Any) -> Adapter:
        with self._lock:
            if name in self._adapters:
                raise DuplicateAdapterError(f"Adapter '{name}' is already registered")
            return self.register(adapter_type(name=name, **settings))

    def register_from_config(self, name: str, type_key: str, settings: Optional[dict[str, Any]] = None) -> Adapter:
        try:
            adapter_type = ADAPTER_TYPES[type_key]
        except KeyError:
            raise AdapterNotFoundError(
                f"Unknown adapter type '{type_key}' for '{name}', "
                f"expected one of {', '.join(sorted(ADAPTER_TYPES))}"
            )
        return self.register_type(name, adapter_type, **(settings or {}))

    def unregister(self, name: str) -> Optional[Adapter]:
        with self._lock:
            adapter = self._adapters.pop(name, None)
        if adapter is not None:
            _shutdown(adapter)
        return adapter

    def get(self, name: str) -> Optional[Adapter]:
        with self._lock:
            return self._adapters.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._adapters)

    def all(self) -> list[Adapter]:
        with self._lock:
            return list(self._adapters.values())

    def active(self) -> list[Adapter]:
        with self._lock:
            return [adapter for adapter in self._adapters.values() if adapter.enabled]

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return name in self._adapters

    def clear(self) -> None:
        with self._lock:
            adapters = list(self._adapters.values())
            self._adapters.clear()
        for adapter in adapters:
            _shutdown(adapter)

    def __len__(self) -> int:
        with self._lock:
            return len(self._adapters)


def _shutdown(adapter: Adapter) -> None:
    try:
        adapter.shutdown()
    except Exception:
        logger.exception(f"Failed to shut down adapter {adapter.name}")


@registry_module.provider
def provide_registry() -> Registry:
    return Registry()


registry_module.enable()
