from faultline.adapters.base import Adapter, Capabilities
from faultline.adapters.dummy import DummyAdapter
from faultline.adapters.logger import LoggerAdapter
from faultline.adapters.sentry import SentryAdapter
from faultline.adapters.webhook import WebhookAdapter

ADAPTER_TYPES: dict[str, type[Adapter]] = {
    "logger": LoggerAdapter,
    "webhook": WebhookAdapter,
    "sentry": SentryAdapter,
    "dummy": DummyAdapter,
}

__all__ = [
    "ADAPTER_TYPES",
    "Adapter",
    "Capabilities",
    "DummyAdapter",
    "LoggerAdapter",
    "SentryAdapter",
    "WebhookAdapter",
]
