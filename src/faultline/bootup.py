import logging
from typing import Optional

from faultline.adapters.base import Adapter
from faultline.client import Client
from faultline.configuration import FaultlineConfig
from faultline.dependency_injection import Module, inject, injected
from faultline.logging import setup_logging
from faultline.registry import Registry

logger = logging.getLogger(__name__)

client_module = Module()


@inject
def bootup(
    *,
    adapters: Optional[list[Adapter]] = None,
    config: FaultlineConfig = injected,
    registry: Registry = injected,
) -> Client:
    """
    Validates the configuration, registers the configured adapters (plus any passed in directly)
    and returns a Client bound to them.  Unknown adapter types and duplicate names raise here,
    at configuration time, rather than when the first event is captured.
    """
    setup_logging(config.debug)
    config.do_validation()

    for name, definition in config.adapters.items():
        if registry.is_registered(name):
            continue
        registry.register_from_config(name, definition.type, definition.settings)

    for adapter in adapters or []:
        registry.register(adapter)

    logger.debug(f"faultline booted with adapters: {', '.join(registry.names()) or 'none'}")
    return Client(config=config, registry=registry)


@client_module.provider
def provide_client() -> Client:
    return bootup()


client_module.enable()
