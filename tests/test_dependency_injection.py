import dataclasses
import threading
from typing import Annotated, Any, Mapping

import pytest
from pydantic import BaseModel

from faultline.configuration import FaultlineConfig
from faultline.dependency_injection import (
    FactoryAnnotation,
    FactoryNotFound,
    Labeled,
    Module,
    inject,
    injected,
    resolve,
)
from faultline.registry import Registry


def test_FactoryAnnotation_from_annotation() -> None:
    assert FactoryAnnotation.from_annotation(str) == FactoryAnnotation(
        concrete_type=str, is_collection=False, label="", is_type=False
    )
    assert FactoryAnnotation.from_annotation(
        Annotated[str, "doc", Labeled("endpoint"), Labeled("ignored")]
    ) == FactoryAnnotation(concrete_type=str, is_collection=False, label="endpoint", is_type=False)
    assert FactoryAnnotation.from_annotation(
        Annotated[list[str], Labeled("endpoints")]
    ) == FactoryAnnotation(concrete_type=str, is_collection=True, label="endpoints", is_type=False)
    assert FactoryAnnotation.from_annotation(type[Registry]) == FactoryAnnotation(
        concrete_type=Registry, is_collection=False, label="", is_type=True
    )
    assert FactoryAnnotation.from_annotation(list[type[Registry]]) == FactoryAnnotation(
        concrete_type=Registry, is_collection=True, label="", is_type=True
    )

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_annotation(Mapping[str, int])

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_annotation(list[list[str]])

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_annotation(list)


def test_FactoryAnnotation_from_factory() -> None:
    def no_return_annotation():
        pass

    def required_keyword(*, url: str) -> str:
        return url

    def required_positional(url: str) -> str:
        return url

    def all_defaulted(url: str = "http://localhost", *, timeout: float = 1.0) -> str:
        return url

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_factory(no_return_annotation)

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_factory(required_positional)

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_factory(required_keyword)

    assert FactoryAnnotation.from_factory(all_defaulted) == FactoryAnnotation.from_annotation(str)


class EndpointSettings(dict[str, str]):
    pass


def test_injections():
    module = Module()
    stand_in: Any = object()

    @module.provider
    @dataclasses.dataclass
    class Transport:
        url: Annotated[str, Labeled("webhook_url")] = injected

    @module.provider
    class Notifier(BaseModel):
        transport: Transport = injected
        channel: Annotated[str, Labeled("channel")] = injected

    @module.provider
    def webhook_url(
        settings: list[EndpointSettings] = injected,
    ) -> Annotated[str, Labeled("webhook_url")]:
        for s in settings:
            if "url" in s:
                return s["url"]
        raise ValueError("No url configured")

    @module.provider
    def channel(settings: list[EndpointSettings] = injected) -> Annotated[str, Labeled("channel")]:
        for s in settings:
            if "channel" in s:
                return s["channel"]
        raise ValueError("No channel configured")

    @module.provider
    def endpoint_settings() -> list[EndpointSettings]:
        return [EndpointSettings(channel="#errors"), EndpointSettings(url="http://hooks.local")]

    @inject
    def notify(urgent: bool, notifier: Notifier = injected) -> Notifier:
        return notifier

    with module:
        existing = resolve(Notifier)
        assert existing.transport.url == "http://hooks.local"
        assert existing.channel == "#errors"

        assert notify(True) is existing
        assert existing is resolve(Notifier)
        assert type(existing) is Notifier

        override = Module()
        override.constant(Notifier, stand_in)

        with override as injector:
            assert resolve(Notifier) is stand_in
            # Instances are cached on the innermost module
            assert resolve(Transport) is not existing.transport
            assert resolve(Transport) == existing.transport
            assert injector.get(Transport) is resolve(Transport)

        assert resolve(Notifier) is existing


def test_pydantic_model_fields_are_injected():
    module = Module()
    module.constant(FaultlineConfig, FaultlineConfig(environment="injected-env"))
    module.constant(Annotated[str, Labeled("region")], "eu-west")

    @inject
    class Deployment(BaseModel):
        config: FaultlineConfig = injected
        region: Annotated[str, Labeled("region")] = injected
        replicas: int = 1

    with module:
        deployment = Deployment()
        assert deployment.config.environment == "injected-env"
        assert deployment.region == "eu-west"
        assert deployment.replicas == 1

        explicit = FaultlineConfig(environment="explicit")
        assert Deployment(config=explicit, region="us").config.environment == "explicit"


def test_missing_factory():
    class Unprovided:
        pass

    with Module():
        with pytest.raises(FactoryNotFound):
            resolve(Unprovided)


def test_injector_is_shared_with_worker_threads():
    main_registry = resolve(Registry)
    seen: list[Registry] = []

    worker = threading.Thread(target=lambda: seen.append(resolve(Registry)))
    worker.start()
    worker.join()

    assert seen == [main_registry]


def test_test_configuration_is_active():
    config = resolve(FaultlineConfig)
    assert config.environment == "test"
    assert config.async_dispatch is False
