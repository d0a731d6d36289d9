import logging
import os

import pytest

from faultline.bootup import client_module
from faultline.configuration import configuration_test_module
from faultline.dependency_injection import Module, resolve
from faultline.registry import Registry, registry_module

logger = logging.getLogger(__name__)

# Fresh instances for every test: values are cached on the innermost active module.
test_isolation_module = Module()


@pytest.fixture(autouse=True)
def reset_environ():
    old_env = os.environ
    os.environ = dict(**old_env)
    try:
        yield
    finally:
        os.environ = old_env


@pytest.fixture(autouse=True)
def setup_faultline(reset_environ):
    import faultline

    with registry_module, client_module, configuration_test_module, test_isolation_module:
        try:
            yield
        finally:
            faultline._client = None
            resolve(Registry).clear()


@pytest.fixture
def registry() -> Registry:
    return resolve(Registry)
