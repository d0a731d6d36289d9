import logging
import unittest

import pytest

from faultline.adapters import DummyAdapter, LoggerAdapter
from faultline.bootup import bootup
from faultline.configuration import FaultlineConfig
from faultline.errors import AdapterNotFoundError, DuplicateAdapterError
from faultline.logging import SubstringFilter, setup_logger, setup_logging
from faultline.registry import Registry


class TestBootup(unittest.TestCase):
    def setUp(self):
        self.registry = Registry()

    def test_registers_configured_and_direct_adapters(self):
        config = FaultlineConfig(async_dispatch=False)
        config.use_logger("audit")
        direct = DummyAdapter(name="memory")

        client = bootup(adapters=[direct], config=config, registry=self.registry)

        assert client.registry is self.registry
        assert self.registry.names() == ["audit", "memory"]
        assert isinstance(self.registry.get("audit"), LoggerAdapter)

    def test_already_registered_definitions_are_kept(self):
        existing = self.registry.register(DummyAdapter(name="audit"))
        config = FaultlineConfig()
        config.use_logger("audit")

        bootup(config=config, registry=self.registry)

        assert self.registry.get("audit") is existing

    def test_setup_errors_raise(self):
        config = FaultlineConfig()
        config.register_adapter("pager", "carrier_pigeon")
        with pytest.raises(AdapterNotFoundError):
            bootup(config=config, registry=self.registry)

        with pytest.raises(DuplicateAdapterError):
            bootup(
                adapters=[DummyAdapter(name="twin"), DummyAdapter(name="twin")],
                config=FaultlineConfig(),
                registry=Registry(),
            )

    def test_debug_sets_package_log_level(self):
        bootup(config=FaultlineConfig(debug=True), registry=self.registry)
        assert logging.getLogger("faultline").level == logging.DEBUG

        bootup(config=FaultlineConfig(debug=False), registry=Registry())
        assert logging.getLogger("faultline").level == logging.INFO


class TestLogging(unittest.TestCase):
    def test_substring_filter(self):
        log_filter = SubstringFilter(["Starting new HTTPS connection"])
        noisy = logging.makeLogRecord({"msg": "Starting new HTTPS connection (1): example.com"})
        useful = logging.makeLogRecord({"msg": "delivery failed"})

        assert not log_filter.filter(noisy)
        assert log_filter.filter(useful)

    def test_setup_logger_does_not_stack_filters(self):
        log = logging.getLogger("faultline.tests.setup")
        setup_logger(log)
        setup_logger(log, debug=True)

        assert len([f for f in log.filters if isinstance(f, SubstringFilter)]) == 1
        assert log.level == logging.DEBUG

    def test_setup_logging_adds_a_single_null_handler(self):
        setup_logging()
        setup_logging()

        handlers = logging.getLogger("faultline").handlers
        assert len([h for h in handlers if isinstance(h, logging.NullHandler)]) == 1
