"""Tests for configuration and logging setup."""

import io
import logging
import ssl

import pytest
from yowlink.config import ConnectionConfig, Endpoint
from yowlink.log import configure_logging


class TestConnectionConfig:
    """Test connection configuration."""

    def test_defaults(self) -> None:
        config = ConnectionConfig()

        assert config.connect_timeout == 30.0
        assert config.heartbeat_interval == 30.0
        assert config.base_delay == 1.0
        assert config.max_attempts == 5
        assert config.max_frame_size == 16 * 1024 * 1024
        assert not config.verify_certificates

    def test_reconnect_delays_double(self) -> None:
        config = ConnectionConfig()
        assert [config.reconnect_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_custom_base_delay(self) -> None:
        config = ConnectionConfig(base_delay=0.5)
        assert config.reconnect_delay(3) == 2.0

    def test_local(self) -> None:
        assert ConnectionConfig.local(6000).endpoints == [Endpoint("127.0.0.1", 6000)]

    def test_endpoint_order(self) -> None:
        """Primary comes first, fallbacks follow in order."""
        config = ConnectionConfig.from_addresses([("a.example.org", 5222)]).with_endpoint("b.example.org", 443)

        assert [str(e) for e in config.endpoints] == ["a.example.org:5222", "b.example.org:443"]

    def test_with_endpoint_does_not_mutate(self) -> None:
        config = ConnectionConfig.local()
        config.with_endpoint("backup", 5222)
        assert len(config.endpoints) == 1

    def test_permissive_tls_by_default(self) -> None:
        context = ConnectionConfig().ssl_context()
        assert context.verify_mode == ssl.CERT_NONE
        assert not context.check_hostname

    def test_strict_tls(self) -> None:
        context = ConnectionConfig().with_strict_tls().ssl_context()
        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname


class TestConfigureLogging:
    """Test logging setup."""

    @pytest.fixture(autouse=True)
    def restore_logger(self):
        logger = logging.getLogger("yowlink")
        handlers, level = list(logger.handlers), logger.level
        yield
        logger.handlers = handlers
        logger.setLevel(level)

    def test_writes_package_records(self) -> None:
        stream = io.StringIO()
        configure_logging("debug", stream=stream)

        logging.getLogger("yowlink.connection").debug("hello from connection")

        line = stream.getvalue()
        assert "DEBUG" in line
        assert "[yowlink.connection]" in line
        assert "hello from connection" in line

    def test_level_filters(self) -> None:
        stream = io.StringIO()
        configure_logging("warn", stream=stream)

        logging.getLogger("yowlink.router").info("quiet")
        logging.getLogger("yowlink.router").warning("loud")

        assert "quiet" not in stream.getvalue()
        assert "loud" in stream.getvalue()

    def test_handler_added_once(self) -> None:
        logger = configure_logging("info", stream=io.StringIO())
        count = len(logger.handlers)

        configure_logging("error")

        assert len(logger.handlers) == count
        assert logger.level == logging.ERROR

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError):
            configure_logging("verbose")
