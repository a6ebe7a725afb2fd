"""Tests for logging setup."""

import logging
import uuid
from unittest.mock import MagicMock

import pytest

from accessgraph.common.logger import (
    TenantContextFilter,
    configure_from_settings,
    get_logger,
    log_context,
    setup_logger,
)
from accessgraph.core.cache import ResolutionCache
from accessgraph.core.config import Settings
from accessgraph.core.rbac import PermissionService

from tests.factories import TENANT


@pytest.fixture
def logger_name():
    name = f"accessgraph-test-{uuid.uuid4().hex[:8]}"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


class TestSetupLogger:

    def test_console_only(self, logger_name, tmp_path):
        logger = setup_logger(logger_name, log_dir=str(tmp_path), file_logging=False)
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1
        assert not list(tmp_path.iterdir())

    def test_file_logging_writes_rotating_file(self, logger_name, tmp_path):
        logger = setup_logger(logger_name, log_dir=str(tmp_path / "logs"), console_logging=False)
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert "hello" in (tmp_path / "logs" / f"{logger_name}.log").read_text()

    def test_no_duplicate_handlers(self, logger_name, tmp_path):
        setup_logger(logger_name, log_dir=str(tmp_path), file_logging=False)
        logger = setup_logger(logger_name, log_dir=str(tmp_path), file_logging=False, level="debug")
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG

    def test_invalid_level(self, logger_name):
        with pytest.raises(ValueError):
            setup_logger(logger_name, level="VERBOSE", file_logging=False)

    def test_get_logger(self, logger_name):
        assert get_logger(logger_name) is logging.getLogger(logger_name)


class TestConfigureFromSettings:

    def test_uses_package_logger(self, tmp_path):
        settings = Settings(_env_file=None, log_level="WARNING", log_dir=str(tmp_path), file_logging=False)
        logger = configure_from_settings(settings)
        try:
            assert logger.name == "accessgraph"
            assert logger.level == logging.WARNING
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)


@pytest.fixture
def package_logger(tmp_path):
    logger = setup_logger(
        "accessgraph", log_dir=str(tmp_path), level="DEBUG", console_logging=False
    )
    yield logger
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


def _read_log(logger, path):
    for handler in logger.handlers:
        handler.flush()
    return path.read_text()


def _record():
    return logging.LogRecord("accessgraph.test", logging.INFO, __file__, 1, "message", None, None)


class TestLogContext:

    def test_records_carry_tenant_and_subject(self, logger_name, tmp_path):
        logger = setup_logger(logger_name, log_dir=str(tmp_path), console_logging=False)
        with log_context("acme", "user:alice"):
            logger.info("resolving")
        logger.info("outside")
        text = _read_log(logger, tmp_path / f"{logger_name}.log")
        assert "[tenant=acme user:alice] resolving" in text
        assert "[tenant=- -] outside" in text

    def test_nested_contexts_restore(self):
        context_filter = TenantContextFilter()
        with log_context("t1"):
            with log_context(subject="role:agent"):
                record = _record()
                context_filter.filter(record)
                assert (record.tenant_id, record.subject) == ("t1", "role:agent")
            record = _record()
            context_filter.filter(record)
            assert (record.tenant_id, record.subject) == ("t1", "-")

    def test_resolution_records_are_tagged(self, package_logger, service, tmp_path):
        service.effective_permissions("alice", TENANT)
        text = _read_log(package_logger, tmp_path / "accessgraph.log")
        assert f"[tenant={TENANT} user:alice] Resolved 2 permissions" in text

    def test_denials_are_tagged(self, package_logger, tmp_path, settings):
        store = MagicMock()
        store.get_user_role_ids.side_effect = ConnectionError("down")
        service = PermissionService(store, ResolutionCache(60), settings=settings, subscribe=False)
        try:
            assert not service.has_permission("bob", TENANT, "leads:read")
        finally:
            service.close()
        text = _read_log(package_logger, tmp_path / "accessgraph.log")
        assert f"[tenant={TENANT} user:bob] Permission resolution failed for user:bob; denying" in text
