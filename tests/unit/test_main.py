"""
Unit tests for the server entry point helpers.
"""

import logging

import json_log_formatter
import pytest

from schemabridge.config import ObservabilityConfig, ServerConfig
from schemabridge.conversion.registry import get_registry, reset_registry
from schemabridge.main import load_conversions, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self, restore_logging):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_level="DEBUG")))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("uvicorn.access").level == logging.WARNING

    def test_text_format(self, restore_logging):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_format="text")))

        formatter = logging.getLogger().handlers[0].formatter
        assert not isinstance(formatter, json_log_formatter.JSONFormatter)


class TestLoadConversions:
    """Tests for load_conversions."""

    def setup_method(self):
        reset_registry()

    def teardown_method(self):
        reset_registry()

    def test_without_module_returns_global_registry(self):
        assert load_conversions(None) is get_registry()

    def test_imports_module(self, tmp_path, monkeypatch):
        (tmp_path / "widget_conversions.py").write_text(
            "from schemabridge.conversion.registry import get_registry\n"
            "from schemabridge.versions.types import VersionSet, VersionSpec\n"
            "get_registry().register_kind('Widget', VersionSet([VersionSpec('v1', storage=True)]))\n"
        )
        monkeypatch.syspath_prepend(str(tmp_path))

        registry = load_conversions("widget_conversions")

        assert [r.kind for r in registry.kinds()] == ["Widget"]
