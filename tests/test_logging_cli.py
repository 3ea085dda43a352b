"""Tests for kiln.logging and the kiln command line."""
from __future__ import annotations

import logging

import pytest

from kiln import cli
from kiln import config as kiln_config
from kiln import logging as kiln_logging
from kiln.errors import ConfigError
from kiln.logging import JSONLineFormatter, KilnAdapter, get_logger, get_metrics, parse_size


class TestLogging:

    @pytest.mark.parametrize(
        "value, expected",
        [("10M", 10 * 1024 ** 2), ("512K", 512 * 1024), ("1GB", 1024 ** 3), (2048, 2048), ("junk", None), (None, None)],
    )
    def test_parse_size(self, value, expected):
        assert parse_size(value) == expected

    def test_adapter_injects_module(self):
        adapter = get_logger("unit")
        assert adapter.extra == {"kiln_module": "unit"}
        assert adapter.logger.name == "kiln"

    def test_metrics_count_levels(self):
        before = get_metrics()["WARNING"]
        get_logger("unit").warning("counted")
        assert get_metrics()["WARNING"] == before + 1

    def test_jsonl_formatter(self):
        record = logging.LogRecord("kiln", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.kiln_module = "unit"
        line = JSONLineFormatter().format(record)
        assert '"message": "hello world"' in line
        assert '"module": "unit"' in line

    def test_get_logger_reads_no_config(self, monkeypatch):
        calls = []
        monkeypatch.setattr(kiln_logging, "get_config", lambda: calls.append(1))
        adapter = get_logger("lazy")
        assert isinstance(adapter, KilnAdapter)
        assert calls == []

    def test_unloadable_config_uses_defaults(self, monkeypatch):
        def broken():
            raise ConfigError("kiln.yaml: mapping values are not allowed here")

        monkeypatch.setattr(kiln_logging, "get_config", broken)
        assert kiln_logging._logging_section() == dict(kiln_config.DEFAULTS["logging"])


class TestCli:

    @pytest.fixture(autouse=True)
    def _reset(self):
        yield
        kiln_config._CONFIG = None

    def test_no_command(self):
        assert cli.main([]) == 2

    def test_missing_recipe_is_fatal(self, tmp_path):
        assert cli.main(["build", str(tmp_path / "missing.yml")]) == 2

    def test_bad_config_is_fatal(self, tmp_path):
        assert cli.main(["-c", str(tmp_path / "nope.yaml"), "build", "stone.yml"]) == 2
