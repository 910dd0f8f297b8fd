"""
Tests for the command line interface.
"""

import json
import logging

import pytest
from click.testing import CliRunner

from cachewatch import __version__
from cachewatch.cli import cli


@pytest.fixture
def env(monkeypatch, tmp_path):
    for name in ("CACHEWATCH_API_KEY", "VENICE_API_KEY", "DATA_DIR", "LOGS_DIR"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    yield tmp_path
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def invoke(env, *args, **environ):
    env_file = str(env / "none.env")
    return CliRunner().invoke(cli, ["--env-file", env_file, *args], env=environ, obj={})


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_missing_api_key_exits_1(env):
    result = invoke(env, "report")
    assert result.exit_code == 1


def test_report_on_empty_store(env):
    result = invoke(env, "report", CACHEWATCH_API_KEY="k", DATA_DIR=str(env / "data"),
                    LOGS_DIR=str(env / "logs"))
    assert result.exit_code == 0, result.output


def test_report_reads_stored_rows(env):
    data_dir = env / "data"
    data_dir.mkdir()
    row = {"model_id": "a", "display_name": "Model A", "probe_name": "basic", "success": True,
           "caching_observed": True, "cache_hit_rate": 80.0, "timestamp": "2026-10-01T10:00:00"}
    (data_dir / "results.jsonl").write_text(json.dumps(row) + "\n")

    result = invoke(env, "report", "--model", "a", CACHEWATCH_API_KEY="k", DATA_DIR=str(data_dir),
                    LOGS_DIR=str(env / "logs"))
    assert result.exit_code == 0, result.output
