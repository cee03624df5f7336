"""
Unit tests for the item-publisher CLI.
"""

import json
import sys

import pytest
from loguru import logger
from typer.testing import CliRunner

from item_publisher.cli import app
from item_publisher.config import get_settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    for var in ("ITEM_PUBLISHER_SQS_QUEUE_URL", "ITEM_PUBLISHER_AUDIT_DATABASE_URL"):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    # the CLI binds a sink to the runner-captured stderr; restore the default one
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def items_file(tmp_path, sample_item_rows):
    path = tmp_path / "items.ndjson"
    path.write_text("\n".join(json.dumps(r) for r in sample_item_rows) + "\n\n", encoding="utf-8")
    return path


def test_publish_dry_run(items_file):
    result = runner.invoke(
        app, ["publish", str(items_file), "--dry-run", "--trace-id", "cli-1", "--log-level", "ERROR"]
    )

    assert result.exit_code == 0, result.output
    assert '"success": true' in result.output
    assert '"total": 2' in result.output
    assert '"trace_id": "cli-1"' in result.output


def test_publish_requires_queue_url_without_dry_run(items_file):
    result = runner.invoke(app, ["publish", str(items_file), "--log-level", "ERROR"])
    assert result.exit_code != 0


def test_publish_rejects_bad_json(tmp_path):
    bad = tmp_path / "bad.ndjson"
    bad.write_text('{"Sku": "1"}\n{not json\n', encoding="utf-8")

    result = runner.invoke(app, ["publish", str(bad), "--dry-run", "--log-level", "ERROR"])
    assert result.exit_code == 2


def test_config_prints_settings(monkeypatch):
    monkeypatch.setenv("ITEM_PUBLISHER_MAX_RETRIES", "4")
    result = runner.invoke(app, ["config"])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["MAX_RETRIES"] == 4
