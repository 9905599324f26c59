"""
Unit tests for the administrative CLI.

Commands run against an in-memory Redis server shared between invocations
through the ``client_factory`` context hook.
"""

import json
import logging
import time

import fakeredis
import pytest
from click.testing import CliRunner
from rich.console import Console
from storyguard import cli as cli_module
from storyguard.cli import cli

from tests.helpers.fakes import BrokenRedis

ARTICLES = [
    {
        "title": "SEC fines exchange",
        "description": "Regulator fines Binance exchange millions",
        "url": "https://www.coindesk.com/policy/sec-fines-binance",
        "source": "CoinDesk",
        "publishedAt": "2024-05-01T12:00:00Z",
    },
    {
        "title": "Binance exchange fined by SEC",
        "description": "SEC regulator fines Binance exchange",
        "url": "https://decrypt.co/binance-fined-by-sec",
        "source": "Decrypt",
    },
    {
        "title": "Arbitrum rollup ships mainnet upgrade",
        "description": "The Layer-2 network activated its upgrade on mainnet.",
        "url": "https://theblock.co/arbitrum-mainnet-upgrade",
        "source": "TheBlock",
    },
]


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Run from an empty directory with a wide console so tables do not wrap."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli_module, "console", Console(width=200))
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def server():
    return fakeredis.FakeServer()


@pytest.fixture
def obj(server):
    return {"client_factory": lambda: fakeredis.FakeAsyncRedis(server=server, decode_responses=True)}


@pytest.fixture
def articles_file(tmp_path):
    path = tmp_path / "articles.json"
    path.write_text(json.dumps(ARTICLES), encoding="utf-8")
    return path


class TestEvaluateCommand:
    """Test the evaluate command."""

    def test_evaluate_and_commit(self, obj, articles_file):
        runner = CliRunner()

        result = runner.invoke(cli, ["evaluate", str(articles_file), "--commit"], obj=obj)

        assert result.exit_code == 0, result.output
        assert "Evaluated 3 articles" in result.output
        assert result.output.count("novel") == 2
        assert "duplicate_semantic" in result.output

        again = runner.invoke(cli, ["evaluate", str(articles_file)], obj=obj)

        assert again.exit_code == 0, again.output
        assert "novel" not in again.output
        assert again.output.count("duplicate_exact") == 2

    def test_evaluate_accepts_wrapped_records(self, obj, tmp_path):
        path = tmp_path / "wrapped.json"
        path.write_text(json.dumps({"articles": ARTICLES[:1]}), encoding="utf-8")

        result = CliRunner().invoke(cli, ["evaluate", str(path)], obj=obj)

        assert result.exit_code == 0, result.output
        assert "Evaluated 1 articles" in result.output

    def test_unreadable_articles_file(self, obj, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        result = CliRunner().invoke(cli, ["evaluate", str(path)], obj=obj)

        assert result.exit_code == 1
        assert "Cannot read articles" in result.output


class TestResetCommand:
    """Test the reset command."""

    def test_reset_scope(self, obj, server, articles_file):
        runner = CliRunner()
        runner.invoke(cli, ["evaluate", str(articles_file), "--commit"], obj=obj)

        result = runner.invoke(cli, ["reset", "--scope", "content", "--yes"], obj=obj)

        assert result.exit_code == 0, result.output
        assert "content" in result.output
        sync_client = fakeredis.FakeRedis(server=server, decode_responses=True)
        assert list(sync_client.scan_iter(match="content:*")) == []
        assert sync_client.exists("global:articles") == 1

    def test_reset_all(self, obj, server, articles_file):
        runner = CliRunner()
        runner.invoke(cli, ["evaluate", str(articles_file), "--commit"], obj=obj)

        result = runner.invoke(cli, ["reset", "--all", "--yes"], obj=obj)

        assert result.exit_code == 0, result.output
        assert fakeredis.FakeRedis(server=server).dbsize() == 0

    def test_reset_requires_scope(self, obj):
        result = CliRunner().invoke(cli, ["reset", "--yes"], obj=obj)
        assert result.exit_code == 2

    def test_reset_asks_for_confirmation(self, obj, server):
        fakeredis.FakeRedis(server=server).set("content:abc", "{}")

        result = CliRunner().invoke(cli, ["reset", "--scope", "content"], obj=obj, input="n\n")

        assert result.exit_code == 1
        assert fakeredis.FakeRedis(server=server).exists("content:abc") == 1

    def test_reset_reports_store_failure(self):
        result = CliRunner().invoke(cli, ["reset", "--all", "--yes"], obj={"client_factory": BrokenRedis})

        assert result.exit_code == 1
        assert "Recency store unavailable" in result.output


class TestStatusCommands:
    """Test crosspost-status, topics and stats."""

    def test_crosspost_status_ready(self, obj):
        result = CliRunner().invoke(cli, ["crosspost-status", "bluesky"], obj=obj)

        assert result.exit_code == 0, result.output
        assert "READY" in result.output
        assert "never" in result.output

    def test_crosspost_status_cooling(self, obj, server):
        marker = {"timestamp": time.time() - 60, "content": "SEC fines exchange"}
        fakeredis.FakeRedis(server=server).set("crosspost:bluesky", json.dumps(marker))

        result = CliRunner().invoke(cli, ["crosspost-status", "bluesky"], obj=obj)

        assert result.exit_code == 0, result.output
        assert "COOLING" in result.output
        assert "SEC fines exchange" in result.output

    def test_topics(self, obj, server):
        entry = {"topic": "regulatory", "timestamp": time.time()}
        fakeredis.FakeRedis(server=server).lpush("recent_topics", json.dumps(entry))

        result = CliRunner().invoke(cli, ["topics"], obj=obj)

        assert result.exit_code == 0, result.output
        assert "Topic Pressure" in result.output
        assert "100%" in result.output

    def test_stats(self, obj):
        result = CliRunner().invoke(cli, ["stats"], obj=obj)

        assert result.exit_code == 0, result.output
        assert "total_evaluations" in result.output
        assert '"store_available": true' in result.output


class TestConfigurationErrors:
    """Test startup failures."""

    def test_invalid_config_exits_with_status_2(self, obj, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("dedup:\n  similarity_threshold: 3\n", encoding="utf-8")

        result = CliRunner().invoke(cli, ["--config", str(path), "stats"], obj=obj)

        assert result.exit_code == 2
        assert "Configuration error" in result.output

    def test_config_file_is_used(self, obj, tmp_path, server):
        path = tmp_path / "custom.yaml"
        path.write_text("redis:\n  namespace: desk\n", encoding="utf-8")
        fakeredis.FakeRedis(server=server).set("desk:content:abc", "{}")

        result = CliRunner().invoke(cli, ["--config", str(path), "reset", "--scope", "content", "--yes"], obj=obj)

        assert result.exit_code == 0, result.output
        assert fakeredis.FakeRedis(server=server).exists("desk:content:abc") == 0
