"""Unit tests for CLI interface."""

import json
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from crawlcore.engine.crawler import build_crawler
from crawlcore.pipeline.main import cli, default_routes
from crawlcore.pipeline.steps import EnqueueLinksStep
from tests.fixtures.sample_data import StubFetcher, html_page


SITE = {
    "http://example.com/": html_page("http://example.com/", ["/about", "http://other.org/"]),
    "http://example.com/about": html_page("http://example.com/about", ["/"]),
}


@pytest.fixture
def config_file(tmp_path):
    """Config without politeness delays or retry backoff."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "run_mode": "single",
        "default_min_interval": 0.0,
        "retry_base_delay": 0.0,
        "retry_max_delay": 0.0,
        "retry_jitter_max": 0.0,
        "log_level": "WARNING",
    }))
    return path


@pytest.fixture
def stub_fetcher():
    fetcher = StubFetcher(SITE)

    def build_with_stub(config, routes, **kwargs):
        kwargs["fetcher"] = fetcher
        return build_crawler(config, routes, **kwargs)

    with patch("crawlcore.pipeline.main.build_crawler", side_effect=build_with_stub):
        yield fetcher


def test_cli_help():
    """Test that help text is displayed correctly."""
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])

    assert result.exit_code == 0
    assert "run" in result.output
    assert "inspect" in result.output


def test_run_help_lists_options():
    result = CliRunner().invoke(cli, ["run", "--help"])

    assert result.exit_code == 0
    for option in ("--config", "--seed-file", "--mode", "--workers", "--state-dir", "--follow-links"):
        assert option in result.output


def test_cli_version():
    """Test that version flag works."""
    result = CliRunner().invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_default_routes():
    plain = default_routes(follow_links=False)[0]
    following = default_routes(follow_links=True)[0]

    assert [step.id for step in plain.pipeline.steps] == ["fetch", "parse"]
    assert isinstance(following.pipeline.steps[-1], EnqueueLinksStep)


def test_run_writes_summary(config_file, stub_fetcher, tmp_path):
    output = tmp_path / "out" / "summary.json"

    result = CliRunner().invoke(cli, [
        "run",
        "--config", str(config_file),
        "--output", str(output),
        "http://example.com/",
        "http://example.com/missing",
    ])

    assert result.exit_code == 0, result.output
    assert "Crawl Complete!" in result.output
    data = json.loads(output.read_text())
    assert data["summary"]["seeded"] == 2
    assert data["summary"]["completed"] == 1
    assert data["summary"]["dead_lettered"] == 1
    assert data["summary"]["drained"] is True
    assert data["dead_letters"][0]["url"] == "http://example.com/missing"


def test_run_follow_links_stays_on_seed_hosts(config_file, stub_fetcher, tmp_path):
    output = tmp_path / "summary.json"

    result = CliRunner().invoke(cli, [
        "run", "-c", str(config_file), "-o", str(output), "--follow-links", "http://example.com/",
    ])

    assert result.exit_code == 0, result.output
    assert sorted(stub_fetcher.requests) == ["http://example.com/", "http://example.com/about"]
    data = json.loads(output.read_text())
    assert data["summary"]["completed"] == 2
    reasons = [d["reason"] for d in data["decisions"] if d["outcome"] == "enqueue_rejected"]
    assert "host other.org out of scope" in reasons


def test_run_reads_seed_file(config_file, stub_fetcher, tmp_path):
    seeds = tmp_path / "seeds.txt"
    seeds.write_text("# seeds\nhttp://example.com/\n\nhttp://example.com/about\n")

    result = CliRunner().invoke(cli, [
        "run", "-c", str(config_file), "-o", str(tmp_path / "s.json"), "--seed-file", str(seeds),
    ])

    assert result.exit_code == 0, result.output
    assert len(stub_fetcher.requests) == 2


def test_run_without_seeds_is_usage_error(config_file, stub_fetcher, tmp_path):
    result = CliRunner().invoke(cli, ["run", "-c", str(config_file), "-o", str(tmp_path / "s.json")])

    assert result.exit_code == 2
    assert "No seed URLs given" in result.output


def test_run_passes_overrides_to_config(config_file, stub_fetcher, tmp_path):
    seen = {}
    original = stub_fetcher

    def capture(config, routes, **kwargs):
        seen["config"] = config
        kwargs["fetcher"] = original
        return build_crawler(config, routes, **kwargs)

    with patch("crawlcore.pipeline.main.build_crawler", side_effect=capture):
        result = CliRunner().invoke(cli, [
            "run", "-c", str(config_file), "-o", str(tmp_path / "s.json"),
            "--mode", "executor", "--workers", "3", "--log-level", "error",
            "http://example.com/",
        ])

    assert result.exit_code == 0, result.output
    config = seen["config"]
    assert config.run_mode == "executor"
    assert config.worker_pool_size == 3
    assert config.log_level == "ERROR"
    assert config.default_min_interval == 0.0


def test_run_reports_errors_with_exit_code_1(config_file, tmp_path):
    with patch("crawlcore.pipeline.main.build_crawler", side_effect=RuntimeError("wiring failed")):
        result = CliRunner().invoke(cli, ["run", "-c", str(config_file), "http://example.com/"])

    assert result.exit_code == 1
    assert "wiring failed" in result.output


def test_run_with_state_dir_then_inspect(config_file, stub_fetcher, tmp_path):
    state_dir = tmp_path / "state"

    result = CliRunner().invoke(cli, [
        "run", "-c", str(config_file), "-o", str(tmp_path / "s.json"),
        "--state-dir", str(state_dir), "http://example.com/",
    ])
    assert result.exit_code == 0, result.output
    assert (state_dir / "frontier.snapshot.json").exists()

    inspected = CliRunner().invoke(cli, ["inspect", str(state_dir)])

    assert inspected.exit_code == 0, inspected.output
    assert "Durable State" in inspected.output
    assert "Frontier" in inspected.output


def test_inspect_lists_pending_tasks(durable_config, logger):
    crawler = build_crawler(durable_config, default_routes(False), fetcher=StubFetcher(), logger=logger)
    with crawler:
        crawler.recover()
        crawler.seed("http://example.com/waiting")

    result = CliRunner().invoke(cli, ["inspect", durable_config.persistence.state_directory])

    assert result.exit_code == 0, result.output
    assert "http://example.com/waiting" in result.output


def test_inspect_leaves_a_torn_wal_tail_on_disk(durable_config, logger):
    crawler = build_crawler(durable_config, default_routes(False), fetcher=StubFetcher(), logger=logger)
    with crawler:
        crawler.recover()
        crawler.seed("http://example.com/waiting")

    wal_path = durable_config.persistence.state_path / "frontier.wal"
    with open(wal_path, "a", encoding="utf-8") as f:
        f.write('{"type":"frontier.offered","task":{"id":"half')
    before = wal_path.read_bytes()

    result = CliRunner().invoke(cli, ["inspect", durable_config.persistence.state_directory])

    assert result.exit_code == 0, result.output
    assert "http://example.com/waiting" in result.output
    assert wal_path.read_bytes() == before
