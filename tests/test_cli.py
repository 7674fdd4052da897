from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import NOW, FakeAnnotations, FakeSource, make_item
from prdeck.cli import cli
from prdeck.cli.queue import _watch
from prdeck.config import Config
from prdeck.errors import FetchFailedError
from prdeck.models import Annotation
from prdeck.services.aggregator import Aggregator


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config(tmp_path):
    return Config(base_dir=tmp_path, startup_grace_seconds=0)


@pytest.fixture
def source():
    return FakeSource(
        [
            make_item("PR_1", 1, merge_status="conflicts", title="Fix login"),
            make_item(
                "PR_2",
                2,
                review_decision="approved",
                merge_status="mergeable",
                checks_status="success",
                title="Bump deps",
            ),
            make_item(
                "PR_3",
                3,
                author="bob",
                is_author=False,
                is_requested_reviewer=True,
                title="Add cache",
            ),
        ]
    )


@pytest.fixture
def annotations():
    return FakeAnnotations()


@pytest.fixture
def patched(config, source, annotations):
    """Route every command to an aggregator over fake sources."""

    def _build(cfg):
        return Aggregator(source, annotations, config=cfg, now=lambda: NOW)

    with patch("prdeck.cli.queue._load_config", return_value=config), patch(
        "prdeck.cli.annotations._load_config", return_value=config
    ), patch("prdeck.cli.queue.build_aggregator", side_effect=_build), patch(
        "prdeck.cli.annotations.build_aggregator", side_effect=_build
    ):
        yield


def test_help(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "prdeck" in result.output
    for command in ("list", "summary", "watch", "pin", "snooze", "config"):
        assert command in result.output


# -- list / summary --


def test_list_groups_items(runner, patched):
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 0, result.output
    assert "Ready to Merge (1)" in result.output
    assert "Blocked (1)" in result.output
    assert "Needs Your Review (1)" in result.output
    assert result.output.index("Ready to Merge") < result.output.index("Blocked")
    assert "acme/api#1" in result.output


def test_list_single_group(runner, patched):
    result = runner.invoke(cli, ["list", "--group", "blocked"])
    assert result.exit_code == 0, result.output
    assert "Fix login" in result.output
    assert "Bump deps" not in result.output


def test_list_rejects_unknown_group(runner, patched):
    result = runner.invoke(cli, ["list", "--group", "urgent"])
    assert result.exit_code != 0


def test_list_search(runner, patched, source):
    result = runner.invoke(cli, ["list", "--search", "login"])
    assert result.exit_code == 0, result.output
    assert source.searches == ["login"]
    assert "Fix login" in result.output


def test_list_empty(runner, patched, source):
    source.items = []
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "No pull requests found." in result.output


def test_list_fetch_failure(runner, patched, source):
    source.error = FetchFailedError("gh is not installed")
    result = runner.invoke(cli, ["list"])
    assert result.exit_code != 0
    assert "gh is not installed" in result.output


def test_list_reports_degraded_sources(runner, patched, annotations):
    annotations.error = RuntimeError("database is locked")
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "annotations unavailable" in result.output


def test_summary(runner, patched):
    result = runner.invoke(cli, ["summary"])
    assert result.exit_code == 0, result.output
    assert "3 pull request(s) need your attention" in result.output
    assert "Top: acme/api#2 can be merged" in result.output


def test_summary_nothing_to_do(runner, patched, source):
    source.items = []
    result = runner.invoke(cli, ["summary"])
    assert "Nothing needs your attention." in result.output


def test_invalid_config(runner):
    with patch("prdeck.cli.utils.get_config", side_effect=ValueError("bad value")):
        result = runner.invoke(cli, ["summary"])
    assert result.exit_code != 0
    assert "Invalid configuration: bad value" in result.output


# -- Annotations --


def test_pin_by_url(runner, patched, annotations):
    result = runner.invoke(cli, ["pin", "https://github.com/acme/api/pull/3"])
    assert result.exit_code == 0, result.output
    assert "Pinned acme/api#3." in result.output
    assert [(a.entity_id, a.kind) for a in annotations.annotations] == [("PR_3", "pin")]


def test_pin_already_pinned(runner, patched, annotations):
    annotations.annotations = [
        Annotation(id="p1", entity_id="PR_1", kind="pin", owner="me")
    ]
    result = runner.invoke(cli, ["pin", "PR_1"])
    assert "already pinned" in result.output
    assert len(annotations.annotations) == 1


def test_unpin(runner, patched, annotations):
    annotations.annotations = [
        Annotation(id="p1", entity_id="PR_1", kind="pin", owner="me")
    ]
    result = runner.invoke(cli, ["unpin", "PR_1"])
    assert result.exit_code == 0, result.output
    assert "Unpinned acme/api#1." in result.output
    assert annotations.annotations == []


def test_unpin_not_pinned(runner, patched):
    result = runner.invoke(cli, ["unpin", "PR_1"])
    assert "is not pinned" in result.output


def test_snooze_for_days(runner, patched, annotations):
    result = runner.invoke(cli, ["snooze", "PR_2", "--days", "3"])
    assert result.exit_code == 0, result.output
    assert "Snoozed acme/api#2 until" in result.output
    (annotation,) = annotations.annotations
    assert annotation.kind == "snooze"
    assert annotation.expires_at is not None


def test_snooze_again_replaces_previous(runner, patched, annotations):
    annotations.annotations = [
        Annotation(id="s1", entity_id="PR_2", kind="snooze", owner="me")
    ]
    result = runner.invoke(cli, ["snooze", "PR_2", "--days", "3"])
    assert result.exit_code == 0, result.output
    (annotation,) = annotations.annotations
    assert annotation.id != "s1"
    assert annotation.expires_at is not None


def test_snooze_rejects_zero_days(runner, patched):
    result = runner.invoke(cli, ["snooze", "PR_2", "--days", "0"])
    assert result.exit_code != 0


def test_unsnooze(runner, patched, annotations):
    annotations.annotations = [
        Annotation(id="s1", entity_id="PR_2", kind="snooze", owner="me")
    ]
    result = runner.invoke(cli, ["unsnooze", "PR_2"])
    assert "Unsnoozed acme/api#2." in result.output


def test_pin_unknown_reference(runner, patched, source):
    source.items = []
    result = runner.invoke(cli, ["pin", "PR_404"])
    assert result.exit_code != 0
    assert "No pull request matches 'PR_404'" in result.output


# -- watch --


def test_watch_disconnected(runner, patched):
    with patch(
        "prdeck.cli.queue.CliConnectivityProbe.is_any_provider_connected",
        return_value=False,
    ):
        result = runner.invoke(cli, ["watch"])
    assert result.exit_code == 0, result.output
    assert "No provider connected" in result.output


@pytest.mark.asyncio
async def test_watch_retries_after_failed_refresh(config, source, annotations):
    config.polling_interval_minutes = 0.001
    source.error = FetchFailedError("offline")

    def _build(cfg):
        return Aggregator(source, annotations, config=cfg, now=lambda: NOW)

    with patch("prdeck.cli.queue.build_aggregator", side_effect=_build), patch(
        "prdeck.cli.queue.CliConnectivityProbe.is_any_provider_connected",
        return_value=True,
    ):
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(_watch(config), timeout=0.5)

    assert source.calls >= 2


def test_watch_polling_disabled(runner, patched, config):
    config.polling_enabled = False
    result = runner.invoke(cli, ["watch"])
    assert result.exit_code == 0, result.output
    assert "Polling is disabled." in result.output


# -- config --


def test_config_prints_file(runner, tmp_path):
    config_file = tmp_path / "config.toml"
    with patch("prdeck.config.CONFIG_DIR", tmp_path), patch(
        "prdeck.config.CONFIG_FILE", config_file
    ):
        result = runner.invoke(cli, ["config"])
    assert result.exit_code == 0
    assert "[launchpad]" in result.output
    assert config_file.exists()
