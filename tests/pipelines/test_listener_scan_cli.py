from __future__ import annotations

import json

import pytest

from app.models.listener import RunStatus, RunType
from app.models.sources import HNItem
from pipelines import listener_scan
from tests.helpers.listener_fakes import FakeHN, build_test_services, hn_time


def _services():
    story = HNItem(
        id=11,
        title="We were hit by credential stuffing bots",
        url="https://shopwise.io/blog/incident",
        time=hn_time(1),
    )
    return build_test_services(FakeHN(feeds={"front_page": [story]}))


def test_scan_command_prints_summary(capsys):
    services = _services()

    exit_code = listener_scan.main(
        ["scan", "--mode", "posts", "--team-id", "team-9", "--no-comments", "--run-type", "manual"],
        services=services,
    )

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["status"] == RunStatus.COMPLETED.value
    assert summary["discoveries_created"] == 1
    assert summary["items_scanned"] == 1
    (run,) = services.runs.list_runs()
    assert run.run_type is RunType.MANUAL
    (discovery,), _ = services.discoveries.list_discoveries()
    assert discovery.team_id == "team-9"
    assert services.fetcher.closed is False


def test_scan_options_map_cli_flags():
    args = listener_scan.parse_args(
        [
            "scan",
            "--mode",
            "profiles",
            "--team-id",
            "t",
            "--max-stories",
            "5",
            "--min-karma",
            "100",
            "--github",
        ]
    )

    options = listener_scan._scan_options(args)

    assert options.max_stories_per_scan == 5
    assert options.min_karma == 100
    assert options.enrich_with_github is True
    assert options.auto_promote_threshold == 75
    assert options.include_comments is True


def test_seed_keywords_command(capsys):
    services = build_test_services(seed=False)

    assert listener_scan.main(["seed-keywords"], services=services) == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary["added"] > 100
    assert summary["skipped"] == 0


def test_scan_exits_non_zero_when_source_is_busy(capsys):
    services = _services()

    with services.orchestrator.guard.hold("hn"):
        exit_code = listener_scan.main(["scan", "--mode", "posts"], services=services)

    assert exit_code == 1
    assert capsys.readouterr().out == ""


def test_unknown_mode_is_a_usage_error():
    with pytest.raises(SystemExit) as excinfo:
        listener_scan.parse_args(["scan", "--mode", "reddit"])

    assert excinfo.value.code == 2
