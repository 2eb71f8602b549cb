from __future__ import annotations

import json
from pathlib import Path

import pytest

from cadence_cli import cli
from cadence_cli.documents import load_rollout_document
from cadence_core.errors import ValidationError

ROLLOUT_YAML = """\
tenant: acme
name: fw-2.4-eu
target_filter: "tag==gateway;attr.region==eu-*"
distribution_set_id: fw-2.4.0
weight: 300
groups:
  - name: all
    percentage: 100
    success_threshold: 100
    error_threshold: 50
"""


@pytest.fixture
def run(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    state_root = str(tmp_path / "cli_state")

    def _run(*argv: str):
        code = cli.main(["--state-root", state_root, *argv])
        captured = capsys.readouterr()
        payload = json.loads(captured.out) if code == 0 and captured.out else None
        return code, payload, captured.err

    return _run


def _register(run, target_id: str, region: str) -> None:
    code, payload, _ = run(
        "targets",
        "register",
        "--tenant",
        "acme",
        "--name",
        target_id,
        "--id",
        target_id,
        "--tag",
        "gateway",
        "--attr",
        f"region={region}",
    )
    assert code == 0
    assert payload["id"] == target_id


def test_cli_rollout_lifecycle(run, tmp_path):
    _register(run, "gw-1", "eu-west")
    _register(run, "gw-2", "eu-north")
    _register(run, "gw-3", "us-east")
    document = tmp_path / "rollout.yaml"
    document.write_text(ROLLOUT_YAML, encoding="utf-8")

    code, created, _ = run("create", "--file", str(document))
    assert code == 0
    assert created["status"] == "READY"
    assert created["total_targets"] == 2
    rollout_id = created["id"]

    code, started, _ = run("start", rollout_id)
    assert (code, started["status"]) == (0, "RUNNING")

    code, view, _ = run("get", rollout_id)
    assert code == 0
    group_id = view["groups"][0]["id"]
    assert view["counts"]["scheduled"] == 2

    code, actions, _ = run("actions", "list", "--group-id", group_id)
    assert sorted(action["target_id"] for action in actions) == ["gw-1", "gw-2"]
    for target_id in ("gw-1", "gw-2"):
        code, action, _ = run(
            "actions",
            "report",
            "--group-id",
            group_id,
            "--target-id",
            target_id,
            "--status",
            "finished",
        )
        assert action["status"] == "FINISHED"

    code, results, _ = run("tick", "--rollout-id", rollout_id)
    assert code == 0
    assert results[0]["to_status"] == "FINISHED"

    code, listed, _ = run("list", "--tenant", "acme")
    assert [item["status"] for item in listed] == ["FINISHED"]


def test_cli_reports_errors_on_stderr(run):
    code, _, err = run("pause", "missing-rollout")
    assert code == 1
    assert err.startswith("Error: Rollout not found")

    code, _, err = run(
        "targets", "register", "--tenant", "acme", "--name", "x", "--attr", "bad"
    )
    assert code == 1
    assert "key=value" in err


def test_cli_without_command_prints_help(run):
    code, _, _ = run()
    assert code == 2


def test_group_count_splits_evenly(tmp_path):
    path = tmp_path / "even.yaml"
    path.write_text(
        "tenant: acme\n"
        "name: even\n"
        "target_filter: '*'\n"
        "distribution_set_id: ds\n"
        "group_count: 4\n"
        "defaults:\n"
        "  error_threshold: 10\n",
        encoding="utf-8",
    )
    spec = load_rollout_document(path).to_spec()
    assert [group.name for group in spec.groups] == [
        "group-1",
        "group-2",
        "group-3",
        "group-4",
    ]
    assert spec.groups[-1].target_percentage == 100.0
    assert all(group.error_condition is not None for group in spec.groups)


def test_rollout_document_needs_groups(tmp_path):
    path = Path(tmp_path / "empty.yaml")
    path.write_text(
        "tenant: acme\nname: x\ntarget_filter: '*'\ndistribution_set_id: ds\n",
        encoding="utf-8",
    )
    with pytest.raises(ValidationError):
        load_rollout_document(path).to_spec()
