"""Tests for OpenFinancing CLI — proves CLI dispatches correctly and state survives runs."""

import json
from pathlib import Path

import pytest

from openfinancing.cli import LEDGER_SNAPSHOT, build_parser, main


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"
        assert args.ledger == "memory"

    def test_invest_command(self) -> None:
        args = build_parser().parse_args([
            "invest", "--project", "1", "--investor", "2", "--password", "pw",
            "--recipient", "3", "--amount", "250.50", "--investment-id", "inv_1",
        ])
        assert args.command == "invest"
        assert args.project == 1
        assert args.amount == "250.50"
        assert args.investment_id == "inv_1"
        assert args.recipient_password is None

    def test_register_entity_kind_checked(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["register-entity", "--name", "x", "--kind", "bank"])

    def test_list_projects_stage(self) -> None:
        args = build_parser().parse_args(["list-projects", "--stage", "partially_funded"])
        assert args.stage == "partially_funded"


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> list[str]:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "platform_params.json").write_text(json.dumps({
        "network": "testnet",
        "payment_token": {"code": "STABLEUSD", "issuer": ""},
        "investment": {"confirmation_delay_seconds": 0},
        "notifications": {"enabled": True},
    }), encoding="utf-8")
    monkeypatch.setenv("OPENFINANCING_PLATFORM_PASSWORD", "platform-pw")
    monkeypatch.setenv("OPENFINANCING_ISSUER_PASSWORD", "issuer-pw")
    monkeypatch.delenv("OPENFINANCING_SMTP_USER", raising=False)
    return ["--config", str(config_dir), "--data", str(tmp_path / "data")]


def _run(capsys: pytest.CaptureFixture, base: list[str], *argv: str) -> tuple[int, dict]:
    code = main([*base, *argv])
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else {}


class TestCLIExecution:
    def test_no_command_shows_help(self, cli_env: list[str], capsys) -> None:
        assert main(cli_env) == 0

    def test_status_runs(self, cli_env: list[str], capsys) -> None:
        code, status = _run(capsys, cli_env, "status")
        assert code == 0
        assert status["network"] == "testnet"
        assert status["projects"]["total"] == 0

    def test_missing_secrets_fail(self, cli_env: list[str], monkeypatch, capsys) -> None:
        monkeypatch.delenv("OPENFINANCING_PLATFORM_PASSWORD")
        assert main([*cli_env, "init-platform"]) == 1

    def test_unknown_project_fails(self, cli_env: list[str], capsys) -> None:
        code, result = _run(capsys, cli_env, "show-project", "--project", "9")
        assert code == 1
        assert result["error_code"] == "not_found"

    def test_funding_round_across_runs(self, cli_env: list[str], tmp_path: Path, capsys) -> None:
        code, platform = _run(capsys, cli_env, "init-platform")
        assert code == 0, platform
        assert platform["data"]["created"] is True

        code, investor = _run(capsys, cli_env, "register-investor",
                              "--name", "Alice", "--password", "alice-pw")
        assert code == 0, investor
        code, recipient = _run(capsys, cli_env, "register-recipient",
                               "--name", "School", "--password", "school-pw")
        assert code == 0, recipient
        assert (tmp_path / "data" / LEDGER_SNAPSHOT).exists()

        code, _ = _run(capsys, cli_env, "issue-stablecoin", "--investor", "1", "--amount", "1500")
        assert code == 0
        code, project = _run(capsys, cli_env, "propose-project", "--title", "Solar roof",
                             "--total", "1000", "--years", "5", "--metadata", "roof-42",
                             "--recipient", "1")
        assert code == 0, project
        code, _ = _run(capsys, cli_env, "open-project", "--project", "1")
        assert code == 0

        code, invested = _run(capsys, cli_env, "invest", "--project", "1", "--investor", "1",
                              "--password", "alice-pw", "--recipient", "1",
                              "--recipient-password", "school-pw", "--amount", "1000")
        assert code == 0, invested
        assert invested["data"]["funded"] is True

        code, shown = _run(capsys, cli_env, "show-project", "--project", "1")
        assert code == 0
        assert shown["data"]["stage"] == "funded"
        assert shown["data"]["issuer_frozen"] is True

        code, paid = _run(capsys, cli_env, "payback", "--project", "1", "--recipient", "1",
                          "--password", "school-pw", "--amount", "200")
        assert code == 0, paid
        assert paid["data"]["project"]["balance_left"] == "800"

        events = (tmp_path / "data" / "events.jsonl").read_text(encoding="utf-8").splitlines()
        kinds = [json.loads(line)["event_kind"] for line in events]
        assert "project_funded" in kinds
        assert kinds[-1] == "payback_recorded"
