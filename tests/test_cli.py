"""Tests for the command-line entry point."""

import io
import json
from decimal import Decimal
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from credit_check.check.output import render_report
from credit_check.check.service import CheckRun
from credit_check.cli import build_parser, main
from credit_check.config import ConfigError
from credit_check.models import CheckResult, CreditCheckReport
from credit_check.notify.slack import SlackPostSummary

REPORT = CreditCheckReport(
    timestamp="2026-10-28T09:00:00Z",
    alert_channel="C-ALERTS",
    escalation_channel="C-ESCALATE",
    threshold=Decimal(0),
    results=[CheckResult(customer="Umbrella", org_id="org-umbrella", status="error", error="boom")],
)


class TestParser:
    def test_check_flags(self) -> None:
        args = build_parser().parse_args(["check", "--config", "c.json", "--post", "--dry-run"])
        assert args.command == "check"
        assert args.config == "c.json"
        assert args.post is True
        assert args.dry_run is True
        assert args.output is None

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCheckCommand:
    def test_prints_report(self, mock_settings: Any, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("credit_check.cli.execute_check", new_callable=AsyncMock, return_value=CheckRun(report=REPORT)) as run:
            code = main(["check", "--output", "out.json"])

        assert code == 0
        assert json.loads(capsys.readouterr().out)["results"][0]["customer"] == "Umbrella"
        kwargs = run.await_args.kwargs
        assert kwargs["trigger"] == "cli"
        assert kwargs["output_path"] == "out.json"
        assert kwargs["post"] is False
        assert kwargs["dry_run"] is None

    def test_failed_slack_post_exits_nonzero(self, mock_settings: Any) -> None:
        slack = SlackPostSummary(posted=True, failures=["summary"])
        with patch(
            "credit_check.cli.execute_check",
            new_callable=AsyncMock,
            return_value=CheckRun(report=REPORT, slack=slack),
        ):
            assert main(["check", "--post"]) == 1

    def test_config_error_exits_one(self, mock_settings: Any, capsys: pytest.CaptureFixture[str]) -> None:
        with patch(
            "credit_check.cli.execute_check",
            new_callable=AsyncMock,
            side_effect=ConfigError("Config file not found: x.json"),
        ):
            code = main(["check", "--config", "x.json"])

        assert code == 1
        assert "ERROR: Config file not found" in capsys.readouterr().err


class TestPostCommand:
    def test_dry_run_from_file(self, mock_settings: Any, tmp_path: Path) -> None:
        path = tmp_path / "report.json"
        _ = path.write_text(render_report(REPORT))

        assert main(["post", "--input", str(path), "--dry-run"]) == 0

    def test_reads_stdin(self, mock_settings: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO(render_report(REPORT)))
        with patch(
            "credit_check.cli.post_alerts",
            new_callable=AsyncMock,
            return_value=SlackPostSummary(posted=True),
        ) as post:
            assert main(["post"]) == 0

        report = post.await_args.args[0]
        assert report.results[0].org_id == "org-umbrella"

    def test_bad_input_exits_one(self, mock_settings: Any, tmp_path: Path) -> None:
        path = tmp_path / "report.json"
        _ = path.write_text("not json")

        assert main(["post", "--input", str(path)]) == 1
