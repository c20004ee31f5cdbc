"""Integration tests for a full check run over mocked HTTP."""

import json
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx

from credit_check.check.service import execute_check
from credit_check.config import ConfigError

AGENT_URL = "http://agent.test/a2a/billing-account/rpc"
SLACK_URL = "https://slack.test/api/chat.postMessage"

pytestmark = pytest.mark.integration

ANSWERS = {
    "org-acme": {
        "balance": "The current balance is -$9,500.00 and the credit limit is $10,000.00.",
        "usage": "Usage this month: $4,000.00\nNext month MRC: $200.00\nDaily run rate: $100.00",
        "flags": "Auto-recharge is disabled and the account is not VIP.",
    },
    "org-globex": {
        "balance": "Balance: -$1,000.00",
        "usage": "MRC: $500.00. Daily run rate: $20.00.",
        "flags": "Auto-recharge: ON",
    },
}


def _agent(request: httpx.Request) -> httpx.Response:
    """Answer each JSON-RPC query from ANSWERS by org id and query kind."""
    payload = json.loads(request.content)
    prompt = payload["params"]["message"]["parts"][0]["text"]
    kind = payload["id"].rsplit("-", 1)[-1]
    org_id = next(org for org in ANSWERS if org in prompt)
    text = ANSWERS[org_id][kind]
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": {"parts": [{"text": text}]}})


class TestExecuteCheck:
    @respx.mock
    async def test_full_run_writes_output(self, mock_settings: Any, tmp_path: Path) -> None:
        route = respx.post(AGENT_URL).mock(side_effect=_agent)
        output = tmp_path / "report.json"

        run = await execute_check(trigger="cli", output_path=output)

        assert route.call_count == 6
        statuses = {r.customer: (r.status, r.risk_level) for r in run.report.results}
        assert statuses["Acme Corp"] == ("ok", "HIGH")
        assert statuses["Globex"] == ("ok", "OK")
        assert run.slack is None
        assert run.output_path == str(output)
        assert json.loads(output.read_text())["results"][0]["remaining"] == -100.0

    @respx.mock
    async def test_run_and_post(self, mock_settings: Any) -> None:
        respx.post(AGENT_URL).mock(side_effect=_agent)
        slack = respx.post(SLACK_URL).mock(return_value=httpx.Response(200, json={"ok": True, "ts": "9.9"}))

        run = await execute_check(trigger="manual", post=True)

        assert run.slack is not None
        assert run.slack.escalated == 1
        assert slack.call_count == 3

    @respx.mock
    async def test_unreachable_agent_marks_every_customer(self, mock_settings: Any) -> None:
        route = respx.post(AGENT_URL).mock(return_value=httpx.Response(503))

        run = await execute_check(trigger="cli")

        assert [r.status for r in run.report.results] == ["error", "error"]
        # first query of each customer exhausts its attempts, the rest are skipped
        assert route.call_count == 2 * 3

    async def test_missing_config_raises(self, mock_settings: Any, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            await execute_check(trigger="cli", config_path=tmp_path / "missing.json")
