"""Tests for CLI module."""

import json
import logging
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from ado_publish.cli import format_output, load_config, log_results_summary, run
from ado_publish.models.result import Ok, RemoteFailure, Skipped
from ado_publish.transport import AdoApiError

CONFIG_JSON = json.dumps(
    {"organization": "test-org", "project": "test-project", "pat": "test-pat"}
)

RESULTS = [
    {
        "scenario": {"name": "Valid login", "tags": ["@TestCaseId:419"]},
        "feature": {
            "name": "Login",
            "tags": ["@TestPlanId:417", "@TestSuiteId:12"],
        },
        "status": "passed",
        "duration": 1200,
    }
]


@pytest.fixture
def results_path(tmp_path: Path) -> Path:
    """Write a results file for one scenario."""
    path = tmp_path / "results.json"
    path.write_text(json.dumps(RESULTS))
    return path


def test_log_results_summary(caplog: pytest.LogCaptureFixture) -> None:
    """Logs every step with its status symbol and message."""
    results = [
        Ok(step="update_result", detail="test case 419: Passed"),
        Skipped(step="create_bug", reason="disabled"),
        RemoteFailure(step="complete_test_run", error=AdoApiError(503, "down")),
    ]

    with caplog.at_level(logging.INFO):
        log_results_summary(logging.getLogger(), results)

    assert "Azure DevOps Publishing Summary:" in caplog.text
    assert "✅ update_result: published" in caplog.text
    assert "test case 419: Passed" in caplog.text
    assert "⏭️ create_bug: skipped" in caplog.text
    assert "❌ complete_test_run: failed" in caplog.text
    assert "ADO API error: 503 - down" in caplog.text


def test_format_output_counts_statuses() -> None:
    """Counts published, skipped and failed steps."""
    output = format_output(
        [
            Ok(step="start_test_run", detail="run 1001"),
            Ok(step="update_result"),
            Skipped(step="update_result", reason="no test case"),
            RemoteFailure(step="create_bug", error=AdoApiError(400, "bad")),
        ]
    )

    assert output["total"] == 4
    assert output["published"] == 2
    assert output["skipped"] == 1
    assert output["failed"] == 1
    assert output["results"][0] == {
        "step": "start_test_run",
        "status": "published",
        "message": "run 1001",
    }


def test_load_config_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Falls back to ADO_* environment variables without JSON config."""
    monkeypatch.setenv("ADO_ORGANIZATION", "env-org")
    monkeypatch.setenv("ADO_PROJECT", "env-project")
    monkeypatch.setenv("ADO_PAT", "env-pat")

    config = load_config(None)

    assert config.organization == "env-org"
    assert config.project == "env-project"


class TestRun:
    """Tests for run function."""

    async def test_publishes_results_and_returns_zero(
        self, results_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Replays the results file and prints a JSON summary."""
        with patch("ado_publish.cli.publish", new_callable=AsyncMock) as mock_publish:
            mock_publish.return_value = [Ok(step="update_result")]

            exit_code = await run(CONFIG_JSON, results_path, "Nightly", parallel=True)

        assert exit_code == 0
        config, scenario_results, run_name, parallel = mock_publish.await_args.args
        assert config.organization == "test-org"
        assert [r.key for r in scenario_results] == ["Login::Valid login"]
        assert scenario_results[0].duration == 1200
        assert run_name == "Nightly"
        assert parallel
        output = json.loads(capsys.readouterr().out)
        assert output["published"] == 1

    async def test_returns_zero_when_publishing_degrades(
        self, results_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Remote failures never fail the command."""
        with patch("ado_publish.cli.publish", new_callable=AsyncMock) as mock_publish:
            mock_publish.return_value = [
                RemoteFailure(step="start_test_run", error=AdoApiError(401, "no"))
            ]

            exit_code = await run(CONFIG_JSON, results_path)

        assert exit_code == 0
        assert json.loads(capsys.readouterr().out)["failed"] == 1

    async def test_returns_two_for_invalid_config(self, results_path: Path) -> None:
        """Invalid configuration fails the command."""
        with patch("ado_publish.cli.publish", new_callable=AsyncMock) as mock_publish:
            exit_code = await run('{"organization": "org"}', results_path)

        assert exit_code == 2
        mock_publish.assert_not_called()

    async def test_returns_two_for_missing_results(self, tmp_path: Path) -> None:
        """An unreadable results file fails the command."""
        with patch("ado_publish.cli.publish", new_callable=AsyncMock) as mock_publish:
            exit_code = await run(CONFIG_JSON, tmp_path / "missing.json")

        assert exit_code == 2
        mock_publish.assert_not_called()

    async def test_disabled_integration_publishes_nothing(
        self, results_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Exits early when the integration is disabled."""
        config_json = json.dumps(
            {"enabled": False, "organization": "o", "project": "p", "pat": "x"}
        )
        with patch("ado_publish.cli.publish", new_callable=AsyncMock) as mock_publish:
            exit_code = await run(config_json, results_path)

        assert exit_code == 0
        mock_publish.assert_not_called()
        assert json.loads(capsys.readouterr().out)["total"] == 0
