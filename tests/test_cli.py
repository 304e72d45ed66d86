"""Tests for the command line."""

import asyncio
import json

import pytest
from typer.testing import CliRunner

from validator_rug_tracker import __version__
from validator_rug_tracker.cli import app
from validator_rug_tracker.config import clear_settings_cache, get_settings
from validator_rug_tracker.storage.database import DatabaseManager
from validator_rug_tracker.storage.repos import JobRunRepository, JobStatus

VOTE = "Vote111111111111111111111111111111111111111"

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, tmp_path):
    """Point the CLI at a throwaway SQLite file with no alert channels."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'tracker.db'}")
    for name in ("EMAIL_RESEND_API_KEY", "EMAIL_FROM", "DISCORD_WEBHOOK_URL", "DRY_RUN"):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0, result.output
    yield
    clear_settings_cache()


def invoke_json(*args: str):
    result = runner.invoke(app, list(args))
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


class TestCli:
    """Tests for CLI commands."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_subscribe_and_unsubscribe(self):
        saved = invoke_json("subscribe", "Alice@Example.com", "--preference", "all")

        assert saved == {"email": "alice@example.com", "preference": "all"}
        assert invoke_json("unsubscribe", "alice@example.com")["removed"] is True
        assert invoke_json("unsubscribe", "alice@example.com")["removed"] is False

    def test_validator_subscribe(self):
        saved = invoke_json("validator-subscribe", "bob@example.com", VOTE, "--no-delinquency")

        assert saved["commission_alerts"] is True
        assert saved["delinquency_alerts"] is False
        assert invoke_json("validator-unsubscribe", "bob@example.com", VOTE)["removed"] is True

    def test_validator_subscribe_requires_alert_type(self):
        result = runner.invoke(
            app, ["validator-subscribe", "bob@example.com", VOTE, "--no-commission", "--no-delinquency"]
        )

        assert result.exit_code == 2

    def test_read_commands_on_empty_database(self):
        assert invoke_json("rugs-per-epoch") == {"rows": [], "stats": None}
        assert invoke_json("history", VOTE) == []
        assert invoke_json("uptime", VOTE, "--days", "7") == []

    def test_snapshot_requires_channel_without_dry_run(self):
        result = runner.invoke(app, ["snapshot"])

        assert result.exit_code == 2

    def test_no_command_shows_help(self):
        result = runner.invoke(app, [])

        assert result.exit_code == 0
        assert "snapshot" in result.stdout

    def test_health_without_runs_is_stale(self):
        result = runner.invoke(app, ["health"])

        assert result.exit_code == 1
        payload = json.loads(result.stdout)
        assert payload["status"] == "stale"
        assert payload["last_snapshot_epoch"] is None
        assert payload["jobs"]["snapshot"]["warnings"] == ["No job runs recorded"]
        assert set(payload["jobs"]) == {"snapshot", "uptime"}

    def test_health_with_recent_runs_is_healthy(self):
        async def record_runs() -> None:
            db = DatabaseManager.from_settings(get_settings())
            try:
                async with db.get_async_session() as session:
                    jobs = JobRunRepository(session)
                    for name in ("snapshot", "uptime"):
                        run = await jobs.start(name)
                        await jobs.finish(run.id, JobStatus.SUCCESS, epoch=812, metrics={"entities_processed": 2})
            finally:
                await db.dispose_async()

        asyncio.run(record_runs())

        payload = invoke_json("health")

        assert payload["status"] == "healthy"
        assert payload["jobs"]["snapshot"]["last_run"]["epoch"] == 812
