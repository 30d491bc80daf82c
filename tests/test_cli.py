"""Tests for the command line interface."""

import pytest
from click.testing import CliRunner

from sleepsteps.cli import main
from sleepsteps.config import get_settings


@pytest.fixture
def runner(tmp_path, monkeypatch):
    """A CLI runner pointed at an empty data directory."""
    monkeypatch.setenv("SLEEPSTEPS_DATA_DIR", str(tmp_path / "data"))
    get_settings.cache_clear()
    yield CliRunner()
    get_settings.cache_clear()


def invoke(runner, *args):
    result = runner.invoke(main, list(args))
    assert result.exit_code == 0, result.output
    return result


class TestCli:
    """End-to-end runs of the CLI commands."""

    def test_requires_init(self, runner):
        """Test commands refuse to run before init."""
        result = runner.invoke(main, ["profile", "list"])
        assert result.exit_code == 1
        assert "not initialized" in result.output

    def test_profile_lifecycle(self, runner):
        """Test creating, listing, showing and deleting profiles."""
        invoke(runner, "init")
        invoke(runner, "profile", "generate", "--seed", "7", "--id", "cli-user")
        created = invoke(
            runner, "profile", "create", "--id", "manual", "--sleep-hours", "8", "--daily-steps", "4000"
        )
        assert "manual" in created.output

        listed = invoke(runner, "profile", "list")
        assert "cli-user" in listed.output
        assert "Total: 2 profile(s)" in listed.output

        invoke(runner, "profile", "show", "cli-user")
        invoke(runner, "profile", "delete", "manual", "--force")
        assert "manual" not in invoke(runner, "profile", "list").output

    def test_duplicate_profile_fails(self, runner):
        """Test reusing an id exits with an error."""
        invoke(runner, "init")
        invoke(runner, "profile", "generate", "--seed", "1", "--id", "dup")
        result = runner.invoke(main, ["profile", "generate", "--seed", "2", "--id", "dup"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_plan_and_simulate(self, runner):
        """Test planning a week and replaying a day on a virtual clock."""
        invoke(runner, "init")
        invoke(runner, "profile", "generate", "--seed", "42", "--id", "sim")

        generated = invoke(runner, "plan", "generate", "--now", "2024-03-07T13:00")
        assert "Cache status: ready" in generated.output

        shown = invoke(runner, "plan", "show", "--day", "2024-03-07", "--now", "2024-03-07T13:00")
        assert "Batches for 2024-03-07" in shown.output
        assert "Quality score:" in shown.output

        status = invoke(runner, "plan", "status", "--now", "2024-03-07T13:00")
        assert "Stored packages: 2" in status.output

        simulated = invoke(
            runner, "execute", "simulate", "--start", "2024-03-07T00:00", "--days", "1"
        )
        assert "Store holds" in simulated.output

        cleaned = invoke(runner, "plan", "clean", "--now", "2024-03-20T00:00")
        assert "Deleted 2 expired package(s)" in cleaned.output

    def test_history(self, runner):
        """Test backfilling history into the local store."""
        invoke(runner, "init")
        invoke(runner, "profile", "generate", "--seed", "3", "--id", "hist")

        first = invoke(runner, "history", "generate", "--days", "3", "--now", "2024-03-07T12:00")
        assert "Wrote 3 days" in first.output

        again = invoke(runner, "history", "generate", "--days", "3", "--now", "2024-03-07T12:00")
        assert "Replaced" in again.output
