"""CLI command tests using Typer's CliRunner.

Every test runs against a throwaway sqlite database in tmp_path so that
state carries over between invocations the way it does for a real user.
"""

import re

import pytest
from typer.testing import CliRunner

from cli.console import console
from cli.main import app

CREATE_TEXT = "viết một bài mới về cà phê"
SHORTER_TEXT = "ngắn hơn"

RECORDED_RE = re.compile(r"Recorded outcome (intent-[0-9a-z]+-[0-9a-z]+)")


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Point the CLI at a temporary database and a wide console."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("INTENT_ENGINE_DB_PATH", str(tmp_path / "state.db"))
    monkeypatch.delenv("INTENT_ENGINE_CONFIG_PATH", raising=False)
    monkeypatch.delenv("INTENT_ENGINE_LOG_LEVEL", raising=False)
    monkeypatch.setattr(console, "width", 200)


def record(runner, *args):
    result = runner.invoke(app, ["route", *args, "--record", "--confirm"])
    assert result.exit_code == 0, result.output
    match = RECORDED_RE.search(result.output)
    assert match, result.output
    return match.group(1)


class TestRootCommand:
    """Tests for the root callback."""

    def test_version(self, runner):
        """--version prints the version and exits."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "intent-engine version 0.1.0" in result.output

    def test_invalid_role(self, runner):
        """Unknown roles are a usage error."""
        result = runner.invoke(app, ["--role", "OWNER", "roles"])
        assert result.exit_code == 2

    def test_invalid_config_file(self, runner, tmp_path):
        """A config file that is not a mapping fails with exit code 1."""
        config = tmp_path / "bad.yaml"
        config.write_text("- just\n- a list\n")
        result = runner.invoke(app, ["--config", str(config), "roles"])
        assert result.exit_code == 1
        assert "Error:" in result.output


class TestRolesAndStatus:
    """Tests for roles and status."""

    def test_roles(self, runner):
        """Every role is listed."""
        result = runner.invoke(app, ["roles", "--lang", "en"])
        assert result.exit_code == 0
        for role in ("ADMIN", "EDITOR", "JUNIOR", "CLIENT", "VIEWER"):
            assert role in result.output
        assert "View only, no execution" in result.output

    def test_status_without_role(self, runner):
        """Status reports inactive governance when no role is given."""
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Governance inactive" in result.output
        assert "Prefs: on" in result.output

    def test_status_with_role(self, runner):
        """Status shows the governed user."""
        result = runner.invoke(app, ["--user", "alice", "--role", "editor", "status"])
        assert result.exit_code == 0
        assert "alice" in result.output
        assert "EDITOR" in result.output


class TestRoute:
    """Tests for the route command."""

    def test_explicit_create_executes(self, runner):
        """An explicit new-create request executes."""
        result = runner.invoke(app, ["route", CREATE_TEXT])
        assert result.exit_code == 0
        assert "EXECUTE" in result.output
        assert "High confidence" in result.output
        assert "EXPLICIT_CREATE" in result.output

    def test_ambiguous_confirms(self, runner):
        """An ambiguous request with a source asks for confirmation."""
        result = runner.invoke(app, ["route", SHORTER_TEXT, "--source"])
        assert result.exit_code == 0
        assert "CONFIRM" in result.output
        assert "TRANSFORM" in result.output

    def test_json_output(self, runner):
        """--json prints the decision fields."""
        result = runner.invoke(app, ["route", CREATE_TEXT, "--json"])
        assert result.exit_code == 0
        assert '"action": "EXECUTE"' in result.output
        assert '"route_hint": "CREATE"' in result.output

    def test_viewer_blocked(self, runner):
        """VIEWER is blocked at the gate."""
        result = runner.invoke(app, ["--role", "VIEWER", "route", CREATE_TEXT])
        assert result.exit_code == 0
        assert "BLOCKED" in result.output
        assert "Gate: EXECUTION_NOT_ALLOWED" in result.output

    def test_viewer_cannot_record(self, runner):
        """Recording a blocked decision fails."""
        result = runner.invoke(app, ["--role", "VIEWER", "route", CREATE_TEXT, "--record"])
        assert result.exit_code == 1

    def test_record_requires_confirmation(self, runner):
        """CONFIRM decisions are not recorded without --confirm."""
        result = runner.invoke(app, ["route", SHORTER_TEXT, "--source", "--record"])
        assert result.exit_code == 1
        assert "Confirmation required" in result.output

    def test_confirm_without_record_warns(self, runner):
        """--confirm alone records nothing and says so."""
        result = runner.invoke(app, ["route", SHORTER_TEXT, "--source", "--confirm"])
        assert result.exit_code == 0
        assert "only take effect with --record" in result.output
        assert "No outcomes recorded" in runner.invoke(app, ["outcomes", "list"]).output

    def test_record_blocked_reports_error(self, runner):
        """The refusal to record a blocked decision is printed as an error."""
        result = runner.invoke(app, ["--role", "VIEWER", "route", CREATE_TEXT, "--record"])
        assert "Error: Blocked decisions cannot be recorded." in result.output

    def test_bad_stability(self, runner):
        """Unknown stability bands are a usage error."""
        result = runner.invoke(app, ["route", CREATE_TEXT, "--stability", "EXTREME"])
        assert result.exit_code == 2

    def test_stable_editor_executes(self, runner):
        """A stable, auto-apply-eligible pattern executes for an EDITOR."""
        result = runner.invoke(
            app,
            [
                "--role", "EDITOR", "route", CREATE_TEXT,
                "--stability", "HIGH", "--auto-apply-eligible",
            ],
        )
        assert result.exit_code == 0
        assert "EXECUTE" in result.output
        assert "Stable pattern" in result.output


class TestOutcomes:
    """Tests for the outcomes commands."""

    def test_list_empty(self, runner):
        """An empty ledger says so."""
        result = runner.invoke(app, ["outcomes", "list"])
        assert result.exit_code == 0
        assert "No outcomes recorded." in result.output

    def test_record_then_list_and_show(self, runner):
        """Recorded outcomes are listed and shown."""
        intent_id = record(runner, CREATE_TEXT)

        listed = runner.invoke(app, ["outcomes", "list"])
        assert listed.exit_code == 0
        assert intent_id in listed.output
        assert "PENDING" in listed.output

        shown = runner.invoke(app, ["outcomes", "show", intent_id])
        assert shown.exit_code == 0
        assert "EXPLICIT_CREATE/EXECUTE" in shown.output

    def test_show_missing(self, runner):
        """Unknown outcomes exit with 1."""
        result = runner.invoke(app, ["outcomes", "show", "intent-nope"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_signal(self, runner):
        """Signals update the verdict."""
        intent_id = record(runner, CREATE_TEXT)
        result = runner.invoke(app, ["outcomes", "signal", intent_id, "undo_within_window"])
        assert result.exit_code == 0
        assert "UNDO_WITHIN_WINDOW" in result.output

        listed = runner.invoke(app, ["outcomes", "list"])
        assert "NEGATIVE" in listed.output

    def test_signal_missing(self, runner):
        """Signals for unknown outcomes exit with 1."""
        result = runner.invoke(app, ["outcomes", "signal", "intent-nope", "EDIT_AFTER"])
        assert result.exit_code == 1

    def test_signal_bad_type(self, runner):
        """Unknown signal types are a usage error."""
        result = runner.invoke(app, ["outcomes", "signal", "intent-nope", "SHRUG"])
        assert result.exit_code == 2

    def test_cleanup_and_clear(self, runner):
        """cleanup keeps fresh outcomes; clear removes them."""
        record(runner, CREATE_TEXT)
        cleanup = runner.invoke(app, ["outcomes", "cleanup"])
        assert "Removed 0 expired outcome(s)" in cleanup.output

        cleared = runner.invoke(app, ["outcomes", "clear", "--yes"])
        assert cleared.exit_code == 0
        assert "Outcomes cleared" in cleared.output
        assert "No outcomes recorded." in runner.invoke(app, ["outcomes", "list"]).output


class TestPrefs:
    """Tests for the prefs commands."""

    def test_list_empty(self, runner):
        """No preferences at first."""
        result = runner.invoke(app, ["prefs", "list"])
        assert result.exit_code == 0
        assert "No preferences recorded." in result.output

    def test_choice_records_preference(self, runner):
        """Picking EDIT_IN_PLACE is observed as a preference."""
        record(runner, SHORTER_TEXT, "--source", "--choice", "EDIT_IN_PLACE")
        result = runner.invoke(app, ["prefs", "list", "--lang", "en"])
        assert result.exit_code == 0
        assert "prefersEditInPlace" in result.output
        assert "Prefers editing in place" in result.output

    def test_clear(self, runner):
        """clear --yes forgets everything."""
        record(runner, SHORTER_TEXT, "--source", "--choice", "EDIT_IN_PLACE")
        result = runner.invoke(app, ["prefs", "clear", "--yes"])
        assert result.exit_code == 0
        assert "Preferences cleared" in result.output
        assert "No preferences recorded." in runner.invoke(app, ["prefs", "list"]).output


class TestRecover:
    """Tests for the recover command."""

    def test_undo_requires_intent(self, runner):
        """UNDO_LAST_INTENT without --intent exits with 1."""
        result = runner.invoke(app, ["recover", "UNDO_LAST_INTENT"])
        assert result.exit_code == 1
        assert "intent_id" in result.output

    def test_undo(self, runner):
        """Undo marks the outcome negative."""
        intent_id = record(runner, CREATE_TEXT)
        result = runner.invoke(
            app, ["recover", "UNDO_LAST_INTENT", "--intent", intent_id, "--lang", "en"]
        )
        assert result.exit_code == 0
        assert "Undid previous action" in result.output
        assert "NEGATIVE" in runner.invoke(app, ["outcomes", "list"]).output

    def test_reset_all_learning(self, runner):
        """Actions without arguments just confirm."""
        result = runner.invoke(app, ["recover", "reset_all_learning", "--lang", "en"])
        assert result.exit_code == 0
        assert "All learning data cleared" in result.output

    def test_unknown_action(self, runner):
        """Unknown actions are a usage error."""
        result = runner.invoke(app, ["recover", "FORGET_EVERYTHING"])
        assert result.exit_code == 2
