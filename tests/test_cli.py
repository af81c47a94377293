"""Integration tests: CLI command smoke tests.

Uses Typer's CliRunner for in-process testing against a temp DuckDB file.
"""
import pytest
from typer.testing import CliRunner

from tipster.cli import app

runner = CliRunner()


class TestCliHelp:
    """Every command must respond to --help without error."""

    _GROUP_COMMANDS = [
        ("score", "match"), ("score", "pending"), ("score", "lock-quotas"), ("score", "void"),
        ("models", "health"), ("models", "re-enable"), ("models", "recover"),
        ("budget", "status"),
        ("stats", "leaderboard"), ("stats", "model"),
        ("scheduler", "start"), ("scheduler", "run"), ("scheduler", "history"),
    ]

    def test_root_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0

    @pytest.mark.parametrize("group,cmd", _GROUP_COMMANDS)
    def test_group_help(self, group, cmd):
        result = runner.invoke(app, [group, cmd, "--help"])
        assert result.exit_code == 0, f"'{group} {cmd} --help' failed: {result.output}"


@pytest.fixture()
def cli_env(tmp_path, monkeypatch):
    """Point settings at a temp database seeded with one finished, locked match."""
    from datetime import timedelta

    from conftest import FakeClock, MODELS
    from tipster import db, pipeline
    from tipster.config import Settings
    from tipster.context import AppContext

    s = Settings(db_path=str(tmp_path / "cli.duckdb"), counter_db_path=str(tmp_path / "counters.db"))
    monkeypatch.setattr("tipster.config.settings", lambda: s)
    monkeypatch.setattr("tipster.context.load_settings", lambda: s)

    clock = FakeClock()
    ctx = AppContext(base_con=db.connect(s.db_path), counters=None, settings=s, clock=clock)
    for m in MODELS:
        pipeline.register_model(ctx, m)
    pipeline.upsert_match(ctx, 7, competition="PL", kickoff=clock() + timedelta(hours=2),
                          home_team="H", away_team="A")
    pipeline.record_prediction(ctx, 7, "alpha", {"home_score": 1, "away_score": 0})
    pipeline.record_prediction(ctx, 7, "bravo", {"home_score": 0, "away_score": 0})
    pipeline.lock_quotas(ctx, 7)
    pipeline.finish_match(ctx, 7, 1, 0)
    ctx.close()
    return s


class TestCliCommands:

    def test_score_match_and_leaderboard(self, cli_env):
        result = runner.invoke(app, ["score", "match", "7"])
        assert result.exit_code == 0, result.output
        assert "scored 2" in result.output

        result = runner.invoke(app, ["stats", "leaderboard"])
        assert result.exit_code == 0, result.output
        assert "alpha" in result.output.lower()

    def test_score_pending(self, cli_env):
        result = runner.invoke(app, ["score", "pending"])
        assert result.exit_code == 0, result.output
        assert "2 predictions scored" in result.output

    def test_models_health_and_re_enable(self, cli_env):
        assert runner.invoke(app, ["models", "health"]).exit_code == 0
        assert runner.invoke(app, ["models", "re-enable", "alpha"]).exit_code == 0
        assert runner.invoke(app, ["models", "re-enable", "nobody"]).exit_code == 1

    def test_budget_status(self, cli_env):
        result = runner.invoke(app, ["budget", "status"])
        assert result.exit_code == 0, result.output
        assert "0/100" in result.output
