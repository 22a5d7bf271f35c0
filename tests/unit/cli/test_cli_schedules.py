"""Unit tests for schedule CLI commands."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from github_explorer.cli.schedules import schedule
from github_explorer.core.schedules import InMemoryScheduleStore


@pytest.fixture
def cli_runner():
    """Create a CLI runner for testing."""
    return CliRunner()


@pytest.fixture
def store():
    store = InMemoryScheduleStore()
    with patch("github_explorer.cli.schedules._store", return_value=store):
        yield store


def create(cli_runner, *extra):
    result = cli_runner.invoke(
        schedule,
        [
            "create",
            "--name",
            "Nightly sitemap",
            "--pipeline",
            "sitemap_generation",
            "--cron",
            "0 4 * * *",
            "--json",
            *extra,
        ],
    )
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


class TestScheduleCreate:
    def test_create_persists(self, cli_runner, store):
        created = create(cli_runner, "-p", "max_urls=100")

        assert created["next_run_at"]
        assert created["parameters"] == {"max_urls": 100}
        assert created["id"] in store._schedules

    def test_create_inactive_has_no_next_run(self, cli_runner, store):
        assert create(cli_runner, "--inactive")["next_run_at"] is None

    def test_create_rejects_bad_cron(self, cli_runner, store):
        result = cli_runner.invoke(
            schedule,
            ["create", "--name", "x", "--pipeline", "github_sync", "--cron", "nope", "--json"],
        )
        assert result.exit_code == 1
        assert "error" in json.loads(result.output)

    def test_create_rejects_bad_timezone(self, cli_runner, store):
        result = cli_runner.invoke(
            schedule,
            [
                "create",
                "--name",
                "x",
                "--pipeline",
                "github_sync",
                "--cron",
                "* * * * *",
                "--timezone",
                "Mars/Olympus",
            ],
        )
        assert result.exit_code == 1


class TestScheduleListGetDelete:
    def test_list_help_shows_options(self, cli_runner):
        result = cli_runner.invoke(schedule, ["list", "--help"])
        assert result.exit_code == 0
        assert "--json" in result.output
        assert "--tz" in result.output

    def test_list_empty(self, cli_runner, store):
        result = cli_runner.invoke(schedule, ["list"])
        assert result.exit_code == 0
        assert "No schedules found." in result.output

    def test_list_json_filters_type(self, cli_runner, store):
        create(cli_runner)
        result = cli_runner.invoke(schedule, ["list", "--json", "--type", "github_sync"])
        assert json.loads(result.output) == []

        result = cli_runner.invoke(schedule, ["list", "--json"])
        assert [s["name"] for s in json.loads(result.output)] == ["Nightly sitemap"]

    def test_list_table(self, cli_runner, store):
        create(cli_runner)
        result = cli_runner.invoke(schedule, ["list", "--tz", "UTC"])
        assert result.exit_code == 0
        assert "Nightly sitemap" in result.output

    def test_get(self, cli_runner, store):
        schedule_id = create(cli_runner)["id"]
        result = cli_runner.invoke(schedule, ["get", schedule_id, "--json"])
        assert json.loads(result.output)["cron_expression"] == "0 4 * * *"

        result = cli_runner.invoke(schedule, ["get", "missing"])
        assert result.exit_code == 1

    def test_delete(self, cli_runner, store):
        schedule_id = create(cli_runner)["id"]

        result = cli_runner.invoke(schedule, ["delete", schedule_id, "--json"])
        assert json.loads(result.output) == {"id": schedule_id, "deleted": True}

        result = cli_runner.invoke(schedule, ["delete", schedule_id, "-y"])
        assert result.exit_code == 1

    def test_delete_asks_for_confirmation(self, cli_runner, store):
        schedule_id = create(cli_runner)["id"]
        result = cli_runner.invoke(schedule, ["delete", schedule_id], input="n\n")
        assert result.exit_code != 0
        assert schedule_id in store._schedules
