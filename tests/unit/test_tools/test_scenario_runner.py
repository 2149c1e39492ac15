# tests/unit/test_tools/test_scenario_runner.py
"""
Unit tests for the scenario runner CLI.

Runs every built-in scenario through a real harness and checks the
parser, report formatting and exit codes.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from tools.scenario_runner import (
    SCENARIOS,
    create_parser,
    format_report,
    main,
    run_scenario,
)
from vtharness.harness.settings import HarnessSettings
from vtharness.time.clock_interface import MILLISECOND, SECOND

# ================================================================
# FIXTURES
# ================================================================


@pytest.fixture
def settings():
    return HarnessSettings(max_cycles=100_000, watchdog_seconds=5.0)


# ================================================================
# SCENARIO TESTS
# ================================================================
class TestScenarios:
    """Each built-in scenario produces its documented timeline."""

    @pytest.mark.asyncio
    async def test_ordering(self, settings):
        report = await run_scenario("ordering", settings)

        assert report["result"]["p3_now"] == 0
        assert report["result"]["resumed"] == ["p2", "p1"]
        assert report["result"]["p1_now"] == 100 * MILLISECOND
        assert [w["participant"] for w in report["wakes"]] == ["p2", "p1"]
        assert report["virtual_time"] == 100 * MILLISECOND

    @pytest.mark.asyncio
    async def test_resleep(self, settings):
        report = await run_scenario("resleep", settings)

        assert report["result"] == {
            "first_wake": 10 * MILLISECOND,
            "second_wake": 20 * MILLISECOND,
        }

    @pytest.mark.asyncio
    async def test_ticker(self, settings):
        report = await run_scenario("ticker", settings)

        assert report["result"]["ticks"] == [250 * MILLISECOND * n for n in range(1, 9)]
        assert report["virtual_time"] == 2 * SECOND

    @pytest.mark.asyncio
    async def test_pingpong(self, settings):
        report = await run_scenario("pingpong", settings)

        assert report["result"]["rtts"] == [40 * MILLISECOND] * 5
        assert report["stats"]["wakes_delivered"] == 10

    @pytest.mark.asyncio
    async def test_unknown_scenario(self, settings):
        with pytest.raises(KeyError):
            await run_scenario("nonexistent", settings)


# ================================================================
# PARSER TESTS
# ================================================================
class TestParser:
    """Test argument parser configuration."""

    def test_all_scenarios_are_choices(self):
        parser = create_parser()

        for name in SCENARIOS:
            assert parser.parse_args([name]).scenario == name

    def test_defaults(self):
        args = create_parser().parse_args(["ordering"])

        assert args.config_dir == "config"
        assert args.log_level is None
        assert args.json is False

    def test_rejects_unknown_scenario(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["bogus"])


# ================================================================
# OUTPUT TESTS
# ================================================================
class TestOutput:
    """Test report formatting and the main entry point."""

    def test_format_report(self):
        report = {
            "scenario": "resleep",
            "virtual_time": 20 * MILLISECOND,
            "result": {"first_wake": 10},
            "wakes": [{"time": 10, "sequence": 0, "participant": "resleep"}],
            "stats": {"cycles": 6, "wakes_delivered": 1, "now_requests": 2},
        }

        text = format_report(report)

        assert "Scenario: resleep" in text
        assert "(0.020s)" in text
        assert "seq=0" in text
        assert "Wakes: 1" in text

    def test_main_prints_text_report(self, temp_config_dir, capsys):
        assert main(["resleep", "--config-dir", str(temp_config_dir), "--log-level", "ERROR"]) == 0

        out = capsys.readouterr().out
        assert "Scenario: resleep" in out

    def test_main_prints_json_report(self, temp_config_dir, capsys):
        assert main(["ordering", "--config-dir", str(temp_config_dir), "--json"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["scenario"] == "ordering"
        assert report["result"]["resumed"] == ["p2", "p1"]

    def test_main_configures_logging_from_config(
        self, write_config_file, temp_config_dir, default_harness_config, capsys
    ):
        """Test that the logging section of harness.yml reaches configure_logging().

        WHY: Log level, directory and format are set per installation.
        """
        default_harness_config["logging"] = {
            "level": "warning",
            "log_dir": str(temp_config_dir / "logs"),
            "json": True,
        }
        write_config_file(default_harness_config)

        with patch("tools.scenario_runner.configure_logging") as configure:
            assert main(["resleep", "--config-dir", str(temp_config_dir)]) == 0

        configure.assert_called_once_with(
            level="warning",
            log_dir=str(temp_config_dir / "logs"),
            json_logs=True,
        )

    def test_log_level_flag_overrides_config(self, temp_config_dir, capsys):
        with patch("tools.scenario_runner.configure_logging") as configure:
            main(["resleep", "--config-dir", str(temp_config_dir), "--log-level", "ERROR"])

        assert configure.call_args.kwargs["level"] == "ERROR"

    def test_main_returns_error_code_on_failure(self, temp_config_dir, capsys):
        with patch(
            "tools.scenario_runner.run_scenario",
            new=AsyncMock(side_effect=RuntimeError("boom")),
        ):
            assert main(["ticker", "--config-dir", str(temp_config_dir)]) == 1

        assert "Scenario failed: boom" in capsys.readouterr().err
