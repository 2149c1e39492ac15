#!/usr/bin/env python3
# tools/scenario_runner.py
"""
Scenario runner - runs built-in demonstration scenarios in virtual time.

Each scenario is ordinary clock-driven control logic. The runner drives
it with a SimulationHarness and prints the wake trace, so the ordering
guarantees of the virtual clock can be inspected by eye:

- ordering: three participants sleeping/reading concurrently
- resleep: a participant sleeping twice in a row
- ticker: a drift-free periodic task
- pingpong: two endpoints exchanging packets over channels with delay
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from typing import Any, Awaitable, Callable

from config.config_loader import ConfigLoader
from vtharness.diagnostics.logging_system import configure_logging
from vtharness.harness.settings import HarnessSettings
from vtharness.harness.simulation_harness import SimulationHarness
from vtharness.time.clock_interface import MILLISECOND, SECOND, periodic
from vtharness.time.virtual_clock import VirtualClock

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------
# Scenarios
# ----------------------------------------------------------------


async def ordering_scenario(harness: SimulationHarness, clock: VirtualClock) -> dict[str, Any]:
    """P1 sleeps 100ms, P2 sleeps 50ms, P3 reads the clock."""
    observed: dict[str, Any] = {"resumed": []}

    async def p1():
        await clock.sleep(100 * MILLISECOND)
        observed["resumed"].append("p1")
        observed["p1_now"] = await clock.now()

    async def p2():
        await clock.sleep(50 * MILLISECOND)
        observed["resumed"].append("p2")

    async def p3():
        observed["p3_now"] = await clock.now()

    workers = [
        harness.spawn(p1(), name="p1"),
        harness.spawn(p2(), name="p2"),
        harness.spawn(p3(), name="p3"),
    ]
    await harness.join(*workers)
    return observed


async def resleep_scenario(harness: SimulationHarness, clock: VirtualClock) -> dict[str, Any]:
    """Sleep 10ms, then sleep 10ms again."""
    await clock.sleep(10 * MILLISECOND)
    first = await clock.now()
    await clock.sleep(10 * MILLISECOND)
    return {"first_wake": first, "second_wake": await clock.now()}


async def ticker_scenario(harness: SimulationHarness, clock: VirtualClock) -> dict[str, Any]:
    """Tick every 250ms for two seconds."""
    ticks = []
    async for t in periodic(clock, 250 * MILLISECOND):
        ticks.append(t)
        if t >= 2 * SECOND:
            break
    return {"ticks": ticks}


async def pingpong_scenario(harness: SimulationHarness, clock: VirtualClock) -> dict[str, Any]:
    """Send five packets over a 20ms one-way link and time each round trip."""
    one_way = 20 * MILLISECOND
    forward = harness.channel("forward")
    reverse = harness.channel("reverse")

    async def responder():
        while True:
            seq = await forward.get()
            if seq is None:
                return
            await clock.sleep(one_way)
            reverse.put(seq)

    harness.spawn(responder(), name="responder")

    rtts = []
    for seq in range(5):
        sent_at = await clock.now()
        await clock.sleep(one_way)
        forward.put(seq)
        ack = await reverse.get()
        if ack != seq:
            raise AssertionError(f"Expected ack {seq}, got {ack}")
        rtts.append(await clock.now() - sent_at)

    forward.put(None)
    return {"rtts": rtts}


ScenarioFn = Callable[[SimulationHarness, VirtualClock], Awaitable[dict[str, Any]]]

SCENARIOS: dict[str, ScenarioFn] = {
    "ordering": ordering_scenario,
    "resleep": resleep_scenario,
    "ticker": ticker_scenario,
    "pingpong": pingpong_scenario,
}


async def run_scenario(name: str, settings: HarnessSettings | None = None) -> dict[str, Any]:
    """Run one named scenario and return its report.

    Raises:
        KeyError: If the scenario name is unknown
    """
    scenario = SCENARIOS[name]
    harness = SimulationHarness(settings, record_trace=True)

    result = await harness.run(lambda clock: scenario(harness, clock), name=name)

    return {
        "scenario": name,
        "virtual_time": harness.clock.time,
        "result": result,
        "wakes": [asdict(record) for record in harness.clock.trace],
        "stats": asdict(harness.clock.stats),
    }


# ----------------------------------------------------------------
# CLI
# ----------------------------------------------------------------


def create_parser():
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="Run a built-in scenario in virtual time",
        epilog="""
Examples:
  python -m tools.scenario_runner ordering
  python -m tools.scenario_runner pingpong --json
  python -m tools.scenario_runner ticker --config-dir config --log-level DEBUG
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("scenario", choices=sorted(SCENARIOS), help="Scenario to run")
    parser.add_argument(
        "--config-dir",
        default="config",
        help="Directory containing harness.yml (default: config)",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    return parser


def format_report(report: dict[str, Any]) -> str:
    lines = [
        "=" * 70,
        f"Scenario: {report['scenario']}",
        f"Virtual time at end: {report['virtual_time']}ns "
        f"({report['virtual_time'] / SECOND:.3f}s)",
        "=" * 70,
    ]
    for wake in report["wakes"]:
        lines.append(
            f"  t={wake['time']:>14}ns  seq={wake['sequence']:<4} {wake['participant']}"
        )
    lines.append("-" * 70)
    lines.append(f"Result: {report['result']}")
    stats = report["stats"]
    lines.append(
        f"Cycles: {stats['cycles']}  Wakes: {stats['wakes_delivered']}  "
        f"Now requests: {stats['now_requests']}"
    )
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    config = ConfigLoader(config_dir=args.config_dir).load_all()
    settings = HarnessSettings.from_config(config)
    logging_cfg = config["logging"]
    configure_logging(
        level=args.log_level or logging_cfg["level"],
        log_dir=logging_cfg["log_dir"],
        json_logs=bool(logging_cfg["json"]),
    )

    try:
        report = asyncio.run(run_scenario(args.scenario, settings))
    except Exception as exc:
        logger.error(f"Scenario {args.scenario} failed: {exc!r}")
        print(f"Scenario failed: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print(format_report(report))
    return 0


if __name__ == "__main__":
    sys.exit(main())
