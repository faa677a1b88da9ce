#!/usr/bin/env python3
"""
LotFlow — Littlefield Technologies Lot-Flow Projection & What-If Planner
=======================================================================

Project each built-in decision point (Early / Mid / End game), or the
factory described by a history file, to the end of the game.  Schedule the
recommended changes around cash and debt availability, print per-scenario
KPI tables, the analytical outlook, the change timeline and a
cross-scenario comparison, then save Matplotlib dashboards to ./reports/.

Usage
-----
    python main.py                        # run all 3 scenarios
    python main.py --scenario mid_game    # single scenario
    python main.py --history data/sample_history.json
    python main.py --mode fast            # bottleneck-rate projection
    python main.py --arrival-rate 12      # override mean jobs per day
    python main.py --optimise --workers 4 # also grid-search each setting
    python main.py --no-charts            # skip chart generation
"""

import argparse
import logging
import time
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional

from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from lotflow.config import ARRIVALS, DEFAULT_SETTINGS, HORIZON_DAY, SCENARIOS, ConfigurationError
from lotflow.engine import Mode
from lotflow.history import history_inputs, load_history
from lotflow.models import Change, FactorySnapshot, InventoryState, Policy
from lotflow.optimise import find_optimal_settings
from lotflow.outlook import profit_outlook
from lotflow.projection import ProjectionResult, run_projection
from lotflow.reports import (
    console,
    plot_comparison_chart,
    plot_projection_dashboard,
    print_banner,
    print_comparison_table,
    print_optimal_settings,
    print_outlook_table,
    print_projection_table,
    print_timeline_table,
)
from lotflow.timeline import expected_uplift, run_timeline, schedule_changes

REPORT_DIR = "reports"

logger = logging.getLogger("lotflow")


@dataclass
class Scenario:
    meta:         Mapping[str, str]
    snapshot:     FactorySnapshot
    policy:       Policy
    changes:      List[Change]
    inventory:    Optional[InventoryState] = None
    arrival_rate: Optional[float]          = None


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
    )


def _load_scenario(scenario_id: str) -> Scenario:
    scen = SCENARIOS[scenario_id]
    snapshot = FactorySnapshot.from_dict(scen["snapshot"])
    policy   = Policy.from_dict(scen["policy"]).validate()
    changes  = [Change.from_dict(c) for c in scen["changes"]]
    return Scenario(scen, snapshot, policy, changes)


def _load_history(path: str) -> Scenario:
    records, transactions, extra = load_history(path)
    inputs = history_inputs(records, transactions,
                            cash=extra.get("cash"), debt=extra.get("debt", 0.0))
    day = inputs.snapshot.current_day
    meta = {
        "label":       extra.get("label", "History"),
        "description": extra.get("description", f"Day {day} from {len(records)} recorded days"),
    }
    changes = [Change.from_dict(c) for c in extra.get("changes", [])]
    return Scenario(meta, inputs.snapshot, inputs.policy, changes,
                    inventory=inputs.inventory, arrival_rate=inputs.arrival_rate)


# ─────────────────────────────────────────────────────────────────────────────
# Main
# ─────────────────────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Littlefield Technologies — Lot-Flow Projection & What-If Planner")
    parser.add_argument("--scenario", choices=list(SCENARIOS.keys()),
                        default=None, help="Run a single scenario (default: all)")
    parser.add_argument("--history", metavar="PATH", default=None,
                        help="Project from a parsed history file (JSON) instead")
    parser.add_argument("--mode", choices=[m.value for m in Mode], default=Mode.DETAILED.value,
                        help="Projection mode for the no-change run (default: detailed)")
    parser.add_argument("--arrival-rate", type=float, default=None,
                        help=f"Mean jobs per day (default: {ARRIVALS['mean_jobs_per_day']}, "
                             "or the recent average with --history)")
    parser.add_argument("--optimise", action="store_true",
                        help="Grid-search the best value of each setting")
    parser.add_argument("--workers", type=int, default=1,
                        help="Processes for the grid search (default: 1)")
    parser.add_argument("--no-charts", action="store_true",
                        help="Skip Matplotlib chart generation")
    parser.add_argument("--verbose", action="store_true",
                        help="Log engine decisions at DEBUG level")
    args = parser.parse_args()

    _setup_logging(args.verbose)
    mode = Mode(args.mode)
    print_banner(mode.value)

    try:
        if args.history:
            loaded = {"history": _load_history(args.history)}
        else:
            scenario_ids = [args.scenario] if args.scenario else list(SCENARIOS.keys())
            loaded = {sid: _load_scenario(sid) for sid in scenario_ids}
    except ConfigurationError as exc:
        logger.error("invalid scenario configuration: %s", exc)
        raise SystemExit(2)
    except (OSError, ValueError, TypeError) as exc:
        logger.error("could not read history %s: %s", args.history, exc)
        raise SystemExit(2)

    # Command line overrides what the history implies
    if args.arrival_rate is not None:
        for scen in loaded.values():
            scen.arrival_rate = args.arrival_rate

    baselines: Dict[str, ProjectionResult] = {}
    timelines: Dict[str, ProjectionResult] = {}
    schedules = {}

    # ── Run projections with a progress bar ──────────────────────────────────
    console.print("[bold]Running projections…[/bold]\n")
    wall_start = time.perf_counter()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(bar_width=35),
        MofNCompleteColumn(),
        TextColumn("days"),
        TimeElapsedColumn(),
        console=console,
        transient=False,
    ) as progress:
        tasks = {}
        for sid, scen in loaded.items():
            label = scen.meta["label"]
            colour = {
                "early_game": "cyan",
                "mid_game":   "yellow",
                "end_game":   "green",
            }.get(sid, "magenta")
            remaining = max(0, HORIZON_DAY - scen.snapshot.current_day)
            tasks[sid] = (
                progress.add_task(f"[{colour}]{label + ' (as is)':<26}[/{colour}]",
                                  total=remaining),
                progress.add_task(f"[{colour}]{label + ' (changes)':<26}[/{colour}]",
                                  total=remaining),
            )

        for sid, scen in loaded.items():
            baseline_task, timeline_task = tasks[sid]

            baselines[sid] = run_projection(
                scen.snapshot, scen.policy, inventory=scen.inventory, mode=mode,
                arrival_rate=scen.arrival_rate, progress=progress, task_id=baseline_task,
            )
            schedules[sid] = schedule_changes(
                scen.changes, scen.snapshot.current_day, scen.snapshot.cash,
                baselines[sid].series,
            )
            try:
                timelines[sid] = run_timeline(
                    scen.snapshot, scen.policy, schedules[sid], inventory=scen.inventory,
                    arrival_rate=scen.arrival_rate, progress=progress, task_id=timeline_task,
                )
            except ConfigurationError as exc:
                logger.error("%s: recommended changes rejected: %s", scen.meta["label"], exc)
                timelines[sid] = ProjectionResult(error=str(exc))

    wall_elapsed = time.perf_counter() - wall_start
    days = sum(len(r.series) for r in baselines.values()) + \
        sum(len(r.series) for r in timelines.values())
    console.print(
        f"\n[dim]All projections finished in {wall_elapsed:.1f}s "
        f"(simulated {days} factory-days)[/dim]\n"
    )

    # ── Print per-scenario tables ─────────────────────────────────────────────
    for sid, scen in loaded.items():
        snapshot, policy = scen.snapshot, scen.policy
        print_projection_table(sid, baselines[sid], scen.meta)

        settings = DEFAULT_SETTINGS
        if scen.arrival_rate is not None:
            settings = replace(settings, arrival_rate=scen.arrival_rate)
        outlook = profit_outlook(snapshot.current_day, snapshot.cash, snapshot.debt,
                                 policy, settings=settings)
        print_outlook_table(outlook, policy.contract)

        base, timeline = baselines[sid], timelines[sid]
        if not timeline.ok:
            uplift = None
        elif mode is Mode.DETAILED:
            uplift = (None if base.final_cash is None or timeline.final_cash is None
                      else timeline.final_cash - base.final_cash)
        else:
            # Compare like with like: both runs in detailed mode
            uplift = expected_uplift(snapshot, policy, schedules[sid], inventory=scen.inventory,
                                     arrival_rate=scen.arrival_rate)
        print_timeline_table(schedules[sid], uplift)

        if args.optimise:
            with console.status(f"Searching settings for {scen.meta['label']}…"):
                optimal = find_optimal_settings(
                    snapshot, policy, inventory=scen.inventory,
                    arrival_rate=scen.arrival_rate, workers=args.workers,
                )
            current = {name: getattr(policy, name) for name in optimal}
            print_optimal_settings(optimal, current)

    # ── Print cross-scenario comparison ──────────────────────────────────────
    if len(baselines) > 1:
        print_comparison_table(baselines)

    # ── Generate Matplotlib dashboards ───────────────────────────────────────
    if not args.no_charts:
        console.print("[bold]Generating charts…[/bold]")
        for sid, scen in loaded.items():
            path = plot_projection_dashboard(timelines[sid], sid, REPORT_DIR, scen.meta)
            if path:
                console.print(f"  [green]✓[/green]  {path}")

        if len(baselines) > 1:
            path = plot_comparison_chart(baselines, REPORT_DIR)
            if path:
                console.print(f"  [green]✓[/green]  {path}")

        console.print()


if __name__ == "__main__":
    main()
