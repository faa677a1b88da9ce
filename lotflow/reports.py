"""
Rich console output and Matplotlib dashboard generation.
"""

from __future__ import annotations

import os
from typing import Dict, Mapping, Optional, Sequence

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import CONTRACTS, FACTORY_NAME, HORIZON_DAY, SCENARIOS
from .models import Change, DailyRecord, Station
from .optimise import OptimalSettings
from .outlook import ProfitOutlook
from .projection import ProjectionResult

console = Console()

# Colour palette
SCENARIO_COLORS = {
    "early_game": "#2E86AB",
    "mid_game":   "#F4A261",
    "end_game":   "#2EC4B6",
}
STAGE_COLORS = {
    Station.STAGE1:        "#8B4513",
    Station.STAGE2_FIRST:  "#4682B4",
    Station.STAGE3:        "#DAA520",
    Station.STAGE2_SECOND: "#A23B72",
}
PRIORITY_STYLES = {
    "CRITICAL": "bold red",
    "HIGH":     "yellow",
    "MEDIUM":   "cyan",
    "LOW":      "dim",
    "INFO":     "dim",
}


# ─────────────────────────────────────────────────────────────────────────────
# Banner
# ─────────────────────────────────────────────────────────────────────────────

def print_banner(mode: str = "detailed") -> None:
    lines = [
        f"[bold white]{FACTORY_NAME}[/bold white]",
        "[dim]Stuffer → Tester → Tuner → Tester  ·  60-kit jobs  ·  3 contract tiers[/dim]",
        "",
        "[bold cyan]Lot-Flow Projection & What-If Planner[/bold cyan]",
        f"[dim]Powered by LotFlow v1.0  ·  SimPy clock  ·  {mode} mode  ·  "
        f"horizon day {HORIZON_DAY}[/dim]",
    ]
    console.print(Panel("\n".join(lines), style="bold blue", expand=False))
    console.print()


# ─────────────────────────────────────────────────────────────────────────────
# Per-scenario projection summary
# ─────────────────────────────────────────────────────────────────────────────

def _money(v: float) -> str:
    colour = "green" if v >= 0 else "red"
    return f"[{colour}]${v:>12,.1f}k[/{colour}]"


def print_projection_table(
    scenario_id: str, result: ProjectionResult, meta: Optional[Mapping[str, str]] = None,
) -> None:
    scen = meta or SCENARIOS[scenario_id]
    console.rule(f"[bold]{scen['label']}[/bold]  ·  {scen['description']}")

    if not result.ok:
        console.print(f"[red]Projection unavailable:[/red] {result.error}")
        console.print()
        return

    k = result.kpis
    t = Table(box=box.SIMPLE_HEAD, show_header=True, header_style="bold magenta")
    t.add_column("KPI",        style="cyan",  min_width=32)
    t.add_column("Value",      style="white", justify="right", min_width=16)
    t.add_column("Assessment", style="dim",   min_width=20)

    def row(label, value, assessment=""):
        t.add_row(label, value, assessment)

    # Cash
    row("── Cash ────────────────────────", "", "")
    row("  Final cash",         _money(k["final_cash"]), f"on day {HORIZON_DAY}")
    row("  Final debt",         f"${k['final_debt']:>12,.1f}k",
        "[red]outstanding[/red]" if k["final_debt"] > 0 else "")
    row("  Revenue",            f"${k['total_revenue']:>12,.1f}k", "")
    row("  Material cost",      f"${k['total_material_cost']:>12,.1f}k",
        f"{k['orders_placed']:.0f} orders")
    row("  Machine purchases",  f"${k['total_machine_cost']:>12,.1f}k", "")
    row("  Net interest",       f"${k['net_interest']:>12,.2f}k", "")
    row("  Debt repaid",        f"${k['debt_repaid']:>12,.1f}k", "")

    # Flow
    row("── Flow ────────────────────────", "", "")
    row("  Jobs completed",     f"{k['jobs_completed']:>12,.0f}",
        f"{k['jobs_completed'] / max(1, k['days']):.1f} / day")
    row("  Avg lead time",      f"{k['avg_lead_time']:>10.2f} days", "")
    row("  Avg revenue per job", f"${k['avg_revenue_per_job']:>12,.0f}", "")
    row("  Peak WIP (lots)",    f"{k['peak_wip_lots']:>12,.0f}", "")
    row("  Avg WIP (lots)",     f"{k['avg_wip_lots']:>12,.1f}", "")

    # Material
    row("── Material ────────────────────", "", "")
    row("  Days with kit-starved jobs", f"{k['starved_days']:>12,.0f}",
        "[red]starving[/red]" if k["starved_days"] > 10 else "")
    row("  Lowest inventory (kits)", f"{k['min_inventory']:>12,.0f}", "")

    console.print(t)
    console.print()


# ─────────────────────────────────────────────────────────────────────────────
# Analytical outlook
# ─────────────────────────────────────────────────────────────────────────────

def print_outlook_table(outlook: ProfitOutlook, contract: int) -> None:
    terms = CONTRACTS[contract]
    console.rule("[bold green]Analytical Outlook[/bold green]")

    t = Table(box=box.SIMPLE_HEAD, show_header=True, header_style="bold green")
    t.add_column("Estimate", style="cyan",  min_width=32)
    t.add_column("Value",    style="white", justify="right", min_width=16)
    t.add_column("Note",     style="dim",   min_width=20)

    lead, odds = outlook.lead_time, outlook.odds
    t.add_row("  Jobs per day", f"{outlook.jobs_per_day:>12,.2f}",
              f"{outlook.days_remaining} days left")
    t.add_row("  Lead time", f"{lead.mean:>7.2f} ± {lead.std:.2f}",
              f"promise {terms['promised']:g}d, max {terms['max']:g}d")
    t.add_row("  Revenue per job", f"${outlook.revenue_per_job:>12,.0f}",
              f"of ${terms['revenue']:,.0f}")
    t.add_row("  On time / partial / late",
              f"{odds.on_time:.0%} / {odds.partial:.0%} / {odds.late:.0%}",
              "[red]late jobs earn nothing[/red]" if odds.late > 0.05 else "")
    t.add_row("  Gross revenue",   f"${outlook.gross_revenue:>12,.1f}k", "")
    t.add_row("  Material cost",   f"${outlook.material_cost:>12,.1f}k", "")
    t.add_row("  Interest charged", f"${outlook.interest_charged:>12,.1f}k", "")
    t.add_row("  Interest earned", f"${outlook.interest_earned:>12,.1f}k", "")
    t.add_row("  Net revenue",     _money(outlook.net_revenue),
              f"${outlook.revenue_per_day:,.2f}k / day")

    console.print(t)
    console.print()


# ─────────────────────────────────────────────────────────────────────────────
# Change timeline
# ─────────────────────────────────────────────────────────────────────────────

def print_timeline_table(changes: Sequence[Change], uplift: Optional[float]) -> None:
    console.rule("[bold cyan]Recommended Change Timeline[/bold cyan]")

    t = Table(box=box.SIMPLE_HEAD, show_header=True, header_style="bold cyan")
    t.add_column("Day",      justify="right", min_width=5)
    t.add_column("Priority", min_width=9)
    t.add_column("Action",   style="white", min_width=34)
    t.add_column("Cost",     justify="right", min_width=9)
    t.add_column("Funding",  min_width=16)
    t.add_column("Reason",   style="dim")

    for c in changes:
        if c.awaiting_cash:
            funding = f"wait {c.days_to_wait}d for cash"
        elif c.needs_debt:
            funding = "[red]debt[/red]" + (f" in {c.days_to_wait}d" if c.days_to_wait else "")
        elif c.cost:
            funding = "cash now"
        else:
            funding = "free"
        style = PRIORITY_STYLES.get(c.priority, "white")
        t.add_row(
            str(c.recommended_day),
            f"[{style}]{c.priority}[/{style}]",
            c.action,
            f"${c.cost:,.0f}k" if c.cost else "-",
            funding,
            c.reason,
        )
    console.print(t)

    if uplift is None:
        console.print("  Expected uplift: [dim]unavailable[/dim]")
    else:
        colour = "green" if uplift >= 0 else "red"
        console.print(f"  Expected uplift in final cash: [{colour}]${uplift:+,.1f}k[/{colour}]")
    console.print()


# ─────────────────────────────────────────────────────────────────────────────
# Optimal settings
# ─────────────────────────────────────────────────────────────────────────────

_SETTING_LABELS = {
    "lot_size":          "Lot size (kits)",
    "contract":          "Contract tier",
    "station1_machines": "Stuffer machines",
    "station2_machines": "Tester machines",
    "station3_machines": "Tuner machines",
    "reorder_point":     "Reorder point (kits)",
    "order_quantity":    "Order quantity (kits)",
}


def print_optimal_settings(optimal: OptimalSettings, current: dict) -> None:
    console.rule("[bold green]Best Value per Setting (others held fixed)[/bold green]")

    t = Table(box=box.SIMPLE_HEAD, show_header=True, header_style="bold green")
    t.add_column("Setting",    style="cyan", min_width=24)
    t.add_column("Current",    justify="right", min_width=9)
    t.add_column("Best",       justify="right", min_width=9)
    t.add_column("Final cash", justify="right", min_width=14)

    for name, opt in optimal.items():
        now = current.get(name)
        best = f"{opt.value:,.0f}"
        if now is not None and opt.value != now:
            best = f"[bold yellow]{best}[/bold yellow]"
        cash = "-" if opt.cash is None else f"${opt.cash:,.1f}k"
        t.add_row(_SETTING_LABELS.get(name, name),
                  "-" if now is None else f"{now:,.0f}", best, cash)

    console.print(t)
    console.print()


# ─────────────────────────────────────────────────────────────────────────────
# Cross-scenario comparison table
# ─────────────────────────────────────────────────────────────────────────────

def print_comparison_table(results: Dict[str, ProjectionResult]) -> None:
    console.rule(f"[bold yellow]Scenario Comparison (to day {HORIZON_DAY})[/bold yellow]")

    t = Table(box=box.DOUBLE_EDGE, show_header=True, header_style="bold yellow")
    t.add_column("Metric", style="cyan", min_width=30)

    scen_ids = list(results.keys())
    for sid in scen_ids:
        colour = SCENARIO_COLORS.get(sid, "white")
        t.add_column(
            Text(SCENARIOS[sid]["label"], style=f"bold {colour}"),
            justify="right", min_width=16,
        )

    rows = [
        ("Days projected",        "days",                ","),
        ("Final cash ($k)",       "final_cash",          "f1"),
        ("Final debt ($k)",       "final_debt",          "f1"),
        ("Revenue ($k)",          "total_revenue",       "f1"),
        ("Material cost ($k)",    "total_material_cost", "f1"),
        ("Jobs completed",        "jobs_completed",      ","),
        ("Avg lead time (days)",  "avg_lead_time",       "f2"),
        ("Peak WIP (lots)",       "peak_wip_lots",       ","),
        ("Kit-starved days",      "starved_days",        ","),
    ]

    for label, key, fmt in rows:
        vals = []
        for sid in scen_ids:
            res = results[sid]
            if not res.ok:
                vals.append("[dim]n/a[/dim]")
                continue
            v = res.kpis.get(key, 0)
            if fmt == "f2":
                vals.append(f"{v:.2f}")
            elif fmt == "f1":
                vals.append(f"{v:,.1f}")
            else:
                vals.append(f"{v:,.0f}")
        t.add_row(label, *vals)

    console.print(t)
    console.print()


# ─────────────────────────────────────────────────────────────────────────────
# Matplotlib dashboard
# ─────────────────────────────────────────────────────────────────────────────

def _style_ax(ax, title):
    ax.set_title(title, fontsize=9, fontweight="bold", pad=6)
    ax.tick_params(labelsize=7)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.grid(axis="y", alpha=0.3)


def _series(records: Sequence[DailyRecord], name: str) -> np.ndarray:
    return np.array([getattr(r, name) for r in records], dtype=float)


def plot_projection_dashboard(
    result: ProjectionResult,
    scenario_id: str,
    out_dir: str,
    meta: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Generate a 2×3 matplotlib dashboard for one projection.
    Returns the saved file path, or "" when there is nothing to plot.
    """
    recs = result.series
    if not recs:
        return ""

    scen = meta or SCENARIOS[scenario_id]
    days = _series(recs, "day")
    colour = SCENARIO_COLORS.get(scenario_id, "#2E86AB")

    fig, axes = plt.subplots(2, 3, figsize=(15, 8))
    fig.suptitle(
        f"{FACTORY_NAME}  ·  {scen['label']}\n"
        f"{scen['description']}",
        fontsize=11, fontweight="bold", y=1.01,
    )
    plt.subplots_adjust(hspace=0.45, wspace=0.35)

    # ── (0,0) Cash and debt ───────────────────────────────────────────────
    ax = axes[0][0]
    ax.plot(days, _series(recs, "cash"), color=colour, linewidth=1.6, label="Cash")
    ax.plot(days, _series(recs, "debt"), color="#E63946", linewidth=1.2,
            linestyle="--", label="Debt")
    for change in result.applied_changes:
        ax.axvline(change["day"], color="grey", linewidth=0.6, alpha=0.6)
    ax.set_ylabel("$k", fontsize=8)
    ax.set_xlabel("Day", fontsize=8)
    ax.legend(fontsize=6)
    _style_ax(ax, "Cash & Debt")

    # ── (0,1) Daily revenue, 7-day rolling mean ────────────────────────────
    ax = axes[0][1]
    revenue = _series(recs, "revenue")
    ax.bar(days, revenue, color=colour, alpha=0.45, width=0.9, label="Daily")
    if len(revenue) >= 7:
        rolling = np.convolve(revenue, np.ones(7) / 7, mode="valid")
        ax.plot(days[6:], rolling, color="#1D3557", linewidth=1.4, label="7-day mean")
    ax.set_ylabel("$k / day", fontsize=8)
    ax.set_xlabel("Day", fontsize=8)
    ax.legend(fontsize=6)
    _style_ax(ax, "Daily Revenue")

    # ── (0,2) Lots waiting by stage ────────────────────────────────────────
    ax = axes[0][2]
    stacks = [
        (Station.STAGE1,        _series(recs, "lots_waiting_s1")),
        (Station.STAGE2_FIRST,  _series(recs, "lots_waiting_s2")),
        (Station.STAGE3,        _series(recs, "lots_waiting_s3")),
        (Station.STAGE2_SECOND, _series(recs, "lots_waiting_s4")),
    ]
    ax.stackplot(days, *[vals for _, vals in stacks],
                 labels=[s.label for s, _ in stacks],
                 colors=[STAGE_COLORS[s] for s, _ in stacks], alpha=0.8)
    ax.set_ylabel("Lots", fontsize=8)
    ax.set_xlabel("Day", fontsize=8)
    ax.legend(fontsize=6, loc="upper right")
    _style_ax(ax, "Work in Process by Stage")

    # ── (1,0) Kit inventory vs reorder point ───────────────────────────────
    ax = axes[1][0]
    ax.plot(days, _series(recs, "inventory"), color="#708090", linewidth=1.4, label="Kits")
    ax.plot(days, _series(recs, "reorder_point"), color="#E63946", linewidth=0.8,
            linestyle="--", label="Reorder point")
    orders = days[_series(recs, "material_cost") > 0]
    if len(orders):
        ax.scatter(orders, np.zeros(len(orders)), marker="^", color="#F18F01",
                   s=14, label="Order placed", zorder=3)
    ax.set_ylabel("Kits", fontsize=8)
    ax.set_xlabel("Day", fontsize=8)
    ax.legend(fontsize=6)
    _style_ax(ax, "Kit Inventory")

    # ── (1,1) Lead time of completed jobs ──────────────────────────────────
    ax = axes[1][1]
    lead = _series(recs, "avg_lead_time")
    done = _series(recs, "jobs_completing") > 0
    ax.plot(days[done], lead[done], color=colour, linewidth=1.2, marker=".", markersize=3)
    # Contract bounds follow the tier in force each day
    tiers = [CONTRACTS[int(c)] for c in _series(recs, "contract")]
    ax.step(days, [t["promised"] for t in tiers], where="post", color="green",
            linewidth=0.8, linestyle="--", alpha=0.7, label="Promised")
    ax.step(days, [t["max"] for t in tiers], where="post", color="red",
            linewidth=0.8, linestyle="--", alpha=0.7, label="Max")
    ax.set_ylabel("Days", fontsize=8)
    ax.set_xlabel("Day", fontsize=8)
    ax.legend(fontsize=6)
    _style_ax(ax, "Lead Time of Completed Jobs")

    # ── (1,2) Jobs in / out ────────────────────────────────────────────────
    ax = axes[1][2]
    ax.plot(days, np.cumsum(_series(recs, "jobs_accepted")), color="#2E86AB",
            linewidth=1.4, label="Started")
    ax.plot(days, np.cumsum(_series(recs, "jobs_completing")), color="#2EC4B6",
            linewidth=1.4, label="Completed")
    ax.plot(days, _series(recs, "jobs_waiting_for_kits"), color="#E63946",
            linewidth=1.0, linestyle=":", label="Waiting for kits")
    ax.set_ylabel("Jobs", fontsize=8)
    ax.set_xlabel("Day", fontsize=8)
    ax.legend(fontsize=6)
    _style_ax(ax, "Job Flow (cumulative)")

    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, f"dashboard_{scenario_id}.png")
    fig.savefig(path, dpi=130, bbox_inches="tight")
    plt.close(fig)
    return path


def plot_comparison_chart(results: Dict[str, ProjectionResult], out_dir: str) -> str:
    """
    Side-by-side bar chart comparing the scenarios on 6 key KPIs.
    Returns the saved file path.
    """
    scen_ids = [s for s, r in results.items() if r.ok]
    labels   = [SCENARIOS[s]["label"] for s in scen_ids]
    colors   = [SCENARIO_COLORS.get(s, "#2E86AB") for s in scen_ids]

    metrics_to_compare = [
        ("final_cash",          "Final Cash ($k)"),
        ("total_revenue",       "Revenue ($k)"),
        ("jobs_completed",      "Jobs Completed"),
        ("avg_lead_time",       "Avg Lead Time\n(days)"),
        ("peak_wip_lots",       "Peak WIP (lots)"),
        ("starved_days",        "Kit-Starved Days"),
    ]

    fig, axes = plt.subplots(2, 3, figsize=(14, 7))
    fig.suptitle(
        f"{FACTORY_NAME}  ·  Scenario Comparison to Day {HORIZON_DAY}",
        fontsize=12, fontweight="bold",
    )
    plt.subplots_adjust(hspace=0.55, wspace=0.40)

    for idx, (key, title) in enumerate(metrics_to_compare):
        ax   = axes[idx // 3][idx % 3]
        vals = [results[s].kpis.get(key, 0) for s in scen_ids]
        bars = ax.bar(labels, vals, color=colors, alpha=0.85, edgecolor="white")

        for bar, v in zip(bars, vals):
            fmt = f"{v:,.0f}" if abs(v) >= 100 else f"{v:.1f}"
            ax.text(
                bar.get_x() + bar.get_width() / 2,
                bar.get_height() * 1.01,
                fmt, ha="center", va="bottom", fontsize=7,
            )

        ax.set_xticks(range(len(labels)))
        ax.set_xticklabels(labels, fontsize=7, rotation=15, ha="right")
        _style_ax(ax, title)

    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, "scenario_comparison.png")
    fig.savefig(path, dpi=130, bbox_inches="tight")
    plt.close(fig)
    return path
