"""
Projection: drive the daily step from the decision day to the end of the game.

The run is clocked by a SimPy environment whose time unit is one day, so
callers can advance it a day at a time (for a progress bar) exactly as a
whole run would.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

import simpy

from .capacity import processing_times
from .config import DEFAULT_SETTINGS, WIP, EngineSettings
from .engine import Mode, step
from .finance import finance_purchases
from .metrics import MetricsCollector
from .models import (
    ACTIVE_STATIONS, Change, ChangeType, DailyRecord, FactorySnapshot, InventoryState,
    Job, Lot, Policy, SimulationState, Station,
)

logger = logging.getLogger(__name__)


class WipCeilingExceeded(RuntimeError):
    """Historical queues imply more work in process than is plausible."""

    def __init__(self, lots: int, ceiling: int) -> None:
        super().__init__(f"reconstructed WIP of {lots} lots exceeds the {ceiling}-lot ceiling")
        self.lots = lots
        self.ceiling = ceiling


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


# =============================================================================
# Initial work in process
# =============================================================================

def wip_lot_counts(
    snapshot: FactorySnapshot, policy: Policy, settings: EngineSettings = DEFAULT_SETTINGS,
) -> Dict[Station, int]:
    """
    Lots queued at each step, from the historical average queues (in kits).

    Station 2's queue holds both passes; it is split by each pass's share
    of the per-lot Stage-2 time.
    """
    lot_size = policy.lot_size
    t = processing_times(lot_size, settings.strict_lot_sizes)
    first_share = t["s2"] / (t["s2"] + t["s4"])
    stage2_lots = snapshot.avg_queue2 / lot_size
    return {
        Station.STAGE1:        _round_half_up(snapshot.avg_queue1 / lot_size),
        Station.STAGE2_FIRST:  _round_half_up(stage2_lots * first_share),
        Station.STAGE3:        _round_half_up(snapshot.avg_queue3 / lot_size),
        Station.STAGE2_SECOND: _round_half_up(stage2_lots * (1.0 - first_share)),
    }


def reconstruct_wip(
    snapshot: FactorySnapshot,
    policy: Policy,
    inventory: Optional[InventoryState] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> SimulationState:
    """
    Build the state on ``snapshot.current_day`` from historical aggregates.

    Jobs get start days spaced evenly over the last average lead time;
    the oldest jobs are filled from the most advanced step backwards, so
    each job owns exactly ``lots_per_job`` lots.  Raises
    ``WipCeilingExceeded`` when the implied WIP is implausibly large.
    """
    counts = wip_lot_counts(snapshot, policy, settings)
    total = sum(counts.values())
    if total > settings.wip_ceiling:
        raise WipCeilingExceeded(total, settings.wip_ceiling)

    day = snapshot.current_day
    lots_per_job = policy.lots_per_job
    lead_time = snapshot.avg_lead_time or WIP["default_lead_time"]
    n_jobs = total // lots_per_job

    jobs: Dict[int, Job] = {}
    queues: Dict[Station, List[Lot]] = {s: [] for s in ACTIVE_STATIONS}
    remaining = dict(counts)
    next_job_id, next_lot_id = 1, 1

    for i in range(n_jobs):
        job = Job(next_job_id, day - lead_time + (i / n_jobs) * lead_time,
                  policy.contract, lots_per_job)
        jobs[job.job_id] = job
        next_job_id += 1

        needed = lots_per_job
        for station in reversed(ACTIVE_STATIONS):
            take = min(needed, remaining[station])
            for _ in range(take):
                queues[station].append(Lot(next_lot_id, job.job_id, station, float(day)))
                next_lot_id += 1
            remaining[station] -= take
            needed -= take

    starved = []
    for _ in range(_round_half_up(snapshot.avg_queued_jobs)):
        job = Job(next_job_id, day - WIP["starved_start_offset"], policy.contract, lots_per_job)
        jobs[job.job_id] = job
        starved.append(job.job_id)
        next_job_id += 1

    logger.debug(
        "day %s: reconstructed %d jobs over %d lots %s, %d starved",
        day, n_jobs, total, {s.name: n for s, n in counts.items()}, len(starved),
    )
    return SimulationState(
        day=day,
        cash=snapshot.cash,
        debt=snapshot.debt,
        inventory=inventory or InventoryState(kits=settings.default_inventory),
        jobs=jobs,
        queues={s: tuple(q) for s, q in queues.items()},
        starved=tuple(starved),
        next_job_id=next_job_id,
        next_lot_id=next_lot_id,
    )


# =============================================================================
# Scheduled changes
# =============================================================================

def apply_change(policy: Policy, change: Change) -> Policy:
    """
    The policy in force after *change* is made.

    Raises ``ConfigurationError`` when the result falls outside the
    game's tables.
    """
    if change.kind is ChangeType.CAPACITY:
        return policy.with_machine_added(change.station).validate()
    if change.kind is ChangeType.CONTRACT:
        return replace(policy, contract=change.contract).validate()
    if change.kind is ChangeType.LOT_SIZE:
        return replace(policy, lot_size=change.lot_size).validate()
    # Stage-2 priority has no effect on a proportional time split
    return policy


# =============================================================================
# Driver
# =============================================================================

class Projection:
    """
    One projection run from ``snapshot.current_day`` to the horizon.

    Usage::

        env        = simpy.Environment(initial_time=snapshot.current_day)
        projection = Projection(env, snapshot, policy)
        projection.register_processes()
        env.run(until=projection.horizon + 1)
        series = projection.metrics.records
    """

    def __init__(
        self,
        env: simpy.Environment,
        snapshot: FactorySnapshot,
        policy: Policy,
        *,
        inventory: Optional[InventoryState] = None,
        baseline: Optional[Policy] = None,
        changes: Sequence[Change] = (),
        mode: Mode = Mode.DETAILED,
        settings: EngineSettings = DEFAULT_SETTINGS,
    ) -> None:
        self.env      = env
        self.snapshot = snapshot
        self.policy   = policy
        self.mode     = Mode(mode)
        self.settings = settings
        self.horizon  = settings.horizon_day
        self.metrics  = MetricsCollector()

        # ── Changes keyed by the day they take effect ────────────────────────
        # ("today" means the first simulated day)
        self._scheduled: Dict[int, List[Change]] = {}
        first_day = snapshot.current_day + 1
        for change in changes:
            if change.kind is ChangeType.NONE or change.recommended_day is None:
                continue
            day = max(change.recommended_day, first_day)
            self._scheduled.setdefault(day, []).append(change)

        # Every change must leave a valid policy; fail before simulating
        planned = policy
        for day in sorted(self._scheduled):
            for change in self._scheduled[day]:
                planned = apply_change(planned, change)

        # ── Initial state ─────────────────────────────────────────────────────
        if self.mode is Mode.DETAILED:
            state = reconstruct_wip(snapshot, policy, inventory, settings)
        else:
            state = SimulationState(
                day=snapshot.current_day,
                cash=snapshot.cash,
                debt=snapshot.debt,
                inventory=inventory or InventoryState(kits=settings.default_inventory),
            )

        # Machines bought up front (policy vs the one currently installed)
        self._pending_machine_cost = 0.0
        if baseline is not None:
            plan = finance_purchases(policy, baseline, state.cash, state.debt, settings)
            state = replace(state, cash=plan.cash, debt=plan.debt)
            self._pending_machine_cost = plan.machine_cost + plan.upfront_fee
        self.state = state

    @property
    def days_remaining(self) -> int:
        return max(0, self.horizon - self.snapshot.current_day)

    def _apply_scheduled(self, day: int) -> float:
        """Make today's scheduled changes; returns today's machine spend."""
        spend = 0.0
        for change in self._scheduled.get(day, ()):
            self.policy = apply_change(self.policy, change)
            if change.kind is ChangeType.CAPACITY and change.cost:
                if change.needs_debt:
                    self.state = replace(self.state, debt=self.state.debt + change.cost)
                else:
                    self.state = replace(self.state, cash=self.state.cash - change.cost)
                spend += change.cost
            self.metrics.record_change(day, change.action, change.cost, change.needs_debt)
            logger.debug("day %s: applied %r", day, change.action or change.kind.value)
        return spend

    def daily_cycle(self):
        """Advance one day per time unit until the horizon."""
        while self.env.now < self.horizon:
            yield self.env.timeout(1)
            day = self.env.now

            machine_cost = self._apply_scheduled(day) + self._pending_machine_cost
            self._pending_machine_cost = 0.0

            self.state, record = step(
                self.state, day, self.policy, self.settings,
                machine_cost=machine_cost, mode=self.mode,
            )
            self.metrics.record(record)

    def register_processes(self) -> None:
        """Register the daily cycle.  Call this before ``env.run()``."""
        self.env.process(self.daily_cycle())


@dataclass
class ProjectionResult:
    """Outcome of a projection; an empty ``series`` means it could not be computed."""

    series:          List[DailyRecord]       = field(default_factory=list)
    final_cash:      Optional[float]         = None
    final_debt:      Optional[float]         = None
    kpis:            Dict[str, float]        = field(default_factory=dict)
    applied_changes: List[dict]              = field(default_factory=list)
    error:           Optional[str]           = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_projection(
    snapshot: FactorySnapshot,
    policy: Policy,
    *,
    inventory: Optional[InventoryState] = None,
    baseline: Optional[Policy] = None,
    changes: Sequence[Change] = (),
    mode: Mode = Mode.DETAILED,
    arrival_rate: Optional[float] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
    progress=None,
    task_id=None,
) -> ProjectionResult:
    """
    Run one projection to the horizon.

    The environment is advanced one simulated day at a time so a rich
    progress bar can be updated without threads.
    """
    if arrival_rate is not None:
        settings = replace(settings, arrival_rate=arrival_rate)

    env = simpy.Environment(initial_time=snapshot.current_day)
    try:
        projection = Projection(
            env, snapshot, policy,
            inventory=inventory, baseline=baseline, changes=changes,
            mode=mode, settings=settings,
        )
    except WipCeilingExceeded as exc:
        logger.warning("day %s: projection aborted: %s", snapshot.current_day, exc)
        return ProjectionResult(error=str(exc))

    projection.register_processes()
    for day in range(snapshot.current_day + 1, projection.horizon + 1):
        env.run(until=day + 0.5)
        if progress and task_id is not None:
            progress.advance(task_id, 1)

    metrics = projection.metrics
    final = metrics.final
    logger.debug(
        "projection from day %s (%s): %d days, final cash %s",
        snapshot.current_day, projection.mode.value, len(metrics.records),
        None if final is None else round(final.cash, 2),
    )
    return ProjectionResult(
        series=metrics.records,
        final_cash=final.cash if final else projection.state.cash,
        final_debt=final.debt if final else projection.state.debt,
        kpis=metrics.compute_kpis(),
        applied_changes=metrics.applied_changes,
    )


def final_cash(
    snapshot: FactorySnapshot,
    policy: Policy,
    *,
    inventory: Optional[InventoryState] = None,
    baseline: Optional[Policy] = None,
    mode: Mode = Mode.FAST,
    arrival_rate: Optional[float] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> Optional[float]:
    """Cash on the horizon day, or ``None`` when the run could not be computed."""
    result = run_projection(
        snapshot, policy,
        inventory=inventory, baseline=baseline, mode=mode,
        arrival_rate=arrival_rate, settings=settings,
    )
    return result.final_cash
