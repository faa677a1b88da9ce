"""
Change timeline: decide when each recommended change can be made, then
project the game with those changes applied on their days.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from .config import DEFAULT_SETTINGS, PRIORITY_RANK, EngineSettings
from .engine import Mode
from .models import Change, DailyRecord, FactorySnapshot, InventoryState, Policy
from .projection import ProjectionResult, run_projection

logger = logging.getLogger(__name__)


def _first_affordable_day(series: Sequence[DailyRecord], cost: float) -> Optional[int]:
    for rec in series:
        if rec.cash >= cost:
            return int(rec.day)
    return None


def _schedule_one(
    change: Change,
    current_day: int,
    cash: float,
    series: Sequence[DailyRecord],
    settings: EngineSettings,
) -> Change:
    debt_day = settings.debt_available_day

    def at(day: int, *, awaiting_cash: bool = False, needs_debt: bool = False) -> Change:
        return replace(
            change,
            recommended_day=day,
            days_to_wait=max(0, day - current_day),
            awaiting_cash=awaiting_cash,
            needs_debt=needs_debt,
        )

    if change.cost == 0 or cash >= change.cost:
        return at(current_day)

    affordable = _first_affordable_day(series, change.cost)

    if current_day >= debt_day:
        # Waiting a little for cash is cheaper than borrowing
        if affordable is not None and affordable - current_day <= settings.max_wait_days:
            return at(affordable, awaiting_cash=True)
        return at(current_day, needs_debt=True)

    if affordable is not None and affordable < debt_day:
        return at(affordable, awaiting_cash=True)
    return at(debt_day, needs_debt=True)


def schedule_changes(
    changes: Sequence[Change],
    current_day: int,
    cash: float,
    series: Sequence[DailyRecord],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> List[Change]:
    """
    Attach a recommended day to every change.

    Free changes and changes current cash can cover happen today.  Paid
    changes otherwise wait for the first projected day with enough cash,
    borrowing instead when debt is available and that day is too far off.
    Before debt becomes available, a change cash cannot cover in time is
    pushed to the debt-availability day.  *series* is the no-change
    projection from *current_day*.

    The result is ordered by recommended day, then priority.
    """
    scheduled = [_schedule_one(c, current_day, cash, series, settings) for c in changes]
    scheduled.sort(key=lambda c: (c.recommended_day, PRIORITY_RANK.get(c.priority, 5)))
    for c in scheduled:
        logger.debug(
            "%s -> day %s (wait %d, debt=%s)", c.action or c.kind.value,
            c.recommended_day, c.days_to_wait, c.needs_debt,
        )
    return scheduled


def run_timeline(
    snapshot: FactorySnapshot,
    policy: Policy,
    changes: Sequence[Change],
    *,
    inventory: Optional[InventoryState] = None,
    arrival_rate: Optional[float] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
    progress=None,
    task_id=None,
) -> ProjectionResult:
    """Detailed projection with *changes* (already scheduled) applied on their days."""
    return run_projection(
        snapshot, policy,
        inventory=inventory, changes=changes, mode=Mode.DETAILED,
        arrival_rate=arrival_rate, settings=settings,
        progress=progress, task_id=task_id,
    )


def expected_uplift(
    snapshot: FactorySnapshot,
    policy: Policy,
    changes: Sequence[Change],
    *,
    inventory: Optional[InventoryState] = None,
    arrival_rate: Optional[float] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> Optional[float]:
    """
    Final cash with the scheduled changes minus final cash without them.
    ``None`` when either projection could not be computed.
    """
    baseline = run_projection(
        snapshot, policy, inventory=inventory, mode=Mode.DETAILED,
        arrival_rate=arrival_rate, settings=settings,
    )
    with_changes = run_timeline(
        snapshot, policy, changes,
        inventory=inventory, arrival_rate=arrival_rate, settings=settings,
    )
    if baseline.final_cash is None or with_changes.final_cash is None:
        return None
    return with_changes.final_cash - baseline.final_cash
