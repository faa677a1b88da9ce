"""
Historical inputs: turn already-parsed daily history and the settings
transaction log into the snapshot, policy and inventory a projection starts
from.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import CONTRACTS, DEFAULT_SETTINGS, KITS_PER_JOB, MACHINE_COSTS, MATERIAL, EngineSettings
from .inventory import order_cost
from .models import FactorySnapshot, InventoryState, Policy

logger = logging.getLogger(__name__)

_STATION_RE = re.compile(r"Station (\d+)")


@dataclass(frozen=True)
class HistoricalDay:
    """One day of the game's exported history (queues in kits)."""

    day:           int
    queued_jobs:   float = 0.0
    jobs_accepted: float = 0.0
    queue1:        float = 0.0
    util1:         float = 0.0
    machines1:     float = 0.0
    queue2:        float = 0.0
    util2:         float = 0.0
    machines2:     float = 0.0
    queue3:        float = 0.0
    util3:         float = 0.0
    machines3:     float = 0.0
    jobs_out:      float = 0.0
    revenue:       float = 0.0
    lead_time:     float = 0.0
    cash_balance:  float = 0.0


@dataclass(frozen=True)
class Transaction:
    """A settings change from the game's transaction log; *day* may be fractional."""

    day:       float
    parameter: str
    value:     float


# ── Settings over time ───────────────────────────────────────────────────────

def _apply_transaction(policy: Policy, t: Transaction) -> Policy:
    param = t.parameter
    if "machine count" in param:
        match = _STATION_RE.search(param)
        if match and int(match.group(1)) in MACHINE_COSTS:
            return policy.with_machines(int(match.group(1)), int(t.value))
        return policy
    if "Reorder point" in param:
        return replace(policy, reorder_point=round(t.value))
    if "Reorder quantity" in param:
        return replace(policy, order_quantity=round(t.value))
    if "Lots per job" in param or "Lots per order" in param:
        if t.value > 0:
            return replace(policy, lot_size=round(KITS_PER_JOB / t.value))
        return policy
    logger.debug("ignoring transaction %r on day %s", param, t.day)
    return policy


def settings_at_day(
    transactions: Sequence[Transaction], day: float, defaults: Policy = Policy(),
) -> Policy:
    """Policy in force on *day*: every transaction made before the end of that day."""
    policy = defaults
    for t in sorted(transactions, key=lambda t: t.day):
        if t.day < day + 1:
            policy = _apply_transaction(policy, t)
    return policy


def latest_settings(transactions: Sequence[Transaction], defaults: Policy = Policy()) -> Policy:
    policy = defaults
    for t in sorted(transactions, key=lambda t: t.day):
        policy = _apply_transaction(policy, t)
    return policy


# ── Decision-day snapshot ────────────────────────────────────────────────────

def summarize_history(
    records: Sequence[HistoricalDay], cash: float, debt: float = 0.0, window: int = 14,
) -> FactorySnapshot:
    """Averages over the last *window* days, as of the last recorded day."""
    if not records:
        raise ValueError("no historical records to summarize")

    recent = records[-window:]

    def col(name: str) -> np.ndarray:
        return np.array([getattr(r, name) for r in recent], dtype=float)

    lead = col("lead_time")
    return FactorySnapshot(
        current_day=records[-1].day,
        cash=cash,
        debt=debt,
        avg_lead_time=float(lead.mean()),
        max_lead_time=float(lead.max()),
        avg_queued_jobs=float(col("queued_jobs").mean()),
        avg_queue1=float(col("queue1").mean()),
        avg_queue2=float(col("queue2").mean()),
        avg_queue3=float(col("queue3").mean()),
        avg_util1=float(col("util1").mean()),
        avg_util2=float(col("util2").mean()),
        avg_util3=float(col("util3").mean()),
    )


def arrival_rate(records: Sequence[HistoricalDay], window: int = 14) -> float:
    """Mean jobs accepted per day over the last *window* days."""
    if not records:
        raise ValueError("no historical records to summarize")
    return float(np.mean([r.jobs_accepted for r in records[-window:]]))


# ── Material replay ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ReplayDay:
    day:           int
    cash:          float
    revenue:       float
    material_cost: float
    machine_cost:  float
    interest:      float
    inventory:     float
    reorder_point: float
    order_placed:  bool
    queued_jobs:   int


@dataclass
class MaterialReplay:
    inventory: InventoryState
    series:    List[ReplayDay] = field(default_factory=list)


def replay_materials(
    records: Sequence[HistoricalDay],
    transactions: Sequence[Transaction] = (),
    defaults: Policy = Policy(),
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> MaterialReplay:
    """
    Replay the game's kit usage day by day to recover the inventory
    position on the last recorded day.

    Each day: land any order due, start queued jobs then today's
    accepted jobs while kits last, and reorder against cash from
    completed-job revenue.  Orders use the supplier lead time the game
    actually showed, and the running cash pays for machines as they were
    bought.
    """
    kits = MATERIAL["replay_start_inventory"]
    in_transit, arrival_day = False, 0.0
    queued = 0
    running_cash = 0.0
    lead_time = settings.historical_lead_time
    previous = defaults
    series: List[ReplayDay] = []

    for d in records:
        policy = settings_at_day(transactions, d.day, defaults)
        quantity = max(0, policy.order_quantity)
        reorder_point = max(0, policy.reorder_point)
        cost = order_cost(quantity, settings)

        machine_cost = 0.0
        for station, price in MACHINE_COSTS.items():
            extra = policy.machines(station) - previous.machines(station)
            if extra > 0:
                machine_cost += extra * price
        previous = policy

        revenue = d.jobs_out * CONTRACTS[policy.contract]["revenue"] / 1000.0
        interest = running_cash * settings.daily_cash_rate
        cash_after_revenue = running_cash + interest + revenue

        if in_transit and d.day >= arrival_day:
            kits += quantity
            in_transit = False

        # Jobs already waiting for kits go first
        from_queue = min(queued, int(kits // KITS_PER_JOB))
        kits -= from_queue * KITS_PER_JOB
        queued -= from_queue

        accepted = int(d.jobs_accepted)
        started = min(accepted, int(kits // KITS_PER_JOB))
        kits -= started * KITS_PER_JOB
        queued += accepted - started

        material_cost = 0.0
        placed = (kits <= reorder_point and not in_transit
                  and cash_after_revenue >= cost and quantity > 0)
        if placed:
            material_cost = cost
            in_transit, arrival_day = True, d.day + lead_time
            logger.debug("day %s: replayed order of %s kits", d.day, quantity)

        running_cash = cash_after_revenue - material_cost - machine_cost
        series.append(ReplayDay(
            day=d.day, cash=running_cash, revenue=revenue, material_cost=material_cost,
            machine_cost=machine_cost, interest=interest, inventory=kits,
            reorder_point=reorder_point, order_placed=placed, queued_jobs=queued,
        ))

    return MaterialReplay(
        inventory=InventoryState(kits=kits, order_in_transit=in_transit,
                                 order_arrival_day=arrival_day),
        series=series,
    )


# ── Projection inputs ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class HistoryInputs:
    """Everything a projection needs, recovered from the game's history."""

    snapshot:     FactorySnapshot
    policy:       Policy
    inventory:    InventoryState
    arrival_rate: float


def history_inputs(
    records: Sequence[HistoricalDay],
    transactions: Sequence[Transaction] = (),
    cash: Optional[float] = None,
    debt: float = 0.0,
    window: int = 14,
    defaults: Policy = Policy(),
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> HistoryInputs:
    """
    Decision-day snapshot, settings in force, replayed kit position and
    recent demand.  *cash* defaults to the last recorded cash balance.
    """
    records = sorted(records, key=lambda r: r.day)
    if not records:
        raise ValueError("no historical records to summarize")
    if cash is None:
        cash = records[-1].cash_balance

    return HistoryInputs(
        snapshot=summarize_history(records, cash, debt, window),
        policy=latest_settings(transactions, defaults).validate(),
        inventory=replay_materials(records, transactions, defaults, settings).inventory,
        arrival_rate=arrival_rate(records, window),
    )


def load_history(path: str) -> Tuple[List[HistoricalDay], List[Transaction], dict]:
    """
    Read an already-parsed history file.

    The JSON holds ``records`` (``HistoricalDay`` fields), ``transactions``
    (``day`` / ``parameter`` / ``value``) and optionally ``cash``, ``debt``,
    ``label``, ``description`` and ``changes``.  Everything except the two
    lists comes back in the third element.
    """
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    records = [HistoricalDay(**r) for r in data.pop("records", [])]
    transactions = [Transaction(**t) for t in data.pop("transactions", [])]
    logger.debug("loaded %d days and %d transactions from %s",
                 len(records), len(transactions), path)
    return records, transactions, data
