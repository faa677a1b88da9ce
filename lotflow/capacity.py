"""
Station capacity and lot routing.

Route of every lot (one queue per step, processed FIFO by arrival):

  [Stage 1  Stuffer]   s1 h/lot × station-1 machines
        │
  [Stage 2  Tester ]   s2 h/lot ─┐
        │                        ├─ one machine pool, time split by queue share
  [Stage 3  Tuner  ]   s3 h/lot  │
        │                        │
  [Stage 2  Tester ]   s4 h/lot ─┘
        │
     Complete
"""

from __future__ import annotations

import logging
import math
from operator import attrgetter
from typing import Dict, List, Mapping, Tuple

from .config import DEFAULT_LOT_SIZE, HOURS_PER_DAY, PROCESSING_HOURS, ConfigurationError
from .models import ACTIVE_STATIONS, Lot, Policy, Station

logger = logging.getLogger(__name__)

# Stations are processed downstream-first so a lot moved today is never
# picked up again by the station it just joined.
PROCESSING_ORDER: Tuple[Station, ...] = tuple(reversed(ACTIVE_STATIONS))


def processing_times(lot_size: int, strict: bool = False) -> Dict[str, float]:
    """Hours per lot per machine for each step; see ``config.PROCESSING_HOURS``."""
    row = PROCESSING_HOURS.get(lot_size)
    if row is not None:
        return row
    if strict:
        raise ConfigurationError(
            f"no processing times for lot size {lot_size}; known: {sorted(PROCESSING_HOURS)}"
        )
    logger.warning(
        "lot size %s has no processing-time row; using the %s-kit row",
        lot_size, DEFAULT_LOT_SIZE,
    )
    return PROCESSING_HOURS[DEFAULT_LOT_SIZE]


def daily_capacity(policy: Policy, strict: bool = False) -> Dict[Station, float]:
    """
    Lots per day each step could finish with the whole day to itself.

    Each Stage-2 pass is reported as if it had the whole tester pool; the
    two passes share that pool, so see ``cycle_capacity`` for throughput.
    """
    t = processing_times(policy.lot_size, strict)
    pool = policy.station2_machines * HOURS_PER_DAY
    return {
        Station.STAGE1:        policy.station1_machines * HOURS_PER_DAY / t["s1"],
        Station.STAGE2_FIRST:  pool / t["s2"],
        Station.STAGE3:        policy.station3_machines * HOURS_PER_DAY / t["s3"],
        Station.STAGE2_SECOND: pool / t["s4"],
    }


def cycle_capacity(policy: Policy, strict: bool = False) -> Dict[str, float]:
    """Lots per day through each machine pool, Stage 2 counting both passes."""
    t = processing_times(policy.lot_size, strict)
    return {
        "stuffer": policy.station1_machines * HOURS_PER_DAY / t["s1"],
        "tester":  policy.station2_machines * HOURS_PER_DAY / (t["s2"] + t["s4"]),
        "tuner":   policy.station3_machines * HOURS_PER_DAY / t["s3"],
    }


def bottleneck_lots_per_day(policy: Policy, strict: bool = False) -> float:
    return min(cycle_capacity(policy, strict).values())


def plan_processing(
    queue_lengths: Mapping[Station, int],
    policy: Policy,
    strict: bool = False,
) -> Dict[Station, int]:
    """
    Number of lots each step advances today.

    Stages 1 and 3 run at full capacity.  The Stage-2 pool's 24 machine-hours
    per machine are shared between its two passes in proportion to how many
    lots each pass has waiting.
    """
    t = processing_times(policy.lot_size, strict)
    n1 = queue_lengths.get(Station.STAGE1, 0)
    n2 = queue_lengths.get(Station.STAGE2_FIRST, 0)
    n3 = queue_lengths.get(Station.STAGE3, 0)
    n4 = queue_lengths.get(Station.STAGE2_SECOND, 0)

    cap1 = policy.station1_machines * HOURS_PER_DAY / t["s1"]
    cap3 = policy.station3_machines * HOURS_PER_DAY / t["s3"]

    plan = {
        Station.STAGE1:        min(n1, math.floor(cap1)),
        Station.STAGE2_FIRST:  0,
        Station.STAGE3:        min(n3, math.floor(cap3)),
        Station.STAGE2_SECOND: 0,
    }

    demand = n2 + n4
    if demand > 0:
        budget = policy.station2_machines * HOURS_PER_DAY
        plan[Station.STAGE2_FIRST]  = min(n2, math.floor(budget * n2 / demand / t["s2"]))
        plan[Station.STAGE2_SECOND] = min(n4, math.floor(budget * n4 / demand / t["s4"]))
    return plan


def sort_queue(queue) -> List[Lot]:
    """FIFO order; the sort is stable so equal arrivals keep insertion order."""
    return sorted(queue, key=attrgetter("arrival"))


def process_queues(
    queues: Mapping[Station, Tuple[Lot, ...]],
    plan: Mapping[Station, int],
    day: float,
) -> Tuple[Dict[Station, List[Lot]], List[Lot]]:
    """
    Advance the planned number of lots from the front of every queue.

    Returns ``(new_queues, completed_lots)``.  Moved lots join the back of
    their next queue with ``arrival = day``.
    """
    ordered = {s: sort_queue(queues.get(s, ())) for s in ACTIVE_STATIONS}
    completed: List[Lot] = []

    for station in PROCESSING_ORDER:
        count = plan.get(station, 0)
        if count <= 0:
            continue
        queue = ordered[station]
        moving, ordered[station] = queue[:count], queue[count:]
        for lot in moving:
            moved = lot.advance(day)
            if moved.station is Station.COMPLETE:
                completed.append(moved)
            else:
                ordered[moved.station].append(moved)

    return ordered, completed
