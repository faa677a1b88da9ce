"""
The daily step: advance a ``SimulationState`` by exactly one day.

Detailed mode follows every lot:

  order arrival → release kit-starved jobs → today's arrivals
        → station processing (downstream first) → job completions
        → interest / revenue / reorder / debt sweep → DailyRecord

Fast mode swaps the lot flow for a single bottleneck-rate estimate and is
only meant for ranking candidate policies quickly.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .capacity import plan_processing, process_queues
from .config import DEFAULT_SETTINGS, EngineSettings
from .finance import accrue_interest, contract_revenue, pay_down_debt, settle_day
from .inventory import can_start_job, consume_job, order_cost, receive
from .models import (
    ACTIVE_STATIONS, DailyRecord, Job, Lot, Policy, SimulationState, Station,
)
from .outlook import estimate_lead_time, estimate_throughput, expected_job_revenue
from .rng import poisson

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    DETAILED = "detailed"
    FAST     = "fast"


def arrival_seed(day: float, settings: EngineSettings = DEFAULT_SETTINGS) -> int:
    return int(day * settings.seed_multiplier)


def step(
    state: SimulationState,
    day: float,
    policy: Policy,
    settings: EngineSettings = DEFAULT_SETTINGS,
    *,
    rng_seed: Optional[int] = None,
    arrivals: Optional[int] = None,
    machine_cost: float = 0.0,
    mode: Mode = Mode.DETAILED,
) -> Tuple[SimulationState, DailyRecord]:
    """
    Simulate *day* under *policy* and return ``(new_state, record)``.

    Policy changes scheduled for *day* must already be reflected in
    *policy*; *machine_cost* is only reported, the caller has already
    charged it.  *arrivals* overrides the Poisson draw (used when replaying
    known demand).
    """
    if mode is Mode.FAST:
        return _fast_step(state, day, policy, settings, machine_cost=machine_cost)

    lots_per_job = policy.lots_per_job
    strict = settings.strict_lot_sizes

    jobs: Dict[int, Job] = dict(state.jobs)
    queues: Dict[Station, List[Lot]] = {s: list(state.queues.get(s, ())) for s in ACTIVE_STATIONS}
    starved: List[int] = list(state.starved)
    next_job_id, next_lot_id = state.next_job_id, state.next_lot_id
    accepted = 0

    # ── 1. Material arrival ──────────────────────────────────────────────────
    inventory = receive(state.inventory, day, policy.order_quantity)

    # ── 2. Release kit-starved jobs, oldest first ────────────────────────────
    while starved and can_start_job(inventory, settings):
        job_id = starved.pop(0)
        job = replace(jobs[job_id], start_day=day, total_lots=lots_per_job)
        jobs[job_id] = job
        inventory = consume_job(inventory, settings)
        accepted += 1
        for _ in range(lots_per_job):
            queues[Station.STAGE1].append(Lot(next_lot_id, job_id, Station.STAGE1, day))
            next_lot_id += 1

    # ── 3. Today's arrivals ──────────────────────────────────────────────────
    if arrivals is None:
        seed = rng_seed if rng_seed is not None else arrival_seed(day, settings)
        arrivals = poisson(settings.arrival_rate, seed)

    new_lots: List[Lot] = []
    for index in range(arrivals):
        job = Job(next_job_id, day, policy.contract, lots_per_job)
        jobs[job.job_id] = job
        next_job_id += 1

        if can_start_job(inventory, settings):
            inventory = consume_job(inventory, settings)
            accepted += 1
            # Spread same-day arrivals through the day so FIFO ties are stable
            arrival = day + index / arrivals
            for _ in range(lots_per_job):
                new_lots.append(Lot(next_lot_id, job.job_id, Station.STAGE1, arrival))
                next_lot_id += 1
        else:
            starved.append(job.job_id)

    # ── 4. Station processing; new arrivals queue up afterwards ──────────────
    plan = plan_processing({s: len(q) for s, q in queues.items()}, policy, strict)
    queues, finished = process_queues(queues, plan, day)
    queues[Station.STAGE1].extend(new_lots)

    # ── 5. Job completions and revenue ───────────────────────────────────────
    touched = []
    for lot in finished:
        jobs[lot.job_id] = jobs[lot.job_id].with_completed_lot()
        touched.append(lot.job_id)

    revenue = 0.0
    lead_times: List[float] = []
    for job_id in dict.fromkeys(touched):
        job = jobs[job_id]
        if job.completion_day is None and job.completed_lots == job.total_lots:
            job = job.complete(day)
            jobs[job_id] = job
            lead_times.append(job.lead_time)
            revenue += contract_revenue(job.contract, job.lead_time) / 1000.0

    # ── 6. Finance ───────────────────────────────────────────────────────────
    settlement = settle_day(state.cash, state.debt, revenue, inventory, policy, day, settings)

    new_state = SimulationState(
        day=day,
        cash=settlement.cash,
        debt=settlement.debt,
        inventory=settlement.inventory,
        jobs=jobs,
        queues={s: tuple(q) for s, q in queues.items()},
        starved=tuple(starved),
        next_job_id=next_job_id,
        next_lot_id=next_lot_id,
        completed_lots=state.completed_lots + len(finished),
    )

    # ── 7. Daily record ──────────────────────────────────────────────────────
    waiting = {s: len(q) for s, q in new_state.queues.items()}
    at_station = jobs_by_station(new_state.queues)
    record = DailyRecord(
        day=day,
        revenue=revenue,
        material_cost=settlement.material_cost,
        machine_cost=machine_cost,
        interest=settlement.net_interest,
        debt_interest=settlement.debt_interest,
        cash_interest=settlement.cash_interest,
        debt_payment=settlement.debt_payment,
        profit=revenue + settlement.net_interest - settlement.material_cost,
        debt=settlement.debt,
        cash=settlement.cash,
        arrivals=arrivals,
        jobs_accepted=accepted,
        jobs_completing=len(lead_times),
        jobs_waiting_for_kits=len(starved),
        jobs_in_system=new_state.open_jobs,
        avg_lead_time=sum(lead_times) / len(lead_times) if lead_times else 0.0,
        lots_waiting_s1=waiting[Station.STAGE1],
        lots_waiting_s2=waiting[Station.STAGE2_FIRST],
        lots_waiting_s3=waiting[Station.STAGE3],
        lots_waiting_s4=waiting[Station.STAGE2_SECOND],
        lots_processing_s1=min(waiting[Station.STAGE1], policy.station1_machines),
        lots_processing_s2=min(waiting[Station.STAGE2_FIRST], policy.station2_machines),
        lots_processing_s3=min(waiting[Station.STAGE3], policy.station3_machines),
        jobs_at_s1=at_station[Station.STAGE1],
        jobs_at_s2=at_station[Station.STAGE2_FIRST],
        jobs_at_s3=at_station[Station.STAGE3],
        jobs_at_s4=at_station[Station.STAGE2_SECOND],
        inventory=settlement.inventory.kits,
        reorder_point=policy.reorder_point,
        order_in_transit=settlement.inventory.order_in_transit,
        contract=policy.contract,
    )
    logger.debug(
        "day %s: %d arrivals, %d accepted, %d jobs done, revenue %.2f, cash %.2f",
        day, arrivals, accepted, len(lead_times), revenue, settlement.cash,
    )
    return new_state, record


def jobs_by_station(queues) -> Dict[Station, int]:
    """
    Count each open job once, at the station holding most of its lots.
    Ties go to the station further down the route.
    """
    per_job: Dict[int, Counter] = {}
    for station in ACTIVE_STATIONS:
        for lot in queues.get(station, ()):
            per_job.setdefault(lot.job_id, Counter())[station] += 1

    counts = {s: 0 for s in ACTIVE_STATIONS}
    for tally in per_job.values():
        top = max(tally.values())
        station = max(s for s, n in tally.items() if n == top)
        counts[station] += 1
    return counts


def _fast_step(
    state: SimulationState,
    day: float,
    policy: Policy,
    settings: EngineSettings,
    *,
    machine_cost: float = 0.0,
) -> Tuple[SimulationState, DailyRecord]:
    """
    Single-rate approximation: every day finishes the same number of jobs,
    limited by demand and the bottleneck pool's working rate, each earning
    its expected revenue over the estimated lead-time spread.
    """
    kits_per_job = settings.kits_per_job
    jobs_per_day = estimate_throughput(policy, settings)

    inventory = state.inventory
    quantity = policy.order_quantity
    if quantity > 0:
        # Replenishment assumed continuous; its cost is spread over the days
        material_cost = jobs_per_day * kits_per_job / quantity * order_cost(quantity, settings)
    else:
        jobs_per_day = min(jobs_per_day, inventory.kits / kits_per_job)
        inventory = replace(inventory, kits=inventory.kits - jobs_per_day * kits_per_job)
        material_cost = 0.0

    lead = estimate_lead_time(policy, jobs_per_day, settings)
    revenue = jobs_per_day * expected_job_revenue(policy.contract, lead) / 1000.0

    earned, charged = accrue_interest(state.cash, state.debt, settings)
    net_interest = earned - charged
    cash = state.cash + revenue + net_interest - material_cost
    cash, debt, payment = pay_down_debt(cash, state.debt, settings.cash_buffer)

    new_state = replace(state, day=day, cash=cash, debt=debt, inventory=inventory)
    record = DailyRecord(
        day=day,
        revenue=revenue,
        material_cost=material_cost,
        machine_cost=machine_cost,
        interest=net_interest,
        debt_interest=charged,
        cash_interest=earned,
        debt_payment=payment,
        profit=revenue + net_interest - material_cost,
        debt=debt,
        cash=cash,
        inventory=inventory.kits,
        reorder_point=policy.reorder_point,
        contract=policy.contract,
    )
    return new_state, record
