from collections import Counter
from dataclasses import replace

import pytest

from lotflow.config import DEFAULT_SETTINGS
from lotflow.engine import Mode, arrival_seed, jobs_by_station, step
from lotflow.models import InventoryState, Job, Lot, Policy, SimulationState, Station
from lotflow.rng import poisson


def _run(state, policy, days, **kw):
    states, records = [state], []
    for day in range(int(state.day) + 1, int(state.day) + days + 1):
        state, rec = step(state, day, policy, **kw)
        states.append(state)
        records.append(rec)
    return states, records


# ── Invariants over a detailed run ───────────────────────────────────────────

@pytest.fixture
def detailed_run(stocked_state, policy):
    start = replace(stocked_state, inventory=InventoryState(kits=1000.0))
    return _run(start, policy, 40)


def test_lot_conservation(detailed_run):
    states, _ = detailed_run
    for state in states:
        per_job = Counter(lot.job_id for q in state.queues.values() for lot in q)
        for job in state.jobs.values():
            if job.job_id in state.starved:
                assert per_job[job.job_id] == 0
            else:
                assert per_job[job.job_id] + job.completed_lots == job.total_lots


def test_lots_never_move_backwards(detailed_run):
    states, _ = detailed_run
    for before, after in zip(states, states[1:]):
        old = {lot.lot_id: lot.station for q in before.queues.values() for lot in q}
        new = {lot.lot_id: lot.station for q in after.queues.values() for lot in q}
        for lot_id, station in new.items():
            if lot_id in old:
                assert station >= old[lot_id]


def test_inventory_debt_and_orders(detailed_run):
    states, records = detailed_run
    assert all(s.inventory.kits >= 0 for s in states)
    assert all(s.debt >= 0 for s in states)
    order_days = [r.day for r in records if r.material_cost > 0]
    assert order_days, "stock of 1000 kits should trigger a reorder"
    for a, b in zip(order_days, order_days[1:]):
        assert b - a >= DEFAULT_SETTINGS.material_lead_time


def test_input_state_is_not_mutated(stocked_state, policy):
    before = (stocked_state.cash, dict(stocked_state.queues), stocked_state.inventory)
    step(stocked_state, 1, policy)
    assert (stocked_state.cash, dict(stocked_state.queues), stocked_state.inventory) == before


# ── Arrivals ──────────────────────────────────────────────────────────────────

def test_arrivals_are_deterministic(stocked_state, policy):
    _, first = _run(stocked_state, policy, 15)
    _, second = _run(stocked_state, policy, 15)
    assert first == second


def test_default_seed_is_day_times_multiplier(stocked_state, policy):
    _, rec = step(stocked_state, 9, policy)
    assert arrival_seed(9) == 9 * 137
    assert rec.arrivals == poisson(DEFAULT_SETTINGS.arrival_rate, 9 * 137)


def test_same_day_arrivals_keep_order(stocked_state):
    policy = Policy(lot_size=60, station1_machines=1)
    state, _ = step(stocked_state, 1, policy, arrivals=4)
    # one lot per job; today's arrivals queue up after processing
    queue = state.queues[Station.STAGE1]
    assert [lot.job_id for lot in queue] == [1, 2, 3, 4]
    assert [lot.arrival for lot in queue] == [1.0, 1.25, 1.5, 1.75]


# ── Kit starvation ────────────────────────────────────────────────────────────

def test_starvation_then_release():
    policy = Policy(lot_size=60)
    empty = SimulationState(day=0, cash=0.0, inventory=InventoryState(kits=0.0))

    starved, rec = step(empty, 1, policy, arrivals=2)
    assert starved.starved == (1, 2)
    assert rec.jobs_waiting_for_kits == 2
    assert starved.wip_lots == 0

    incoming = replace(
        starved,
        inventory=InventoryState(kits=0.0, order_in_transit=True, order_arrival_day=2.0),
    )
    released, rec = step(incoming, 2, policy, arrivals=0)
    assert released.starved == ()
    assert rec.jobs_accepted == 2
    assert released.wip_lots == 2
    assert released.inventory.kits == 7200.0 - 120.0
    assert all(released.jobs[j].start_day == 2 for j in (1, 2))


def test_partial_stock_starves_until_order_lands():
    policy = Policy(lot_size=60)
    short = SimulationState(day=0, cash=0.0, inventory=InventoryState(kits=50.0))

    starved, rec = step(short, 1, policy, arrivals=1)
    assert starved.starved == (1,)
    assert starved.inventory.kits == 50.0
    assert rec.jobs_accepted == 0

    incoming = replace(
        starved,
        inventory=InventoryState(kits=50.0, order_in_transit=True, order_arrival_day=2.0),
    )
    released, rec = step(incoming, 2, policy, arrivals=0)
    assert released.starved == ()
    assert rec.jobs_accepted == 1
    assert released.inventory.kits == 50.0 + 7200.0 - 60.0


# ── Completions and revenue ───────────────────────────────────────────────────

def test_completion_revenue_decays_with_lead_time():
    policy = Policy(lot_size=60, contract=1)
    state = SimulationState(
        day=10,
        cash=0.0,
        inventory=InventoryState(kits=7200.0),
        jobs={1: Job(1, start_day=0.0, contract=1, total_lots=1)},
        queues={
            Station.STAGE1: (), Station.STAGE2_FIRST: (), Station.STAGE3: (),
            Station.STAGE2_SECOND: (Lot(1, 1, Station.STAGE2_SECOND, 9.0),),
        },
        next_job_id=2, next_lot_id=2,
    )
    new, rec = step(state, 10.5, policy, arrivals=0)
    assert rec.jobs_completing == 1
    assert rec.avg_lead_time == pytest.approx(10.5)
    assert rec.revenue == pytest.approx(0.375)
    assert new.cash == pytest.approx(0.375)
    assert new.jobs[1].is_complete
    assert new.completed_lots == 1


def test_jobs_by_station_counts_each_job_once():
    queues = {
        Station.STAGE1:        (Lot(1, 1), Lot(2, 2)),
        Station.STAGE2_FIRST:  (Lot(3, 1, Station.STAGE2_FIRST),),
        Station.STAGE3:        (Lot(4, 2, Station.STAGE3), Lot(5, 2, Station.STAGE3)),
        Station.STAGE2_SECOND: (),
    }
    counts = jobs_by_station(queues)
    # job 1 ties 1–1 and goes to the later step; job 2 has most lots at stage 3
    assert counts[Station.STAGE2_FIRST] == 1
    assert counts[Station.STAGE3] == 1
    assert counts[Station.STAGE1] == 0


# ── Fast mode ─────────────────────────────────────────────────────────────────

def test_fast_mode_runs_at_bottleneck_rate(stocked_state):
    policy = Policy(lot_size=60)
    _, rec = step(stocked_state, 1, policy, mode=Mode.FAST)
    jobs = 0.95 * 24 / (1.42 + 1.20)
    # a 2.7-day expected lead time sits well inside contract 1's 7 days
    assert rec.revenue == pytest.approx(jobs * 0.750)
    assert rec.material_cost == pytest.approx(jobs * 60 / 7200 * 73.0)


def test_fast_mode_without_orders_draws_down_stock():
    policy = Policy(lot_size=60, order_quantity=0)
    state = SimulationState(day=0, cash=0.0, inventory=InventoryState(kits=120.0))
    new, rec = step(state, 1, policy, mode=Mode.FAST)
    assert rec.material_cost == 0.0
    assert rec.revenue == pytest.approx(2 * 0.750)
    assert new.inventory.kits == pytest.approx(0.0)


def test_fast_mode_discounts_late_contracts(stocked_state):
    _, standard = step(stocked_state, 1, Policy(lot_size=60, contract=1), mode=Mode.FAST)
    _, premium = step(stocked_state, 1, Policy(lot_size=60, contract=3), mode=Mode.FAST)
    # the tester queue alone outlasts contract 3's one-day limit
    assert premium.revenue < 0.05 * standard.revenue
