import logging
from dataclasses import replace

import pytest
import simpy

from lotflow.capacity import cycle_capacity
from lotflow.config import CONTRACTS, DEFAULT_SETTINGS, SCENARIOS, ConfigurationError
from lotflow.engine import Mode
from lotflow.models import Change, ChangeType, FactorySnapshot, Policy, Station
from lotflow.projection import (
    Projection, WipCeilingExceeded, apply_change, final_cash, reconstruct_wip,
    run_projection, wip_lot_counts,
)


# ── WIP reconstruction ────────────────────────────────────────────────────────

def test_wip_counts_split_stage2(snapshot, policy):
    counts = wip_lot_counts(snapshot, policy)
    # 40 kits = 2 lots at Stage 2, split 0.47 : 0.40
    assert counts == {
        Station.STAGE1: 3, Station.STAGE2_FIRST: 1,
        Station.STAGE3: 1, Station.STAGE2_SECOND: 1,
    }


def test_reconstruct_fills_oldest_jobs_furthest_along(snapshot, policy):
    snapshot = replace(snapshot, avg_queued_jobs=1.4)
    state = reconstruct_wip(snapshot, policy)

    assert state.day == 100
    assert state.wip_lots == 6
    job_at = {s: {lot.job_id for lot in q} for s, q in state.queues.items()}
    assert job_at[Station.STAGE2_SECOND] == {1}
    assert job_at[Station.STAGE3] == {1}
    assert job_at[Station.STAGE2_FIRST] == {1}
    assert job_at[Station.STAGE1] == {2}

    assert state.jobs[1].start_day == pytest.approx(98.0)
    assert state.jobs[2].start_day == pytest.approx(99.0)
    assert state.starved == (3,)
    assert state.jobs[3].start_day == pytest.approx(99.5)
    assert state.inventory.kits == 1000.0


def test_reconstruct_rejects_implausible_wip(snapshot, policy):
    with pytest.raises(WipCeilingExceeded):
        reconstruct_wip(replace(snapshot, avg_queue1=20 * 301), policy)


def test_projection_aborts_with_empty_series(snapshot, policy, short_settings, caplog):
    crowded = replace(snapshot, avg_queue1=20 * 400)
    with caplog.at_level(logging.WARNING, logger="lotflow.projection"):
        result = run_projection(crowded, policy, settings=short_settings)
    assert result.series == []
    assert result.final_cash is None
    assert not result.ok
    assert "ceiling" in caplog.text


def test_fast_mode_skips_wip_reconstruction(snapshot, policy, short_settings):
    crowded = replace(snapshot, avg_queue1=20 * 400)
    assert final_cash(crowded, policy, settings=short_settings) is not None


# ── Driver ────────────────────────────────────────────────────────────────────

def test_series_covers_every_remaining_day(snapshot, policy, short_settings):
    result = run_projection(snapshot, policy, settings=short_settings)
    assert [r.day for r in result.series] == list(range(101, 121))
    assert result.final_cash == result.series[-1].cash
    assert result.kpis["days"] == 20


def test_projection_is_deterministic(snapshot, policy, short_settings):
    a = run_projection(snapshot, policy, settings=short_settings)
    b = run_projection(snapshot, policy, settings=short_settings)
    assert a.series == b.series


def test_environment_can_run_in_one_go(snapshot, policy, short_settings):
    env = simpy.Environment(initial_time=snapshot.current_day)
    projection = Projection(env, snapshot, policy, settings=short_settings)
    projection.register_processes()
    env.run(until=projection.horizon + 1)
    assert len(projection.metrics.records) == projection.days_remaining == 20
    stepped = run_projection(snapshot, policy, settings=short_settings)
    assert projection.metrics.records == stepped.series


def test_baseline_purchase_charged_on_first_day(snapshot, short_settings):
    current = Policy(lot_size=60)
    bigger = current.with_machine_added(2)
    result = run_projection(snapshot, bigger, baseline=current, mode=Mode.FAST,
                            settings=short_settings)
    assert result.series[0].machine_cost == pytest.approx(80.0)
    assert result.kpis["total_machine_cost"] == pytest.approx(80.0)


def test_scheduled_capacity_change_on_debt(snapshot, short_settings):
    broke = replace(snapshot, cash=0.0)
    change = Change(ChangeType.CAPACITY, action="Add tester", cost=80.0, station=2,
                    recommended_day=101, needs_debt=True)
    result = run_projection(broke, Policy(lot_size=60), changes=[change], mode=Mode.FAST,
                            settings=short_settings)
    first = result.series[0]
    assert first.machine_cost == pytest.approx(80.0)
    assert first.debt == pytest.approx(80.0)
    assert result.applied_changes == [
        {"day": 101, "action": "Add tester", "cost": 80.0, "financed": True},
    ]


def test_change_due_today_applies_on_first_simulated_day(snapshot, policy, short_settings):
    change = Change(ChangeType.CONTRACT, action="Contract 2", contract=2, recommended_day=100)
    result = run_projection(snapshot, policy, changes=[change], settings=short_settings)
    assert [c["day"] for c in result.applied_changes] == [101]


def test_apply_change():
    p = Policy(lot_size=60, contract=1, station3_machines=1)
    assert apply_change(p, Change(ChangeType.CAPACITY, station=3)).station3_machines == 2
    assert apply_change(p, Change(ChangeType.CONTRACT, contract=3)).contract == 3
    assert apply_change(p, Change(ChangeType.LOT_SIZE, lot_size=30)).lot_size == 30
    assert apply_change(p, Change(ChangeType.PRIORITY)) == p


def test_change_beyond_machine_limit_is_rejected():
    full = Policy(station1_machines=5)
    with pytest.raises(ConfigurationError):
        apply_change(full, Change(ChangeType.CAPACITY, station=1, cost=90.0))


def test_change_to_unknown_lot_size_is_rejected():
    with pytest.raises(ConfigurationError):
        apply_change(Policy(), Change(ChangeType.LOT_SIZE, lot_size=25))


def test_invalid_scheduled_change_fails_before_simulating(snapshot, short_settings):
    change = Change(ChangeType.CAPACITY, action="Add stuffer", cost=90.0, station=1,
                    recommended_day=110)
    with pytest.raises(ConfigurationError):
        run_projection(snapshot, Policy(lot_size=60, station1_machines=5),
                       changes=[change], mode=Mode.FAST, settings=short_settings)


def test_series_records_contract_in_force(snapshot, policy, short_settings):
    change = Change(ChangeType.CONTRACT, action="Contract 2", contract=2, recommended_day=110)
    result = run_projection(snapshot, policy, changes=[change], settings=short_settings)
    tiers = [r.contract for r in result.series]
    assert tiers[:9] == [1] * 9
    assert set(tiers[9:]) == {2}


# ── Built-in scenarios ────────────────────────────────────────────────────────

@pytest.mark.parametrize("scenario_id", sorted(SCENARIOS))
def test_scenario_changes_leave_valid_policies(scenario_id):
    scen = SCENARIOS[scenario_id]
    policy = Policy.from_dict(scen["policy"]).validate()
    for change in scen["changes"]:
        policy = apply_change(policy, Change.from_dict(change))


def test_mid_game_tester_lifts_every_pool_above_demand():
    policy = Policy.from_dict(SCENARIOS["mid_game"]["policy"])
    demand = DEFAULT_SETTINGS.arrival_rate * policy.lots_per_job
    assert min(cycle_capacity(policy).values()) < demand

    change = Change.from_dict(SCENARIOS["mid_game"]["changes"][0])
    assert min(cycle_capacity(apply_change(policy, change)).values()) > demand


def test_end_game_contract_change_fits_four_step_route():
    # a lot moves one step a day, so a new job needs four days to finish
    change = Change.from_dict(SCENARIOS["end_game"]["changes"][0])
    current = SCENARIOS["end_game"]["policy"]["contract"]
    assert CONTRACTS[current]["promised"] < 4
    assert CONTRACTS[change.contract]["promised"] >= 4
