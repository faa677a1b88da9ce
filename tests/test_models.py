from dataclasses import FrozenInstanceError

import pytest

from lotflow.config import ConfigurationError
from lotflow.models import Change, ChangeType, Job, Lot, Policy, Station


# ── Station ───────────────────────────────────────────────────────────────────

def test_station_route_order():
    route = [Station.STAGE1]
    while route[-1] is not Station.COMPLETE:
        route.append(route[-1].next())
    assert route == [Station.STAGE1, Station.STAGE2_FIRST, Station.STAGE3,
                     Station.STAGE2_SECOND, Station.COMPLETE]


def test_complete_has_no_successor():
    with pytest.raises(ValueError):
        Station.COMPLETE.next()


# ── Lot / Job ─────────────────────────────────────────────────────────────────

def test_lot_advance_moves_and_restamps():
    lot = Lot(1, 1, Station.STAGE3, arrival=4.0)
    moved = lot.advance(7.0)
    assert moved.station is Station.STAGE2_SECOND
    assert moved.arrival == 7.0
    assert lot.station is Station.STAGE3


def test_lot_is_immutable():
    with pytest.raises(FrozenInstanceError):
        Lot(1, 1).station = Station.STAGE3


def test_job_completion_rules():
    job = Job(1, start_day=2.0, contract=1, total_lots=2)
    with pytest.raises(ValueError):
        job.complete(3.0)

    job = job.with_completed_lot().with_completed_lot()
    with pytest.raises(ValueError):
        job.with_completed_lot()

    done = job.complete(5.5)
    assert done.is_complete
    assert done.lead_time == pytest.approx(3.5)
    with pytest.raises(ValueError):
        done.complete(6.0)


# ── Policy ────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("lot_size, lots", [(15, 4), (20, 3), (30, 2), (60, 1)])
def test_lots_per_job(lot_size, lots):
    assert Policy(lot_size=lot_size).lots_per_job == lots


def test_with_machine_added():
    p = Policy(station2_machines=1).with_machine_added(2)
    assert p.station2_machines == 2
    with pytest.raises(ConfigurationError):
        p.with_machine_added(4)


@pytest.mark.parametrize("overrides", [
    {"lot_size": 25},
    {"contract": 4},
    {"station1_machines": 0},
    {"station3_machines": 6},
])
def test_validate_rejects_out_of_table_values(overrides):
    with pytest.raises(ConfigurationError):
        Policy(**overrides).validate()


def test_validate_accepts_defaults():
    assert Policy().validate() == Policy()


# ── Change ────────────────────────────────────────────────────────────────────

def test_change_from_dict_parses_kind():
    change = Change.from_dict({"kind": "lotSize", "lot_size": 30, "action": "to 30"})
    assert change.kind is ChangeType.LOT_SIZE
    assert change.lot_size == 30
    assert change.recommended_day is None
