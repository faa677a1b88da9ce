from dataclasses import replace

import pytest

from lotflow.config import DEFAULT_SETTINGS
from lotflow.models import FactorySnapshot, InventoryState, Policy, SimulationState


@pytest.fixture
def policy():
    return Policy(lot_size=20, contract=1, station1_machines=3, station2_machines=1,
                  station3_machines=1, reorder_point=1200, order_quantity=7200)


@pytest.fixture
def snapshot():
    return FactorySnapshot(
        current_day=100, cash=100.0, debt=0.0,
        avg_lead_time=2.0, max_lead_time=3.0, avg_queued_jobs=0.0,
        avg_queue1=60.0, avg_queue2=40.0, avg_queue3=20.0,
    )


@pytest.fixture
def short_settings(snapshot):
    """Projections end 20 days after the snapshot."""
    return replace(DEFAULT_SETTINGS, horizon_day=snapshot.current_day + 20)


@pytest.fixture
def stocked_state():
    return SimulationState(day=0, cash=100.0, inventory=InventoryState(kits=7200.0))
