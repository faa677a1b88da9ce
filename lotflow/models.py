"""Data-model classes shared across the projection engine."""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Dict, Mapping, Optional, Tuple

from .config import (
    CONTRACTS, INITIAL_DEFAULTS, KITS_PER_JOB, MAX_MACHINES, PROCESSING_HOURS,
    ConfigurationError,
)


class Station(IntEnum):
    """Where a lot currently sits; values follow the fixed route order."""

    STAGE1        = 1
    STAGE2_FIRST  = 2
    STAGE3        = 3
    STAGE2_SECOND = 4
    COMPLETE      = 5

    def next(self) -> "Station":
        if self is Station.COMPLETE:
            raise ValueError("a complete lot has no next station")
        return Station(self.value + 1)

    @property
    def label(self) -> str:
        return _STATION_LABELS[self]


_STATION_LABELS = {
    Station.STAGE1:        "Stuffer",
    Station.STAGE2_FIRST:  "Tester (1st pass)",
    Station.STAGE3:        "Tuner",
    Station.STAGE2_SECOND: "Tester (2nd pass)",
    Station.COMPLETE:      "Complete",
}

# Stations that hold queues, in route order
ACTIVE_STATIONS: Tuple[Station, ...] = (
    Station.STAGE1, Station.STAGE2_FIRST, Station.STAGE3, Station.STAGE2_SECOND,
)


@dataclass(frozen=True)
class Lot:
    """An indivisible unit of flow; a job splits into ``total_lots`` of these."""

    lot_id:   int
    job_id:   int
    station:  Station = Station.STAGE1
    arrival:  float   = 0.0          # day the lot joined its current queue

    def advance(self, day: float) -> "Lot":
        """Move to the next station on the route, joining its queue on *day*."""
        return replace(self, station=self.station.next(), arrival=day)


@dataclass(frozen=True)
class Job:
    """A customer order; earns revenue once every lot is complete."""

    job_id:         int
    start_day:      float
    contract:       int
    total_lots:     int
    completed_lots: int            = 0
    completion_day: Optional[float] = None

    @property
    def is_complete(self) -> bool:
        return self.completion_day is not None

    @property
    def lead_time(self) -> Optional[float]:
        if self.completion_day is not None:
            return self.completion_day - self.start_day
        return None

    def with_completed_lot(self) -> "Job":
        if self.completed_lots >= self.total_lots:
            raise ValueError(
                f"job {self.job_id} already has all {self.total_lots} lots complete"
            )
        return replace(self, completed_lots=self.completed_lots + 1)

    def complete(self, day: float) -> "Job":
        if self.completion_day is not None:
            raise ValueError(f"job {self.job_id} completed twice")
        if self.completed_lots != self.total_lots:
            raise ValueError(
                f"job {self.job_id} has {self.completed_lots}/{self.total_lots} lots complete"
            )
        return replace(self, completion_day=day)


@dataclass(frozen=True)
class InventoryState:
    """Kits on hand plus the single replenishment order pipeline."""

    kits:              float = 0.0
    order_in_transit:  bool  = False
    order_arrival_day: float = 0.0


@dataclass(frozen=True)
class Policy:
    """Operating settings in force on a given day."""

    lot_size:          int   = INITIAL_DEFAULTS["lot_size"]
    contract:          int   = INITIAL_DEFAULTS["contract"]
    station1_machines: int   = INITIAL_DEFAULTS["station1_machines"]
    station2_machines: int   = INITIAL_DEFAULTS["station2_machines"]
    station3_machines: int   = INITIAL_DEFAULTS["station3_machines"]
    reorder_point:     float = INITIAL_DEFAULTS["reorder_point"]
    order_quantity:    float = INITIAL_DEFAULTS["order_quantity"]

    @property
    def lots_per_job(self) -> int:
        return max(1, KITS_PER_JOB // self.lot_size)

    def machines(self, station: int) -> int:
        """Machine count for physical station 1, 2 or 3."""
        if station == 1:
            return self.station1_machines
        if station == 2:
            return self.station2_machines
        if station == 3:
            return self.station3_machines
        raise ConfigurationError(f"no physical station {station}")

    def with_machines(self, station: int, count: int) -> "Policy":
        self.machines(station)
        return replace(self, **{f"station{station}_machines": count})

    def with_machine_added(self, station: int) -> "Policy":
        return self.with_machines(station, self.machines(station) + 1)

    def validate(self) -> "Policy":
        if self.lot_size not in PROCESSING_HOURS:
            raise ConfigurationError(
                f"lot size {self.lot_size} not in {sorted(PROCESSING_HOURS)}"
            )
        if self.contract not in CONTRACTS:
            raise ConfigurationError(f"contract tier {self.contract} not in {sorted(CONTRACTS)}")
        for station in (1, 2, 3):
            count = self.machines(station)
            if not 1 <= count <= MAX_MACHINES:
                raise ConfigurationError(
                    f"station {station} needs 1–{MAX_MACHINES} machines, got {count}"
                )
        return self

    @classmethod
    def from_dict(cls, values: Mapping[str, float]) -> "Policy":
        return cls(**dict(values))


@dataclass(frozen=True)
class FactorySnapshot:
    """Historical aggregates at the decision day; seeds a projection."""

    current_day:     int
    cash:            float
    debt:            float = 0.0
    avg_lead_time:   float = 0.0
    max_lead_time:   float = 0.0
    avg_queued_jobs: float = 0.0
    avg_queue1:      float = 0.0    # kits waiting at station 1
    avg_queue2:      float = 0.0    # kits waiting at station 2 (both passes)
    avg_queue3:      float = 0.0
    avg_util1:       float = 0.0
    avg_util2:       float = 0.0
    avg_util3:       float = 0.0

    @classmethod
    def from_dict(cls, values: Mapping[str, float]) -> "FactorySnapshot":
        return cls(**dict(values))


def _empty_queues() -> Dict[Station, Tuple[Lot, ...]]:
    return {s: () for s in ACTIVE_STATIONS}


@dataclass(frozen=True)
class SimulationState:
    """
    Everything one projection run carries from day to day.

    Containers are replaced rather than mutated, so a state handed to
    ``engine.step`` is never modified by it.
    """

    day:            float
    cash:           float
    debt:           float                        = 0.0
    inventory:      InventoryState               = field(default_factory=InventoryState)
    jobs:           Mapping[int, Job]            = field(default_factory=dict)
    queues:         Mapping[Station, Tuple[Lot, ...]] = field(default_factory=_empty_queues)
    starved:        Tuple[int, ...]              = ()
    next_job_id:    int                          = 1
    next_lot_id:    int                          = 1
    completed_lots: int                          = 0

    @property
    def wip_lots(self) -> int:
        return sum(len(q) for q in self.queues.values())

    @property
    def open_jobs(self) -> int:
        return sum(1 for j in self.jobs.values() if not j.is_complete)


@dataclass(frozen=True)
class DailyRecord:
    """One row of the projection series."""

    day:                   float
    revenue:               float = 0.0
    material_cost:         float = 0.0
    machine_cost:          float = 0.0
    interest:              float = 0.0      # cash interest − debt interest
    debt_interest:         float = 0.0
    cash_interest:         float = 0.0
    debt_payment:          float = 0.0
    profit:                float = 0.0
    debt:                  float = 0.0
    cash:                  float = 0.0
    arrivals:              int   = 0
    jobs_accepted:         int   = 0
    jobs_completing:       int   = 0
    jobs_waiting_for_kits: int   = 0
    jobs_in_system:        int   = 0
    avg_lead_time:         float = 0.0
    lots_waiting_s1:       int   = 0
    lots_waiting_s2:       int   = 0
    lots_waiting_s3:       int   = 0
    lots_waiting_s4:       int   = 0
    lots_processing_s1:    int   = 0
    lots_processing_s2:    int   = 0
    lots_processing_s3:    int   = 0
    jobs_at_s1:            int   = 0
    jobs_at_s2:            int   = 0
    jobs_at_s3:            int   = 0
    jobs_at_s4:            int   = 0
    inventory:             float = 0.0
    reorder_point:         float = 0.0
    order_in_transit:      bool  = False
    contract:              int   = INITIAL_DEFAULTS["contract"]   # tier in force for new jobs


class ChangeType(str, Enum):
    CAPACITY = "capacity"
    CONTRACT = "contract"
    LOT_SIZE = "lotSize"
    PRIORITY = "priority"
    NONE     = "none"


@dataclass
class Change:
    """
    A recommended configuration change and, once scheduled, when to make it.

    Exactly one of ``station`` / ``contract`` / ``lot_size`` is meaningful,
    depending on ``kind``.
    """

    kind:     ChangeType
    action:   str            = ""
    reason:   str            = ""
    cost:     float          = 0.0     # $k; only capacity changes cost money
    priority: str            = "MEDIUM"
    station:  Optional[int]  = None
    contract: Optional[int]  = None
    lot_size: Optional[int]  = None

    # Filled in by timeline.schedule_changes
    recommended_day: Optional[int] = None
    days_to_wait:    int           = 0
    awaiting_cash:   bool          = False
    needs_debt:      bool          = False

    @classmethod
    def from_dict(cls, values: Mapping[str, object]) -> "Change":
        data = dict(values)
        data["kind"] = ChangeType(data["kind"])
        return cls(**data)
