# LotFlow: Littlefield lot-flow projection engine
# All time units are DAYS unless a key says otherwise; money is in $k.

from __future__ import annotations

from dataclasses import dataclass


class ConfigurationError(ValueError):
    """Raised when a policy or lookup refers to a value outside the known tables."""


# ── Simulation horizon ────────────────────────────────────────────────────────
HORIZON_DAY  = 318        # last simulated day of the game (inclusive)
KITS_PER_JOB = 60         # one job = 60 kits, split into 60 / lot_size lots

FACTORY_NAME = "Littlefield Technologies"

# ── Per-lot processing times ──────────────────────────────────────────────────
# Hours per lot per machine, keyed by lot size (kits per lot).
#   s1 : Stage 1 (stuffer)
#   s2 : Stage 2, first pass (test)
#   s3 : Stage 3 (tuner)
#   s4 : Stage 2, second pass (final test)
# Row 15 is interpolated between 12 and 20.
PROCESSING_HOURS = {
    12: {"s1": 2.42, "s2": 0.28, "s3": 0.40, "s4": 0.24},
    15: {"s1": 2.68, "s2": 0.35, "s3": 0.48, "s4": 0.30},
    20: {"s1": 3.10, "s2": 0.47, "s3": 0.61, "s4": 0.40},
    30: {"s1": 3.95, "s2": 0.71, "s3": 0.95, "s4": 0.60},
    60: {"s1": 6.50, "s2": 1.42, "s3": 1.85, "s4": 1.20},
}
DEFAULT_LOT_SIZE = 20     # row used when an unknown lot size is looked up leniently
HOURS_PER_DAY    = 24

# ── Customer contracts ────────────────────────────────────────────────────────
# promised : lead time (days) that still earns full revenue
# max      : lead time (days) at which revenue has decayed to zero
# revenue  : face revenue per job, in dollars
CONTRACTS = {
    1: {"promised": 7.0, "max": 14.0, "revenue": 750.0},
    2: {"promised": 1.0, "max": 5.0,  "revenue": 1000.0},
    3: {"promised": 0.5, "max": 1.0,  "revenue": 1250.0},
}

# ── Raw material ──────────────────────────────────────────────────────────────
MATERIAL = {
    "cost_per_kit":              0.010,   # $10 per kit
    "fixed_order_cost":          1.0,     # $1 000 per order
    "lead_time_days":            4,       # supplier lead time used by projections
    "historical_lead_time_days": 3,       # lead time used when replaying history
    "default_inventory":         1000.0,  # kits on hand when no replay is available
    "replay_start_inventory":    7200.0,  # kits on hand at day 0 of the game
}

# ── Financial parameters ──────────────────────────────────────────────────────
FINANCIAL = {
    "debt_rate_annual":    0.20,   # compounded daily
    "cash_rate_annual":    0.10,   # compounded daily, only on positive cash
    "cash_buffer":         10.0,   # excess cash above this pays down debt
    "loan_fee_pct":        0.05,   # upfront fee on newly borrowed money
    "debt_available_day":  150,    # first day debt financing may be taken
    "max_wait_days":       30,     # wait for cash rather than borrow if within this
}

# Purchase price of one extra machine per station ($k)
MACHINE_COSTS = {1: 90.0, 2: 80.0, 3: 100.0}
MAX_MACHINES  = 5

# ── Demand ────────────────────────────────────────────────────────────────────
ARRIVALS = {
    "mean_jobs_per_day": 10.0,
    "seed_multiplier":   137,     # day d draws its arrivals from seed d × multiplier
}

# ── WIP reconstruction ────────────────────────────────────────────────────────
WIP = {
    "ceiling_lots":         300,   # reconstructed WIP above this aborts the run
    "default_lead_time":    2.0,   # used when the history has no lead time
    "starved_start_offset": 0.5,   # historical starved jobs started this long ago
}

# ── Starting policy (before any transactions) ─────────────────────────────────
INITIAL_DEFAULTS = {
    "lot_size":          60,
    "contract":          1,
    "station1_machines": 3,
    "station2_machines": 1,
    "station3_machines": 1,
    "reorder_point":     1200,
    "order_quantity":    7200,
}

# ── Per-setting grid search ───────────────────────────────────────────────────
GRID = {
    "lot_sizes":          (15, 20, 30, 60),
    "contracts":          (1, 2, 3),
    "machines":           tuple(range(1, MAX_MACHINES + 1)),
    "reorder_offsets":    (-1000, -500, 0, 500, 1000, 2000),
    "reorder_fixed":      (0, 500, 1000, 1500, 2000, 3000),
    "quantity_offsets":   (-3000, -1000, 0, 1000, 3000, 5000),
    "quantity_fixed":     (1000, 2000, 3000, 5000, 7000, 10000),
    "min_quantity":       1000,
}

# ── Analytical outlook ────────────────────────────────────────────────────────
OUTLOOK = {
    "efficiency":         0.95,   # share of bottleneck capacity reached in practice
    "busy_utilisation":   0.70,   # above this a pool's queue wait grows as ρ / (1 − ρ)
    "idle_wait_factor":   0.10,   # below it, waits are this share of one service time
    "lead_time_spread":   0.30,   # σ = mean × spread × √ρ(tester)
    "integration_steps":  200,
    "integration_sigmas": 4.0,
}

# Recommendation priority ranks (lower sorts first)
PRIORITY_RANK = {"CRITICAL": 1, "HIGH": 2, "MEDIUM": 3, "LOW": 4, "INFO": 5}


@dataclass(frozen=True)
class EngineSettings:
    """
    Every tunable constant the engine reads, gathered in one place.

    Detailed runs, fast runs and the history replay all take one of
    these, so they share one material lead time, seed and cash buffer.
    """

    horizon_day:          int   = HORIZON_DAY
    kits_per_job:         int   = KITS_PER_JOB
    arrival_rate:         float = ARRIVALS["mean_jobs_per_day"]
    seed_multiplier:      int   = ARRIVALS["seed_multiplier"]
    material_lead_time:   int   = MATERIAL["lead_time_days"]
    historical_lead_time: int   = MATERIAL["historical_lead_time_days"]
    cost_per_kit:         float = MATERIAL["cost_per_kit"]
    fixed_order_cost:     float = MATERIAL["fixed_order_cost"]
    default_inventory:    float = MATERIAL["default_inventory"]
    debt_rate_annual:     float = FINANCIAL["debt_rate_annual"]
    cash_rate_annual:     float = FINANCIAL["cash_rate_annual"]
    cash_buffer:          float = FINANCIAL["cash_buffer"]
    loan_fee_pct:         float = FINANCIAL["loan_fee_pct"]
    debt_available_day:   int   = FINANCIAL["debt_available_day"]
    max_wait_days:        int   = FINANCIAL["max_wait_days"]
    wip_ceiling:          int   = WIP["ceiling_lots"]
    strict_lot_sizes:     bool  = False

    @property
    def daily_debt_rate(self) -> float:
        return (1.0 + self.debt_rate_annual) ** (1.0 / 365.0) - 1.0

    @property
    def daily_cash_rate(self) -> float:
        return (1.0 + self.cash_rate_annual) ** (1.0 / 365.0) - 1.0


DEFAULT_SETTINGS = EngineSettings()


# ── Built-in scenarios (CLI) ──────────────────────────────────────────────────
# snapshot : historical aggregates at the decision day (queues in kits)
# policy   : settings currently in force
# changes  : recommendations to place on the timeline
SCENARIOS = {
    "early_game": {
        "label":       "Early Game",
        "description": "Day 60 — stuffer congested, no debt available yet",
        "snapshot": {
            "current_day":     60,
            "cash":            95.0,
            "debt":            0.0,
            "avg_lead_time":   2.6,
            "max_lead_time":   4.1,
            "avg_queued_jobs": 0.4,
            "avg_queue1":      540.0,
            "avg_queue2":      120.0,
            "avg_queue3":      40.0,
            "avg_util1":       0.93,
            "avg_util2":       0.71,
            "avg_util3":       0.44,
        },
        "policy": dict(INITIAL_DEFAULTS, lot_size=20),
        "changes": [
            {"kind": "capacity", "station": 1, "cost": MACHINE_COSTS[1],
             "action": "Add 1 machine to Station 1 (Stuffer)",
             "reason": "High utilisation (93%) and queue (540 kits)",
             "priority": "HIGH"},
        ],
    },
    "mid_game": {
        "label":       "Mid Game",
        "description": "Day 160 — debt available, tester is the bottleneck",
        "snapshot": {
            "current_day":     160,
            "cash":            40.0,
            "debt":            0.0,
            "avg_lead_time":   5.8,
            "max_lead_time":   8.9,
            "avg_queued_jobs": 0.0,
            "avg_queue1":      120.0,
            "avg_queue2":      420.0,
            "avg_queue3":      60.0,
            "avg_util1":       0.62,
            "avg_util2":       0.99,
            "avg_util3":       0.52,
        },
        "policy": dict(INITIAL_DEFAULTS, lot_size=20, station1_machines=5),
        "changes": [
            {"kind": "capacity", "station": 2, "cost": MACHINE_COSTS[2],
             "action": "Add 1 machine to Station 2 (Tester)",
             "reason": "Critical bottleneck — utilisation 99%, queue 420 kits",
             "priority": "CRITICAL"},
        ],
    },
    "end_game": {
        "label":       "End Game",
        "description": "Day 250 — premium contract, lead times past its promise",
        "snapshot": {
            "current_day":     250,
            "cash":            620.0,
            "debt":            60.0,
            "avg_lead_time":   4.3,
            "max_lead_time":   5.6,
            "avg_queued_jobs": 0.0,
            "avg_queue1":      60.0,
            "avg_queue2":      40.0,
            "avg_queue3":      20.0,
            "avg_util1":       0.68,
            "avg_util2":       0.72,
            "avg_util3":       0.40,
        },
        "policy": dict(INITIAL_DEFAULTS, lot_size=15, contract=2,
                       station1_machines=5, station2_machines=3, station3_machines=2),
        "changes": [
            {"kind": "contract", "contract": 1, "cost": 0.0,
             "action": "DOWNGRADE to Contract 1 (7 days, $750)",
             "reason": "Avg lead time 4.30 days misses the 1-day promise",
             "priority": "HIGH"},
        ],
    },
}
