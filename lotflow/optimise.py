"""
One-setting-at-a-time grid search over the fast projection.

Every candidate changes a single setting of the current policy; the best
value for each setting is reported with the final cash it reaches.
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Tuple

from .config import DEFAULT_SETTINGS, GRID, EngineSettings
from .engine import Mode
from .models import FactorySnapshot, InventoryState, Policy
from .projection import final_cash

logger = logging.getLogger(__name__)

# Settings searched, in report order
SETTINGS = (
    "lot_size",
    "contract",
    "station1_machines",
    "station2_machines",
    "station3_machines",
    "reorder_point",
    "order_quantity",
)


@dataclass(frozen=True)
class SettingOptimum:
    value: float
    cash:  Optional[float]     # None when no candidate could be projected


class OptimalSettings(dict):
    """``{setting name: SettingOptimum}`` in ``SETTINGS`` order."""

    def as_policy(self, base: Policy) -> Policy:
        """*base* with every setting moved to its individual optimum."""
        return replace(base, **{name: type(getattr(base, name))(opt.value)
                                for name, opt in self.items()})


def _unique(values: Iterable[float]) -> List[float]:
    return list(dict.fromkeys(values))


def candidate_values(policy: Policy) -> Dict[str, List[float]]:
    """Values tried for each setting, duplicates removed, first occurrence kept."""
    rop, qty = policy.reorder_point, policy.order_quantity
    floor_qty = GRID["min_quantity"]
    return {
        "lot_size":          _unique(GRID["lot_sizes"]),
        "contract":          _unique(GRID["contracts"]),
        "station1_machines": _unique(GRID["machines"]),
        "station2_machines": _unique(GRID["machines"]),
        "station3_machines": _unique(GRID["machines"]),
        "reorder_point": _unique(
            [max(0, rop + off) for off in GRID["reorder_offsets"]] + list(GRID["reorder_fixed"])
        ),
        "order_quantity": _unique(
            [max(floor_qty, qty + off) for off in GRID["quantity_offsets"]]
            + list(GRID["quantity_fixed"])
        ),
    }


def _evaluate(args: Tuple) -> Optional[float]:
    # Module-level so ProcessPoolExecutor can pickle it
    snapshot, candidate, baseline, inventory, arrival_rate, settings = args
    return final_cash(
        snapshot, candidate,
        inventory=inventory, baseline=baseline, mode=Mode.FAST,
        arrival_rate=arrival_rate, settings=settings,
    )


def find_optimal_settings(
    snapshot: FactorySnapshot,
    policy: Policy,
    *,
    inventory: Optional[InventoryState] = None,
    arrival_rate: Optional[float] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
    workers: int = 1,
) -> OptimalSettings:
    """
    Best value of each setting with all other settings held at *policy*.

    Machine candidates pay for any machines beyond *policy*'s.  A later
    candidate only replaces the current best when it ends with strictly
    more cash, so ties keep the earlier value.  With ``workers > 1`` the
    projections run in a process pool; results are consumed in candidate
    order, so the outcome is the same as a sequential run.
    """
    grid = candidate_values(policy)
    jobs: List[Tuple[str, float]] = []
    tasks = []
    for name in SETTINGS:
        for value in grid[name]:
            candidate = replace(policy, **{name: value})
            jobs.append((name, value))
            tasks.append((snapshot, candidate, policy, inventory, arrival_rate, settings))

    logger.debug("evaluating %d candidates with %d worker(s)", len(tasks), workers)
    if workers > 1:
        with ProcessPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(_evaluate, t) for t in tasks]
            results = [f.result() for f in futures]
    else:
        results = [_evaluate(t) for t in tasks]

    best: Dict[str, SettingOptimum] = {}
    for (name, value), cash in zip(jobs, results):
        current = best.get(name)
        if current is None:
            best[name] = SettingOptimum(value, cash)
        elif cash is not None and (current.cash is None or cash > current.cash):
            best[name] = SettingOptimum(value, cash)

    optimal = OptimalSettings()
    for name in SETTINGS:
        optimal[name] = best[name]
        logger.debug("optimal %s = %s (cash %s)", name, best[name].value, best[name].cash)
    return optimal
