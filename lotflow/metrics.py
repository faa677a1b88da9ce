"""Metrics collection and KPI computation."""

from __future__ import annotations
from typing import Dict, List, Optional

from .models import DailyRecord


class MetricsCollector:
    """Accumulates every day of a projection run."""

    def __init__(self) -> None:
        # ── Day-indexed series ────────────────────────────────────────────────
        self.records: List[DailyRecord] = []

        # ── Event logs ────────────────────────────────────────────────────────
        self.orders_placed:   List[float] = []   # days a material order went out
        self.applied_changes: List[dict]  = []   # {"day", "action", "cost", "financed"}

        # ── Aggregate counters ────────────────────────────────────────────────
        self.starved_days: int = 0               # days ending with kit-starved jobs

    # ── Helpers ───────────────────────────────────────────────────────────────

    def record(self, rec: DailyRecord) -> None:
        self.records.append(rec)
        if rec.material_cost > 0:
            self.orders_placed.append(rec.day)
        if rec.jobs_waiting_for_kits > 0:
            self.starved_days += 1

    def record_change(self, day: float, action: str, cost: float, financed: bool) -> None:
        self.applied_changes.append(
            {"day": day, "action": action, "cost": cost, "financed": financed}
        )

    @property
    def final(self) -> Optional[DailyRecord]:
        return self.records[-1] if self.records else None

    # ── KPI computation ───────────────────────────────────────────────────────

    def compute_kpis(self) -> Dict[str, float]:
        k: Dict[str, float] = {}
        recs = self.records

        if not recs:
            for key in ("days", "final_cash", "final_debt", "total_revenue",
                        "total_material_cost", "total_machine_cost", "net_interest",
                        "debt_repaid", "jobs_completed", "avg_lead_time",
                        "avg_revenue_per_job", "peak_wip_lots", "avg_wip_lots",
                        "orders_placed", "starved_days", "min_inventory"):
                k[key] = 0.0
            return k

        # ── Cash ──────────────────────────────────────────────────────────────
        k["days"]                = len(recs)
        k["final_cash"]          = recs[-1].cash
        k["final_debt"]          = recs[-1].debt
        k["total_revenue"]       = sum(r.revenue       for r in recs)
        k["total_material_cost"] = sum(r.material_cost for r in recs)
        k["total_machine_cost"]  = sum(r.machine_cost  for r in recs)
        k["net_interest"]        = sum(r.interest      for r in recs)
        k["debt_repaid"]         = sum(r.debt_payment  for r in recs)

        # ── Flow ──────────────────────────────────────────────────────────────
        completed = sum(r.jobs_completing for r in recs)
        k["jobs_completed"] = completed
        # Lead time weighted by how many jobs finished each day
        k["avg_lead_time"] = (
            sum(r.avg_lead_time * r.jobs_completing for r in recs) / completed
            if completed else 0.0
        )
        k["avg_revenue_per_job"] = (k["total_revenue"] * 1000.0 / completed
                                    if completed else 0.0)

        wip = [r.lots_waiting_s1 + r.lots_waiting_s2 + r.lots_waiting_s3 + r.lots_waiting_s4
               for r in recs]
        k["peak_wip_lots"] = max(wip)
        k["avg_wip_lots"]  = sum(wip) / len(wip)

        # ── Material ──────────────────────────────────────────────────────────
        k["orders_placed"] = len(self.orders_placed)
        k["starved_days"]  = self.starved_days
        k["min_inventory"] = min(r.inventory for r in recs)

        return k
