"""
Analytical profit outlook: a closed-form view of the rest of the game.

Throughput is the bottleneck pool's rate at a fixed efficiency.  Lead time
is the sum, over the four steps, of a queue wait plus one job's service
time on the pool, with the wait growing as ρ / (1 − ρ) once a pool is
busy.  Lead times are taken as normally distributed, and each job's
revenue is averaged over that distribution.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from .capacity import bottleneck_lots_per_day, cycle_capacity, processing_times
from .config import (
    CONTRACTS, DEFAULT_SETTINGS, HOURS_PER_DAY, OUTLOOK, ConfigurationError, EngineSettings,
)
from .finance import finance_purchases
from .models import Policy


@dataclass(frozen=True)
class LeadTimeEstimate:
    mean: float
    std:  float


@dataclass(frozen=True)
class DeliveryOdds:
    """Chance a job lands inside each band of its contract."""

    on_time: float
    partial: float
    late:    float


def estimate_throughput(policy: Policy, settings: EngineSettings = DEFAULT_SETTINGS) -> float:
    """Jobs per day: demand, or the bottleneck pool at its working efficiency."""
    bottleneck = bottleneck_lots_per_day(policy, settings.strict_lot_sizes)
    return min(settings.arrival_rate,
               OUTLOOK["efficiency"] * bottleneck / policy.lots_per_job)


def utilisation(
    policy: Policy, jobs_per_day: float, settings: EngineSettings = DEFAULT_SETTINGS,
) -> Dict[str, float]:
    """Share of each machine pool's day taken by *jobs_per_day* jobs."""
    lots = jobs_per_day * policy.lots_per_job
    capacity = cycle_capacity(policy, settings.strict_lot_sizes)
    return {pool: lots / cap for pool, cap in capacity.items()}


def _queue_wait(rho: float, service: float, machines: int) -> float:
    if rho >= 1.0:
        return math.inf
    if rho > OUTLOOK["busy_utilisation"]:
        return rho / (1.0 - rho) * service / machines
    return service * OUTLOOK["idle_wait_factor"]


def estimate_lead_time(
    policy: Policy, jobs_per_day: float, settings: EngineSettings = DEFAULT_SETTINGS,
) -> LeadTimeEstimate:
    """Mean and spread of a job's lead time at *jobs_per_day*."""
    t = processing_times(policy.lot_size, settings.strict_lot_sizes)
    rho = utilisation(policy, jobs_per_day, settings)
    route = (
        ("stuffer", t["s1"], policy.station1_machines),
        ("tester",  t["s2"], policy.station2_machines),
        ("tuner",   t["s3"], policy.station3_machines),
        ("tester",  t["s4"], policy.station2_machines),
    )

    mean = 0.0
    for pool, hours, machines in route:
        # days one machine spends on a whole job at this step
        service = policy.lots_per_job * hours / HOURS_PER_DAY
        mean += _queue_wait(rho[pool], service, machines) + service / machines

    if math.isinf(mean):
        return LeadTimeEstimate(math.inf, 0.0)
    std = mean * OUTLOOK["lead_time_spread"] * math.sqrt(rho["tester"])
    return LeadTimeEstimate(mean, std)


def _terms(tier: int) -> Dict[str, float]:
    terms = CONTRACTS.get(tier)
    if terms is None:
        raise ConfigurationError(f"contract tier {tier} not in {sorted(CONTRACTS)}")
    return terms


def expected_job_revenue(tier: int, lead: LeadTimeEstimate) -> float:
    """Dollars a job of contract *tier* earns on average, by midpoint integration."""
    terms = _terms(tier)
    promised, latest, face = terms["promised"], terms["max"], terms["revenue"]
    if lead.std <= 0:
        if lead.mean <= promised:
            return face
        return face * min(1.0, max(0.0, (latest - lead.mean) / (latest - promised)))

    sigmas, steps = OUTLOOK["integration_sigmas"], OUTLOOK["integration_steps"]
    lo = max(0.0, lead.mean - sigmas * lead.std)
    hi = lead.mean + sigmas * lead.std
    x = lo + (np.arange(steps) + 0.5) * (hi - lo) / steps
    weight = np.exp(-0.5 * ((x - lead.mean) / lead.std) ** 2)
    revenue = face * np.clip((latest - x) / (latest - promised), 0.0, 1.0)
    return float((revenue * weight).sum() / weight.sum())


def _normal_cdf(x: float, lead: LeadTimeEstimate) -> float:
    if lead.std <= 0:
        return 1.0 if x >= lead.mean else 0.0
    return 0.5 * (1.0 + math.erf((x - lead.mean) / (lead.std * math.sqrt(2.0))))


def delivery_odds(tier: int, lead: LeadTimeEstimate) -> DeliveryOdds:
    terms = _terms(tier)
    within_promise = _normal_cdf(terms["promised"], lead)
    within_max = _normal_cdf(terms["max"], lead)
    return DeliveryOdds(
        on_time=within_promise,
        partial=within_max - within_promise,
        late=1.0 - within_max,
    )


@dataclass(frozen=True)
class ProfitOutlook:
    """Closed-form totals from the decision day to the horizon (money in $k)."""

    days_remaining:   int
    jobs_per_day:     float
    lead_time:        LeadTimeEstimate
    revenue_per_job:  float               # dollars
    odds:             DeliveryOdds
    gross_revenue:    float
    material_cost:    float
    machine_cost:     float
    upfront_fee:      float
    debt:             float               # after financing any purchases
    interest_charged: float
    interest_earned:  float
    net_revenue:      float

    @property
    def revenue_per_day(self) -> float:
        return self.net_revenue / self.days_remaining if self.days_remaining else 0.0


def profit_outlook(
    current_day: int,
    cash: float,
    debt: float,
    policy: Policy,
    baseline: Optional[Policy] = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> ProfitOutlook:
    """
    Profit from *current_day* to the horizon if *policy* ran unchanged.

    Machines *policy* has beyond *baseline* are bought up front and
    financed as in a projection.  Debt compounds untouched; positive cash
    left after purchases earns interest.
    """
    days = max(0, settings.horizon_day - current_day)
    jobs = estimate_throughput(policy, settings)
    lead = estimate_lead_time(policy, jobs, settings)
    per_job = expected_job_revenue(policy.contract, lead)

    kits = jobs * settings.kits_per_job * days
    orders = math.ceil(kits / policy.order_quantity) if policy.order_quantity > 0 else 0
    material = kits * settings.cost_per_kit + orders * settings.fixed_order_cost

    plan = finance_purchases(policy, baseline or policy, cash, debt, settings)
    charged = plan.debt * ((1.0 + settings.daily_debt_rate) ** days - 1.0)
    spare = cash - plan.machine_cost
    earned = spare * ((1.0 + settings.daily_cash_rate) ** days - 1.0) if spare > 0 else 0.0

    gross = jobs * per_job / 1000.0 * days
    net = gross - material - plan.machine_cost - charged + earned - plan.upfront_fee
    return ProfitOutlook(
        days_remaining=days,
        jobs_per_day=jobs,
        lead_time=lead,
        revenue_per_job=per_job,
        odds=delivery_odds(policy.contract, lead),
        gross_revenue=gross,
        material_cost=material,
        machine_cost=plan.machine_cost,
        upfront_fee=plan.upfront_fee,
        debt=plan.debt,
        interest_charged=charged,
        interest_earned=earned,
        net_revenue=net,
    )
