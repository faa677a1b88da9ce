"""Revenue, interest, debt and machine-purchase arithmetic (all money in $k)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

from .config import CONTRACTS, DEFAULT_SETTINGS, MACHINE_COSTS, EngineSettings, ConfigurationError
from .inventory import order_cost, place_order, should_reorder
from .models import InventoryState, Policy

logger = logging.getLogger(__name__)


def contract_revenue(tier: int, lead_time: float) -> float:
    """
    Dollars earned by a job of contract *tier* delivered after *lead_time* days.

    Full price up to the promised lead time, then a straight line down to
    nothing at the maximum lead time.
    """
    terms = CONTRACTS.get(tier)
    if terms is None:
        raise ConfigurationError(f"contract tier {tier} not in {sorted(CONTRACTS)}")

    promised, latest, face = terms["promised"], terms["max"], terms["revenue"]
    if lead_time <= promised:
        return face
    if lead_time < latest:
        return face * (latest - lead_time) / (latest - promised)
    return 0.0


def accrue_interest(
    cash: float, debt: float, settings: EngineSettings = DEFAULT_SETTINGS,
) -> Tuple[float, float]:
    """One day of ``(cash_interest_earned, debt_interest_charged)``."""
    earned  = cash * settings.daily_cash_rate if cash > 0 else 0.0
    charged = debt * settings.daily_debt_rate if debt > 0 else 0.0
    return earned, charged


def pay_down_debt(cash: float, debt: float, buffer: float) -> Tuple[float, float, float]:
    """
    Sweep cash above *buffer* into debt repayment.

    Returns ``(cash, debt, payment)``; the payment never exceeds the debt.
    """
    if debt <= 0 or cash <= buffer:
        return cash, debt, 0.0
    payment = min(debt, cash - buffer)
    return cash - payment, debt - payment, payment


@dataclass(frozen=True)
class Settlement:
    """Result of one day's financial update."""

    cash:          float
    debt:          float
    inventory:     InventoryState
    material_cost: float
    cash_interest: float
    debt_interest: float
    debt_payment:  float

    @property
    def net_interest(self) -> float:
        return self.cash_interest - self.debt_interest


def settle_day(
    cash: float,
    debt: float,
    revenue: float,
    inventory: InventoryState,
    policy: Policy,
    day: float,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> Settlement:
    """
    Interest, revenue, the material reorder decision and the debt sweep,
    in that order.  The reorder check sees cash after today's revenue.
    """
    earned, charged = accrue_interest(cash, debt, settings)
    net_interest = earned - charged
    cash_after_revenue = cash + revenue + net_interest

    material_cost = 0.0
    if should_reorder(inventory, policy, cash_after_revenue, settings):
        material_cost = order_cost(policy.order_quantity, settings)
        inventory = place_order(inventory, day, settings.material_lead_time)

    cash = cash + revenue + net_interest - material_cost
    cash, debt, payment = pay_down_debt(cash, debt, settings.cash_buffer)

    return Settlement(
        cash=cash,
        debt=debt,
        inventory=inventory,
        material_cost=material_cost,
        cash_interest=earned,
        debt_interest=charged,
        debt_payment=payment,
    )


@dataclass(frozen=True)
class PurchasePlan:
    """How a set of machine purchases is paid for."""

    machine_cost: float
    upfront_fee:  float
    borrowed:     float
    cash:         float
    debt:         float


def machine_purchase_cost(policy: Policy, baseline: Policy) -> float:
    """Cost of the machines *policy* has beyond *baseline* (sales are not refunded)."""
    cost = 0.0
    for station, price in MACHINE_COSTS.items():
        extra = policy.machines(station) - baseline.machines(station)
        if extra > 0:
            cost += extra * price
    return cost


def finance_purchases(
    policy: Policy,
    baseline: Policy,
    cash: float,
    debt: float,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> PurchasePlan:
    """
    Pay for extra machines from cash, borrowing any shortfall.

    Borrowed money carries an upfront fee that is added to the debt.
    """
    cost = machine_purchase_cost(policy, baseline)
    if cost <= cash:
        return PurchasePlan(cost, 0.0, 0.0, cash - cost, debt)

    borrowed = cost - max(0.0, cash)
    fee = borrowed * settings.loan_fee_pct
    logger.debug("machine purchase of %.1f borrows %.1f (fee %.2f)", cost, borrowed, fee)
    return PurchasePlan(cost, fee, borrowed, min(cash, 0.0), debt + borrowed + fee)
