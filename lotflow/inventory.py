"""
Raw-material (kit) inventory controller.

One supplier, one order pipeline: at most one replenishment order can be
in transit, it always carries exactly the policy's order quantity, and it
lands in full on its arrival day.  Kits leave inventory only in whole-job
lots of ``KITS_PER_JOB``.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from .config import DEFAULT_SETTINGS, EngineSettings
from .models import InventoryState, Policy

logger = logging.getLogger(__name__)


def order_cost(quantity: float, settings: EngineSettings = DEFAULT_SETTINGS) -> float:
    """Cost ($k) of one order of *quantity* kits."""
    return quantity * settings.cost_per_kit + settings.fixed_order_cost


def receive(inventory: InventoryState, day: float, quantity: float) -> InventoryState:
    """Land an in-transit order once *day* reaches its arrival day."""
    if inventory.order_in_transit and day >= inventory.order_arrival_day:
        logger.debug("day %s: %s kits received", day, quantity)
        return replace(
            inventory,
            kits=inventory.kits + max(0.0, quantity),
            order_in_transit=False,
        )
    return inventory


def can_start_job(inventory: InventoryState, settings: EngineSettings = DEFAULT_SETTINGS) -> bool:
    return inventory.kits >= settings.kits_per_job


def consume_job(
    inventory: InventoryState, settings: EngineSettings = DEFAULT_SETTINGS,
) -> InventoryState:
    if not can_start_job(inventory, settings):
        raise ValueError(
            f"cannot start a job with {inventory.kits:.0f} kits "
            f"(needs {settings.kits_per_job})"
        )
    return replace(inventory, kits=inventory.kits - settings.kits_per_job)


def should_reorder(
    inventory: InventoryState,
    policy: Policy,
    cash_available: float,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> bool:
    """
    Reorder rule: stock at or below the reorder point, nothing already on
    the way, a positive order quantity, and enough cash to pay for it.
    """
    quantity = policy.order_quantity
    if quantity <= 0:
        return False
    return (
        inventory.kits <= max(0.0, policy.reorder_point)
        and not inventory.order_in_transit
        and cash_available >= order_cost(quantity, settings)
    )


def place_order(inventory: InventoryState, day: float, lead_time: float) -> InventoryState:
    if inventory.order_in_transit:
        raise ValueError(
            f"order already in transit (arrives day {inventory.order_arrival_day})"
        )
    logger.debug("day %s: material order placed, arrives day %s", day, day + lead_time)
    return replace(inventory, order_in_transit=True, order_arrival_day=day + lead_time)
