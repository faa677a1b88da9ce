"""
Deterministic pseudo-random source for daily job arrivals.

Uniform variates come from the fractional part of ``sin(seed) × 10 000``;
the same seed always replays the same sequence, so two projections of the
same policy see exactly the same demand.
"""

from __future__ import annotations

import math


class SineRandom:
    """Uniform [0, 1) stream driven by an incrementing integer seed."""

    def __init__(self, seed: int) -> None:
        self.seed = seed

    def uniform(self) -> float:
        x = math.sin(self.seed) * 10_000
        self.seed += 1
        return x - math.floor(x)


def poisson(lam: float, seed: int) -> int:
    """
    Draw one Poisson(*lam*) count using Knuth's product-of-uniforms method.

    Non-positive rates yield zero arrivals.
    """
    if lam <= 0:
        return 0

    limit = math.exp(-lam)
    source = SineRandom(seed)
    k, p = 0, 1.0
    while True:
        k += 1
        p *= source.uniform()
        if p <= limit:
            return k - 1
