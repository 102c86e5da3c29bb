"""Integer splitting of a room total across tickets.

Both functions return shares whose sum is exactly the requested total.
"""

from __future__ import annotations

import math
from fractions import Fraction
from typing import List, Sequence


def round_half_up(value: Fraction | int | float) -> int:
    return math.floor(Fraction(value) + Fraction(1, 2))


def split_evenly(total_cents: int, count: int) -> List[int]:
    """Floor share for everyone, then one extra cent to the first ``remainder`` tickets."""
    if count <= 0:
        return []
    base, remainder = divmod(total_cents, count)
    return [base + (1 if index < remainder else 0) for index in range(count)]


def minimum_headcount_total(raw_total: int, actual_people: int, min_people: int) -> int:
    """Average per-person price times the minimum headcount."""
    if actual_people <= 0:
        return 0
    return round_half_up(Fraction(raw_total * min_people, actual_people))


def rescale_to_target(prices: Sequence[int], target_total: int) -> List[int]:
    """Scale ``prices`` by ``target_total / sum(prices)``; the last entry absorbs rounding."""
    count = len(prices)
    if count == 0:
        return []
    raw_total = sum(prices)
    shares: List[int] = []
    running = 0
    for index, price in enumerate(prices):
        if index == count - 1:
            share = target_total - running
        elif raw_total == 0:
            share = target_total // count
        else:
            share = round_half_up(Fraction(price * target_total, raw_total))
        running += share
        shares.append(share)
    return shares
