"""Integer slot allocation for a target pool size."""

from __future__ import annotations

import math
from typing import Mapping

from ..models import SLOT_KEYS
from ..utils import clamp, js_round


def compute_slot_plan(pool_size: int, quotas: Mapping[str, float]) -> dict[str, int]:
    """Split ``pool_size`` across the slots; ``random`` absorbs the remainder.

    The budgeted slots are visited in fixed order, each taking
    ``round(pool_size * quota)`` clamped to what is left. The result always
    sums to ``pool_size`` (or to zero for non-positive sizes).
    """

    plan = {key: 0 for key in SLOT_KEYS}
    if pool_size <= 0:
        return plan

    remaining = pool_size
    *budgeted, sink = SLOT_KEYS
    for key in budgeted:
        try:
            quota = float(quotas.get(key, 0.0))
        except (TypeError, ValueError):
            quota = 0.0
        if not math.isfinite(quota) or quota <= 0:
            continue
        count = max(0, js_round(pool_size * clamp(quota, 0.0, 1.0)))
        plan[key] = min(remaining, count)
        remaining -= plan[key]
    plan[sink] = max(0, remaining)
    return plan
