from __future__ import annotations

import pytest

from app.services.slots import compute_slot_plan

DEFAULT_QUOTAS = {"new": 0.3, "topRated": 0.3, "oldButGold": 0.2, "random": 0.2}


def test_default_policy_plan_for_ten():
    assert compute_slot_plan(10, DEFAULT_QUOTAS) == {
        "new": 3,
        "topRated": 3,
        "oldButGold": 2,
        "random": 2,
    }


def test_non_positive_pool_size_yields_empty_plan():
    assert compute_slot_plan(0, DEFAULT_QUOTAS) == {
        "new": 0,
        "topRated": 0,
        "oldButGold": 0,
        "random": 0,
    }
    assert sum(compute_slot_plan(-4, DEFAULT_QUOTAS).values()) == 0


def test_budgeted_slots_are_clamped_to_remaining_budget():
    plan = compute_slot_plan(3, {"new": 0.9, "topRated": 0.9, "oldButGold": 0.9})

    assert plan == {"new": 3, "topRated": 0, "oldButGold": 0, "random": 0}


def test_random_absorbs_remainder_and_ignores_its_own_quota():
    plan = compute_slot_plan(7, {"new": 0.1, "topRated": 0.0, "oldButGold": 0.0, "random": 0.0})

    assert plan == {"new": 1, "topRated": 0, "oldButGold": 0, "random": 6}


def test_half_values_round_up():
    plan = compute_slot_plan(5, {"new": 0.3, "topRated": 0.3, "oldButGold": 0.0})

    # 1.5 rounds to 2 for both budgeted slots.
    assert plan == {"new": 2, "topRated": 2, "oldButGold": 0, "random": 1}


@pytest.mark.parametrize("pool_size", [1, 2, 5, 9, 10, 13, 24, 50, 101])
def test_plan_sums_to_pool_size(pool_size):
    plan = compute_slot_plan(pool_size, DEFAULT_QUOTAS)

    assert sum(plan.values()) == pool_size
    assert all(count >= 0 for count in plan.values())
