"""
Unit tests for delivery group partitioning.
"""

import math

import pytest

from item_publisher.delivery import partition


@pytest.mark.parametrize("n", [1, 9, 10, 11, 25, 100])
def test_group_count_and_order(n):
    items = list(range(n))
    groups = partition(items, 10)

    assert len(groups) == math.ceil(n / 10)
    assert all(1 <= len(g) <= 10 for g in groups)
    assert [x for g in groups for x in g] == items


def test_last_group_may_be_short():
    groups = partition(list(range(25)))
    assert [len(g) for g in groups] == [10, 10, 5]


def test_empty_input_yields_no_groups():
    assert partition([]) == []


def test_rejects_non_positive_size():
    with pytest.raises(ValueError):
        partition([1, 2, 3], 0)
