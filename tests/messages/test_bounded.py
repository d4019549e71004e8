from __future__ import annotations

import pytest

from agentpanel.messages import BoundedList


def test_append_drops_oldest_from_head():
    items: BoundedList[int] = BoundedList(3)
    for value in range(5):
        items.append(value)

    assert len(items) == 3
    assert items.snapshot() == [2, 3, 4]
    assert items[0] == 2
    assert items[-1] == 4


def test_length_never_exceeds_capacity_after_extend_and_replace():
    items: BoundedList[str] = BoundedList(1000)
    items.extend(str(i) for i in range(1200))
    assert len(items) == 1000
    assert items[0] == "200"

    items.replace(["a", "b"])
    assert items.snapshot() == ["a", "b"]


def test_initial_items_are_trimmed_and_order_kept():
    items = BoundedList(2, [1, 2, 3])
    assert list(items) == [2, 3]
    assert list(reversed(items)) == [3, 2]
    assert items[0:1] == [2]


def test_iteration_is_over_a_copy():
    items = BoundedList(5, [1, 2])
    for value in items:
        if value == 1:
            items.append(3)
    assert items.snapshot() == [1, 2, 3]


def test_clear_and_bool():
    items = BoundedList(2, ["x"])
    assert items
    items.clear()
    assert not items
    assert "capacity=2" in repr(items)


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        BoundedList(0)
