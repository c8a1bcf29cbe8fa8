"""
tests/unit/cdp/test_bounded_store.py

Tests for the capped collections in glassbox.cdp.bounded_store.
"""

import pytest

from glassbox.cdp.bounded_store import (
    BoundedStore,
    estimate_size,
    limit_item_count,
    limit_memory_usage,
)
from glassbox.data_models.cdp import ConsoleMessage, ConsoleMessageType


class TestLimitItemCount:
    """
    Tests for limit_item_count.
    """

    def test_within_cap_returns_same_object(self) -> None:
        """No copy is made when nothing has to go."""
        items = [1, 2, 3]
        assert limit_item_count(items, max_items=3) is items

    def test_keeps_newest(self) -> None:
        """The newest N elements survive, in order."""
        assert limit_item_count(list(range(10)), max_items=3) == [7, 8, 9]

    def test_zero_cap(self) -> None:
        """A zero cap keeps nothing."""
        assert limit_item_count([1, 2], max_items=0) == []


class TestEstimateSize:
    """
    Tests for estimate_size.
    """

    def test_string(self) -> None:
        """Serialized length times two."""
        # json.dumps("abcd") == '"abcd"'
        assert estimate_size("abcd") == 12

    def test_pydantic_model_uses_json_dump(self) -> None:
        """Models are measured through model_dump_json."""
        message = ConsoleMessage(type=ConsoleMessageType.LOG, text="hello", timestamp=1.0)
        assert estimate_size(message) == len(message.model_dump_json()) * 2

    def test_non_serializable_falls_back_to_str(self) -> None:
        """Objects json cannot encode are measured through default=str."""
        assert estimate_size({"key": object()}) > 0


class TestLimitMemoryUsage:
    """
    Tests for limit_memory_usage.
    """

    def test_total_within_budget(self) -> None:
        """The kept elements fit the budget and are the newest ones."""
        items = ["a" * 10 for _ in range(10)]  # 24 bytes each
        kept = limit_memory_usage(items, max_bytes=100)
        assert len(kept) == 4
        assert sum(estimate_size(item) for item in kept) <= 100

    def test_newest_always_kept(self) -> None:
        """A single oversized newest element is still kept."""
        kept = limit_memory_usage(["small", "x" * 1000], max_bytes=10)
        assert kept == ["x" * 1000]

    def test_order_preserved(self) -> None:
        """The result is ordered oldest to newest."""
        assert limit_memory_usage(["a", "b", "c"], max_bytes=10_000) == ["a", "b", "c"]


class TestBoundedStoreCountCap:
    """
    Tests for BoundedStore with max_items.
    """

    @pytest.mark.parametrize("previous,inserted,cap", [(0, 5, 10), (8, 5, 10), (10, 25, 10), (0, 1, 1)])
    def test_length_and_survivors(self, previous: int, inserted: int, cap: int) -> None:
        """Length is min(previous + k, N) and the survivors are the newest N."""
        store: BoundedStore[int] = BoundedStore(max_items=cap)
        store.extend(range(previous))
        store.extend(range(previous, previous + inserted))

        combined = list(range(previous + inserted))
        assert len(store) == min(previous + inserted, cap)
        assert store.snapshot() == combined[-cap:]

    def test_counters(self) -> None:
        """total_appended and evicted_count track every insertion and eviction."""
        store: BoundedStore[int] = BoundedStore(max_items=3)
        store.extend(range(5))
        assert store.total_appended == 5
        assert store.evicted_count == 2

    def test_clear_returns_removed_and_resets(self) -> None:
        """clear() empties the store and resets counters."""
        store: BoundedStore[int] = BoundedStore(max_items=3)
        store.extend(range(5))
        assert store.clear() == 3
        assert len(store) == 0
        assert not store
        assert store.total_appended == 0
        assert store.evicted_count == 0

    def test_latest_and_find(self) -> None:
        """latest(n) returns the newest n oldest-first; find() searches newest-first."""
        store: BoundedStore[int] = BoundedStore(max_items=10)
        store.extend([1, 2, 3, 4])
        assert store.latest(2) == [3, 4]
        assert store.latest(0) == []
        assert store.latest(100) == [1, 2, 3, 4]
        assert store.find(lambda item: item % 2 == 1) == 3
        assert store.find(lambda item: item > 10) is None

    def test_snapshot_is_a_copy(self) -> None:
        """Mutating a snapshot does not touch the store."""
        store: BoundedStore[int] = BoundedStore(max_items=10)
        store.append(1)
        store.snapshot().append(2)
        assert len(store) == 1

    def test_summary(self) -> None:
        """get_summary() reports occupancy."""
        store: BoundedStore[int] = BoundedStore(max_items=2)
        store.extend([1, 2, 3])
        summary = store.get_summary()
        assert summary["total_items"] == 2
        assert summary["max_items"] == 2
        assert summary["evicted_count"] == 1


class TestBoundedStoreSizeCap:
    """
    Tests for BoundedStore with max_bytes.
    """

    def test_budget_holds_after_every_insert(self) -> None:
        """Estimated size never exceeds the budget while more than one item is kept."""
        store: BoundedStore[str] = BoundedStore(max_bytes=200)
        for i in range(50):
            store.append(f"item-{i:03d}")
            assert store.estimated_bytes <= 200 or len(store) == 1

    def test_matches_pure_function(self) -> None:
        """Incremental eviction keeps the same elements as limit_memory_usage."""
        items = [f"value-{i}" * (i % 4 + 1) for i in range(30)]
        store: BoundedStore[str] = BoundedStore(max_bytes=300)
        store.extend(items)
        assert store.snapshot() == limit_memory_usage(items, max_bytes=300)

    def test_single_oversized_item_kept(self) -> None:
        """An item larger than the budget alone is kept (progress guarantee)."""
        store: BoundedStore[str] = BoundedStore(max_bytes=10)
        store.append("a" * 100)
        assert len(store) == 1
        store.append("b" * 100)
        assert store.snapshot() == ["b" * 100]


class TestBoundedStoreConstruction:
    """
    Tests for BoundedStore arguments.
    """

    def test_requires_exactly_one_cap(self) -> None:
        """Both or neither cap is a programming error."""
        with pytest.raises(ValueError):
            BoundedStore()
        with pytest.raises(ValueError):
            BoundedStore(max_items=1, max_bytes=1)
