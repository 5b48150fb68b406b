"""Tests for target weight calculation."""

import pytest

from yieldrouter.portfolio.allocator import TargetAllocationTable, compute_target_weights


def test_exact_shares_need_no_rescale() -> None:
    """Shares inside cap and floor that already sum to 10000 are kept as-is."""
    assert compute_target_weights([300, 300, 400], 5000, 1000) == [3000, 3000, 4000]


def test_rescale_is_single_truncating_pass() -> None:
    """500/1000 bp yields without a binding cap: 3333 + 6666 survive the rescale unchanged."""
    weights = compute_target_weights([500, 1000], 10_000, 1000)
    assert weights == [3333, 6666]
    assert sum(weights) == 9999


def test_cap_then_rescale() -> None:
    """The capped 6666 share becomes 5000, then both are rescaled once."""
    weights = compute_target_weights([500, 1000], 5000, 1000)
    # 3333 * 10000 // 8333 and 5000 * 10000 // 8333
    assert weights == [3999, 6000]


def test_floor_zeroes_small_shares_and_rescale_may_exceed_cap() -> None:
    """Shares below the floor drop to 0; rescaled weights are not re-capped."""
    weights = compute_target_weights([100, 4500, 5400], 5000, 1000)
    assert weights == [0, 4736, 5263]
    assert weights[2] > 5000


def test_zero_total_yield_splits_evenly_and_drops_remainder() -> None:
    """With no yield anywhere each backend gets 10000 // n."""
    assert compute_target_weights([0, 0, 0], 5000, 1000) == [3333, 3333, 3333]
    assert compute_target_weights([0, 0], 5000, 1000) == [5000, 5000]


def test_zero_yield_split_ignores_cap() -> None:
    """The even split is not capped."""
    assert compute_target_weights([0], 5000, 1000) == [10_000]


def test_all_shares_below_floor_leaves_everything_zero() -> None:
    """No rescale happens when nothing survives the floor."""
    assert compute_target_weights([1] * 11, 5000, 1000) == [0] * 11


def test_all_capped_are_scaled_back_up() -> None:
    """Two equal capped weights are rescaled to an even split above the cap."""
    assert compute_target_weights([7, 7], 4000, 1000) == [5000, 5000]


def test_empty_input() -> None:
    assert compute_target_weights([], 5000, 1000) == []


@pytest.mark.parametrize(
    "yields",
    [[1, 2, 3], [500, 1000], [10, 0, 990], [123, 456, 789, 1011], [9999, 1]],
)
def test_weight_invariants(yields: list[int]) -> None:
    """Sum never exceeds 10000 and nonzero pre-rescale shares respect the floor."""
    weights = compute_target_weights(yields, 10_000, 1000)
    assert sum(weights) <= 10_000
    total = sum(yields)
    for y, w in zip(yields, weights):
        if w > 0:
            assert y * 10_000 // total >= 1000


def test_table_replace_overwrites_everything() -> None:
    """replace() drops entries not in the new set."""
    table = TargetAllocationTable({"a": 5000, "b": 5000})
    table.replace(["b", "c"], [4000, 6000])
    assert table.as_dict() == {"b": 4000, "c": 6000}
    assert table.weight("a") == 0
    assert "a" not in table
    assert table.total == 10_000


def test_table_replace_length_mismatch() -> None:
    table = TargetAllocationTable()
    with pytest.raises(ValueError):
        table.replace(["a"], [1, 2])


def test_table_copy_is_independent() -> None:
    table = TargetAllocationTable({"a": 10_000})
    clone = table.copy()
    clone.clear()
    assert table.weight("a") == 10_000
    assert len(clone) == 0
