"""Target weight calculation across backends."""

from collections.abc import Iterator, Mapping, Sequence

from yieldrouter.config import BPS_DENOMINATOR
from yieldrouter.logging import get_logger

logger = get_logger(__name__)


def compute_target_weights(
    yields: Sequence[int],
    max_cap_bp: int,
    min_floor_bp: int,
) -> list[int]:
    """Compute a basis-point weight per backend from its yield.

    Rules:
    - zero total yield: every backend gets ``10000 // n``; the remainder is dropped
    - otherwise raw share ``yield * 10000 // total`` is capped at ``max_cap_bp``
      and zeroed below ``min_floor_bp``
    - if the capped/floored weights do not sum to 10000, each nonzero weight is
      rescaled once by ``w * 10000 // total``; cap and floor are not re-applied

    All arithmetic is floor division, so the result may still sum to slightly
    more or less than 10000.
    """
    n = len(yields)
    if n == 0:
        return []

    total_yield = sum(yields)
    if total_yield == 0:
        return [BPS_DENOMINATOR // n] * n

    weights: list[int] = []
    for y in yields:
        uncapped = y * BPS_DENOMINATOR // total_yield
        if uncapped > max_cap_bp:
            weights.append(max_cap_bp)
        elif uncapped < min_floor_bp:
            weights.append(0)
        else:
            weights.append(uncapped)

    total_allocated = sum(weights)
    if total_allocated > 0 and total_allocated != BPS_DENOMINATOR:
        weights = [
            w * BPS_DENOMINATOR // total_allocated if w > 0 else 0 for w in weights
        ]

    return weights


class TargetAllocationTable(Mapping[str, int]):
    """Stored weight per backend handle.

    Only ever replaced wholesale; there is no per-entry update.
    """

    def __init__(self, weights: Mapping[str, int] | None = None) -> None:
        self._weights: dict[str, int] = dict(weights or {})

    def __getitem__(self, handle: str) -> int:
        return self._weights[handle]

    def __iter__(self) -> Iterator[str]:
        return iter(self._weights)

    def __len__(self) -> int:
        return len(self._weights)

    def __repr__(self) -> str:
        return f"TargetAllocationTable({self._weights!r})"

    def weight(self, handle: str) -> int:
        """Stored weight, 0 for handles without an entry."""
        return self._weights.get(handle, 0)

    @property
    def total(self) -> int:
        return sum(self._weights.values())

    def replace(self, handles: Sequence[str], weights: Sequence[int]) -> None:
        """Overwrite every entry."""
        if len(handles) != len(weights):
            raise ValueError("handles and weights must have the same length")
        self._weights = dict(zip(handles, weights))
        logger.debug(f"Target allocations replaced: {self._weights}")

    def clear(self) -> None:
        self._weights = {}

    def as_dict(self) -> dict[str, int]:
        return dict(self._weights)

    def copy(self) -> "TargetAllocationTable":
        return TargetAllocationTable(self._weights)
