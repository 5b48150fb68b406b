"""Excess/deficit rebalance planning."""

from collections.abc import Sequence
from dataclasses import dataclass, field

from yieldrouter.config import BPS_DENOMINATOR
from yieldrouter.core.types import Move
from yieldrouter.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Gap:
    """Distance between a backend's balance and its target."""

    handle: str
    amount: int


@dataclass
class SourceLeg:
    """Everything that happens for one excess backend.

    Its entire surplus is withdrawn once, then handed out as ``moves``.
    Anything not handed out stays idle with the manager.
    """

    source: str
    withdraw_amount: int
    moves: list[Move] = field(default_factory=list)

    @property
    def distributed(self) -> int:
        return sum(m.amount for m in self.moves)


@dataclass
class RebalancePlan:
    legs: list[SourceLeg] = field(default_factory=list)
    unfunded: list[Gap] = field(default_factory=list)

    @property
    def moves(self) -> list[Move]:
        return [m for leg in self.legs for m in leg.moves]

    @property
    def total_withdrawn(self) -> int:
        return sum(leg.withdraw_amount for leg in self.legs)

    @property
    def is_empty(self) -> bool:
        return not self.legs


def target_balances(weights: Sequence[int], total_tvl: int) -> list[int]:
    """``total_tvl * weight // 10000`` per backend."""
    return [total_tvl * w // BPS_DENOMINATOR for w in weights]


def classify(
    handles: Sequence[str],
    balances: Sequence[int],
    targets: Sequence[int],
) -> tuple[list[Gap], list[Gap]]:
    """Split backends into (excess, deficit), keeping registry order.

    Backends exactly on target appear in neither list.
    """
    excess: list[Gap] = []
    deficit: list[Gap] = []
    for handle, current, target in zip(handles, balances, targets):
        if current > target:
            excess.append(Gap(handle, current - target))
        elif target > current:
            deficit.append(Gap(handle, target - current))
    return excess, deficit


def plan_rebalance(
    handles: Sequence[str],
    balances: Sequence[int],
    weights: Sequence[int],
    total_tvl: int,
) -> RebalancePlan:
    """Greedy matching of excess backends against deficit backends.

    Outer loop over excess backends, inner over deficit backends, each
    transfer is ``min(remaining surplus, remaining need)``. Deficit left over
    once all surplus is spent is reported in ``unfunded`` and not treated as
    an error.
    """
    if not (len(handles) == len(balances) == len(weights)):
        raise ValueError("handles, balances and weights must have the same length")

    targets = target_balances(weights, total_tvl)
    excess, deficit = classify(handles, balances, targets)

    plan = RebalancePlan()
    needs = [Gap(d.handle, d.amount) for d in deficit]
    j = 0
    for source in excess:
        leg = SourceLeg(source=source.handle, withdraw_amount=source.amount)
        remaining = source.amount
        while remaining > 0 and j < len(needs):
            transfer = min(remaining, needs[j].amount)
            if transfer > 0:
                leg.moves.append(
                    Move(source=source.handle, destination=needs[j].handle, amount=transfer)
                )
            remaining -= transfer
            needs[j].amount -= transfer
            if needs[j].amount == 0:
                j += 1
        plan.legs.append(leg)

    plan.unfunded = [g for g in needs[j:] if g.amount > 0]

    logger.debug(
        f"Rebalance plan: {len(plan.legs)} sources, {len(plan.moves)} moves, "
        f"withdraw={plan.total_withdrawn}, unfunded={sum(g.amount for g in plan.unfunded)}"
    )
    return plan
