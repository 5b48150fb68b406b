"""Profitability gate: is a rebalance worth its execution cost?"""

from collections.abc import Mapping, Sequence

from yieldrouter.config import BPS_DENOMINATOR
from yieldrouter.core.types import ManagerParameters, RebalanceDecision
from yieldrouter.logging import get_logger
from yieldrouter.portfolio.allocator import compute_target_weights
from yieldrouter.portfolio.rebalancer import target_balances

logger = get_logger(__name__)

DAYS_PER_WEEK = 7
DAYS_PER_YEAR = 365
MIN_BACKENDS_FOR_REBALANCE = 2


class ProfitabilityGate:
    """Compares projected weekly profit with an estimated execution cost.

    The gate never touches the stored allocation table. It recomputes
    weights locally and counts a move for every backend whose fresh weight
    differs from its stored one. That count is an estimate: the planner
    derives the real legs from balance gaps and the two can disagree.
    """

    def __init__(self, fixed_gas_per_move: int) -> None:
        self.fixed_gas_per_move = fixed_gas_per_move

    def evaluate(
        self,
        handles: Sequence[str],
        balances: Sequence[int],
        yields: Sequence[int],
        stored_weights: Mapping[str, int],
        params: ManagerParameters,
        gas_price: int,
    ) -> RebalanceDecision:
        """Decide whether rebalancing now is profitable.

        Args:
            handles: Registered backend handles in registry order
            balances: Live balance per backend
            yields: Live yield per backend in basis points
            stored_weights: Currently persisted target weights
            params: Manager parameters (cap, floor, TVL minimum, multiplier)
            gas_price: Current price of one execution unit

        Returns:
            RebalanceDecision with ``approved`` and the numbers behind it
        """
        total_tvl = sum(balances)

        if len(handles) < MIN_BACKENDS_FOR_REBALANCE:
            return RebalanceDecision(
                approved=False, reason="fewer than 2 backends", total_tvl=total_tvl
            )
        if total_tvl < params.min_tvl_for_rebalance:
            return RebalanceDecision(
                approved=False,
                reason=f"tvl {total_tvl} below minimum {params.min_tvl_for_rebalance}",
                total_tvl=total_tvl,
            )
        if sum(yields) == 0:
            return RebalanceDecision(approved=False, reason="total yield is zero", total_tvl=total_tvl)

        weights = compute_target_weights(
            yields, params.max_allocation_per_backend_bp, params.min_allocation_threshold_bp
        )
        targets = target_balances(weights, total_tvl)

        expected_annual_profit = 0
        num_moves = 0
        for handle, current, target, apy, weight in zip(handles, balances, targets, yields, weights):
            # Only inflows count; capital leaving a backend is not booked as a loss
            if target > current:
                expected_annual_profit += (target - current) * apy // BPS_DENOMINATOR
            if weight != stored_weights.get(handle, 0):
                num_moves += 1

        weekly_profit = expected_annual_profit * DAYS_PER_WEEK // DAYS_PER_YEAR
        estimated_cost = num_moves * self.fixed_gas_per_move * gas_price
        threshold_cost = estimated_cost * params.gas_cost_multiplier_pct // 100
        approved = weekly_profit > threshold_cost

        reason = (
            f"weekly profit {weekly_profit} {'>' if approved else '<='} "
            f"cost threshold {threshold_cost} ({num_moves} moves)"
        )
        logger.debug(f"Profitability gate: {reason}")

        return RebalanceDecision(
            approved=approved,
            reason=reason,
            total_tvl=total_tvl,
            num_moves=num_moves,
            expected_annual_profit=expected_annual_profit,
            weekly_profit=weekly_profit,
            estimated_cost=estimated_cost,
            threshold_cost=threshold_cost,
            proposed_weights=dict(zip(handles, weights)),
        )
