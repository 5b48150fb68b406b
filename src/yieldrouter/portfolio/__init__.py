"""Portfolio logic -- registry, target weights, rebalance planning and the profitability gate."""

from .allocator import TargetAllocationTable, compute_target_weights
from .profitability import ProfitabilityGate
from .rebalancer import RebalancePlan, plan_rebalance
from .registry import BackendRegistry

__all__ = [
    "BackendRegistry",
    "ProfitabilityGate",
    "RebalancePlan",
    "TargetAllocationTable",
    "compute_target_weights",
    "plan_rebalance",
]
