"""Event types and DTOs for the yield router."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from yieldrouter.config import BPS_DENOMINATOR, YieldRouterSettings


class EventType(str, Enum):
    """Event type enumeration."""

    # Fund movement
    ALLOCATED = "allocated"
    WITHDRAWN = "withdrawn"
    REBALANCED = "rebalanced"

    # Registry
    BACKEND_ADDED = "backend_added"
    BACKEND_REMOVED = "backend_removed"

    # Allocation table / admin
    TARGET_ALLOCATIONS_UPDATED = "target_allocations_updated"
    PARAMETER_UPDATED = "parameter_updated"


@dataclass
class Event:
    """Base event class."""

    event_type: EventType
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = field(default_factory=dict)


class ManagerParameters(BaseModel):
    """Owner-mutable manager parameters.

    Built once from settings; every setter on the manager re-validates a copy
    through this model before committing it.
    """

    rebalance_threshold_bp: int = Field(ge=0, le=BPS_DENOMINATOR)
    min_tvl_for_rebalance: int = Field(ge=0)
    gas_cost_multiplier_pct: int = Field(gt=0)
    max_allocation_per_backend_bp: int = Field(gt=0, le=BPS_DENOMINATOR)
    min_allocation_threshold_bp: int = Field(ge=0, le=BPS_DENOMINATOR)

    @model_validator(mode="after")
    def validate_floor_below_cap(self) -> "ManagerParameters":
        """Floor must not exceed cap."""
        if self.min_allocation_threshold_bp > self.max_allocation_per_backend_bp:
            raise ValueError("min_allocation_threshold_bp must be <= max_allocation_per_backend_bp")
        return self

    @classmethod
    def from_settings(cls, cfg: YieldRouterSettings) -> "ManagerParameters":
        return cls(
            rebalance_threshold_bp=cfg.rebalance_threshold_bp,
            min_tvl_for_rebalance=cfg.min_tvl_for_rebalance,
            gas_cost_multiplier_pct=cfg.gas_cost_multiplier_pct,
            max_allocation_per_backend_bp=cfg.max_allocation_per_backend_bp,
            min_allocation_threshold_bp=cfg.min_allocation_threshold_bp,
        )


class Move(BaseModel):
    """One rebalance leg: capital leaves ``source`` and lands in ``destination``."""

    source: str
    destination: str
    amount: int

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: int) -> int:
        """Validate amount is positive."""
        if v <= 0:
            raise ValueError(f"Invalid amount: {v}, must be > 0")
        return v


class BackendInfo(BaseModel):
    """Read-only snapshot of one registered backend."""

    handle: str
    name: str
    asset: str
    balance: int
    apy_bp: int
    target_bp: int


class RebalanceDecision(BaseModel):
    """Outcome of the profitability gate, with the numbers behind it."""

    approved: bool
    reason: str
    total_tvl: int = 0
    num_moves: int = 0
    expected_annual_profit: int = 0
    weekly_profit: int = 0
    estimated_cost: int = 0
    threshold_cost: int = 0
    proposed_weights: dict[str, int] = Field(default_factory=dict)
