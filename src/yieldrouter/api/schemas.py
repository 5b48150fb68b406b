"""Pydantic schemas for API requests and responses."""

from pydantic import BaseModel, Field, model_validator

from yieldrouter.core.types import Move


class ManagerSummary(BaseModel):
    """Aggregate view of the manager."""

    total_assets: int
    backend_count: int
    idle_balance: int
    target_allocations: dict[str, int]


class RebalanceResponse(BaseModel):
    moves: list[Move] = Field(default_factory=list)


class ParameterUpdateRequest(BaseModel):
    """Owner request to change one or more manager parameters."""

    rebalance_threshold_bp: int | None = None
    min_tvl_for_rebalance: int | None = None
    gas_cost_multiplier_pct: int | None = None
    max_allocation_per_backend_bp: int | None = None
    min_allocation_threshold_bp: int | None = None

    @model_validator(mode="after")
    def validate_not_empty(self) -> "ParameterUpdateRequest":
        """At least one parameter must be set."""
        if not self.model_dump(exclude_none=True):
            raise ValueError("at least one parameter is required")
        return self
