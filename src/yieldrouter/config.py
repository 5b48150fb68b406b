"""Configuration management using Pydantic v2."""

import os
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BPS_DENOMINATOR = 10_000


def _find_env_file() -> str:
    """Find .env file: check project root first, then CWD."""
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    env_path = os.path.join(project_root, ".env")
    if os.path.exists(env_path):
        return env_path
    return ".env"


class YieldRouterSettings(BaseSettings):
    """Main configuration for the yield router."""

    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    # Rebalancing
    rebalance_threshold_bp: int = Field(
        default=500,
        ge=0,
        le=BPS_DENOMINATOR,
        description="Rebalance threshold in basis points (stored and reported, not used by the gate)",
    )
    min_tvl_for_rebalance: int = Field(
        default=1_000_000_000,
        ge=0,
        description="Minimum total value (asset base units) before a rebalance is considered",
    )
    gas_cost_multiplier_pct: int = Field(
        default=200,
        gt=0,
        description="Safety multiplier on estimated execution cost, in percent (200 = 2x)",
    )

    # Allocation
    max_allocation_per_backend_bp: int = Field(
        default=5000,
        gt=0,
        le=BPS_DENOMINATOR,
        description="Maximum concentration per backend in basis points",
    )
    min_allocation_threshold_bp: int = Field(
        default=1000,
        ge=0,
        le=BPS_DENOMINATOR,
        description="Minimum participation; raw shares below this are clamped to 0",
    )

    # Execution cost model
    gas_price: int = Field(
        default=1_000_000_000,
        ge=0,
        description="Default unit execution price used by StaticGasPrice",
    )
    fixed_gas_per_move: int = Field(
        default=200_000,
        gt=0,
        description="Estimated execution units consumed by one rebalance leg",
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["text", "json"] = Field(
        default="text", description="Log output format: 'text' for humans, 'json' for aggregators"
    )

    # API
    api_owner_key: str | None = Field(
        default=None,
        description="API key that authenticates the owner principal on admin endpoints",
    )
    api_host: str = Field(default="127.0.0.1", description="Bind address for the API server")
    api_port: int = Field(default=8000, ge=1, le=65535, description="Port for the API server")

    # Dry-run server wiring
    owner_principal: str = Field(default="owner", description="Principal id holding the owner role")
    vault_principal: str = Field(default="vault", description="Principal id holding the vault role")
    paper_backends: dict[str, int] = Field(
        default_factory=dict,
        description='Paper backends to register at startup, handle -> yield bp (JSON, e.g. {"aave": 400})',
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept lower-case level names from env."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @model_validator(mode="after")
    def validate_floor_below_cap(self) -> "YieldRouterSettings":
        """The participation floor can never exceed the concentration cap."""
        if self.min_allocation_threshold_bp > self.max_allocation_per_backend_bp:
            raise ValueError(
                f"min_allocation_threshold_bp ({self.min_allocation_threshold_bp}) must be "
                f"<= max_allocation_per_backend_bp ({self.max_allocation_per_backend_bp})"
            )
        return self


# Global settings instance
settings = YieldRouterSettings()
