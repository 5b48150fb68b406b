"""Core contracts for the yield router.

These abstract base classes are the only surface the manager depends on.
Concrete adapters wrap a specific external yield protocol and stay thin:
they forward deposits and withdrawals and report balance and yield.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class YieldBackend(ABC):
    """A yield-generating destination the manager can allocate into.

    ``handle`` is the unique registry key for the backend. Adapters raise
    :class:`~yieldrouter.core.errors.DepositFailed` or
    :class:`~yieldrouter.core.errors.WithdrawFailed` when the wrapped
    source rejects a call; any other exception is treated the same way by
    the fund mover.
    """

    @property
    @abstractmethod
    def handle(self) -> str:
        """Stable unique identifier (address-equivalent)."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name."""

    @property
    @abstractmethod
    def asset(self) -> str:
        """Handle of the asset this backend holds."""

    @abstractmethod
    async def deposit(self, amount: int) -> int:
        """Deposit ``amount`` and return the shares received."""

    @abstractmethod
    async def withdraw(self, amount: int) -> int:
        """Withdraw ``amount`` and return the amount actually withdrawn."""

    @abstractmethod
    async def total_assets(self) -> int:
        """Current balance held for the manager, in asset base units."""

    @abstractmethod
    async def apy(self) -> int:
        """Current annualized yield in basis points."""


class GasPriceSource(ABC):
    """Supplies the current unit execution price for cost estimates."""

    @abstractmethod
    async def current_price(self) -> int:
        """Return the price of one execution unit."""
