"""In-memory backend for dry runs and tests."""

from yieldrouter.config import BPS_DENOMINATOR, settings
from yieldrouter.core.contracts import GasPriceSource, YieldBackend
from yieldrouter.core.errors import DepositFailed, WithdrawFailed
from yieldrouter.logging import get_logger

logger = get_logger(__name__)


class PaperBackend(YieldBackend):
    """Simulated yield backend holding a plain integer balance.

    Shares are minted 1:1 on deposit; ``accrue`` grows the balance by the
    configured yield so share value drifts above par like a real source.
    Failures can be injected per call type.
    """

    def __init__(
        self,
        handle: str,
        apy_bp: int = 0,
        *,
        name: str | None = None,
        asset: str = "USDC",
        balance: int = 0,
    ) -> None:
        self._handle = handle
        self._name = name or handle
        self._asset = asset
        self._balance = balance
        self._shares = balance
        self.apy_bp = apy_bp

        self.fail_deposits = False
        self.fail_withdrawals = False
        self._fail_after_deposits: int | None = None

        self.deposit_calls: list[int] = []
        self.withdraw_calls: list[int] = []

    @property
    def handle(self) -> str:
        return self._handle

    @property
    def name(self) -> str:
        return self._name

    @property
    def asset(self) -> str:
        return self._asset

    @property
    def balance(self) -> int:
        return self._balance

    @property
    def call_count(self) -> int:
        return len(self.deposit_calls) + len(self.withdraw_calls)

    def fail_after(self, deposits: int) -> None:
        """Let ``deposits`` more deposits succeed, then reject every deposit."""
        self._fail_after_deposits = deposits

    async def deposit(self, amount: int) -> int:
        if self._should_fail_deposit():
            raise DepositFailed(f"{self._handle}: deposit of {amount} rejected")
        if amount <= 0:
            raise DepositFailed(f"{self._handle}: deposit amount must be > 0")
        self.deposit_calls.append(amount)
        shares = self._to_shares(amount)
        self._balance += amount
        self._shares += shares
        return shares

    async def withdraw(self, amount: int) -> int:
        if self.fail_withdrawals:
            raise WithdrawFailed(f"{self._handle}: withdrawal of {amount} rejected")
        if amount > self._balance:
            raise WithdrawFailed(
                f"{self._handle}: withdrawal of {amount} exceeds balance {self._balance}"
            )
        self.withdraw_calls.append(amount)
        self._shares -= min(self._shares, self._to_shares(amount))
        self._balance -= amount
        return amount

    async def total_assets(self) -> int:
        return self._balance

    async def apy(self) -> int:
        return self.apy_bp

    def accrue(self, days: int) -> int:
        """Grow the balance by ``days`` of yield; returns the interest added."""
        interest = self._balance * self.apy_bp * days // (BPS_DENOMINATOR * 365)
        self._balance += interest
        return interest

    def _to_shares(self, amount: int) -> int:
        if self._shares == 0 or self._balance == 0:
            return amount
        return amount * self._shares // self._balance

    def _should_fail_deposit(self) -> bool:
        if self.fail_deposits:
            return True
        if self._fail_after_deposits is None:
            return False
        if self._fail_after_deposits <= 0:
            return True
        self._fail_after_deposits -= 1
        return False

    def __repr__(self) -> str:
        return f"PaperBackend(handle={self._handle!r}, balance={self._balance}, apy_bp={self.apy_bp})"


class StaticGasPrice(GasPriceSource):
    """Fixed unit execution price, defaulting to ``settings.gas_price``."""

    def __init__(self, price: int | None = None) -> None:
        self.price = settings.gas_price if price is None else price

    async def current_price(self) -> int:
        return self.price
