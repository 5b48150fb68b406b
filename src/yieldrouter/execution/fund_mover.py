"""Fund mover: executes deposits and withdrawals against backends.

Every call made inside a :class:`MoveTransaction` is journaled. If the
block raises, the journal is replayed in reverse with compensating calls
(withdraw what was deposited, deposit back what was withdrawn), so a
failed operation leaves backend balances as they were.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from types import TracebackType

from yieldrouter.config import BPS_DENOMINATOR
from yieldrouter.core.contracts import YieldBackend
from yieldrouter.core.errors import BackendCallFailed
from yieldrouter.core.types import Move
from yieldrouter.logging import backend_var, get_logger, log_exception
from yieldrouter.portfolio.rebalancer import RebalancePlan

logger = get_logger(__name__)


class Action(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


@dataclass
class JournalEntry:
    backend: YieldBackend
    action: Action
    amount: int


class MoveTransaction:
    """Async context manager grouping backend calls into one unit."""

    def __init__(self) -> None:
        self._journal: list[JournalEntry] = []
        self._closed = False

    @property
    def journal(self) -> list[JournalEntry]:
        return list(self._journal)

    @property
    def deposited(self) -> int:
        return sum(e.amount for e in self._journal if e.action is Action.DEPOSIT)

    @property
    def withdrawn(self) -> int:
        return sum(e.amount for e in self._journal if e.action is Action.WITHDRAW)

    async def __aenter__(self) -> "MoveTransaction":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._closed = True
        if exc is None:
            return
        errors = await self._rollback()
        if isinstance(exc, BackendCallFailed):
            exc.compensation_errors.extend(errors)

    async def deposit(self, backend: YieldBackend, amount: int) -> int:
        """Deposit into ``backend``; returns shares received."""
        self._check_open()
        token = backend_var.set(backend.handle)
        try:
            shares = await backend.deposit(amount)
        except Exception as e:
            log_exception(logger, e, {"backend": backend.handle, "action": "deposit", "amount": amount})
            raise BackendCallFailed(backend.handle, Action.DEPOSIT.value, amount) from e
        finally:
            backend_var.reset(token)
        self._journal.append(JournalEntry(backend, Action.DEPOSIT, amount))
        logger.debug(f"Deposited {amount} into {backend.handle} (shares={shares})")
        return shares

    async def withdraw(self, backend: YieldBackend, amount: int) -> int:
        """Withdraw from ``backend``; returns the amount actually withdrawn."""
        self._check_open()
        token = backend_var.set(backend.handle)
        try:
            withdrawn = await backend.withdraw(amount)
        except Exception as e:
            log_exception(logger, e, {"backend": backend.handle, "action": "withdraw", "amount": amount})
            raise BackendCallFailed(backend.handle, Action.WITHDRAW.value, amount) from e
        finally:
            backend_var.reset(token)
        self._journal.append(JournalEntry(backend, Action.WITHDRAW, withdrawn))
        logger.debug(f"Withdrew {withdrawn} from {backend.handle} (requested {amount})")
        return withdrawn

    async def _rollback(self) -> list[Exception]:
        """Undo journaled calls newest first; returns the compensations that failed."""
        if not self._journal:
            return []

        logger.warning(f"Rolling back {len(self._journal)} backend calls")
        errors: list[Exception] = []
        for entry in reversed(self._journal):
            try:
                if entry.action is Action.DEPOSIT:
                    await entry.backend.withdraw(entry.amount)
                else:
                    await entry.backend.deposit(entry.amount)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    {"backend": entry.backend.handle, "compensating": entry.action.value, "amount": entry.amount},
                )
                errors.append(e)
        self._journal.clear()
        return errors

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("transaction already closed")


class FundMover:
    """The only place backend funds are moved."""

    def transaction(self) -> MoveTransaction:
        return MoveTransaction()

    @staticmethod
    def split_by_weight(amount: int, weights: Sequence[int]) -> list[int]:
        """``amount * w // 10000`` per weight; the truncation remainder is not assigned."""
        return [amount * w // BPS_DENOMINATOR for w in weights]

    @staticmethod
    def split_by_balance(amount: int, balances: Sequence[int]) -> list[int]:
        """Pro-rata share of ``amount`` per balance; all zeros when nothing is held."""
        total = sum(balances)
        if total == 0:
            return [0] * len(balances)
        return [amount * b // total for b in balances]

    async def execute_plan(
        self,
        tx: MoveTransaction,
        plan: RebalancePlan,
        backends: Mapping[str, YieldBackend],
    ) -> list[Move]:
        """Run a rebalance plan inside ``tx``.

        Each source is withdrawn once for its whole surplus, then one deposit
        is made per move. Only what the source actually returned is handed
        out: a short withdrawal trims the later moves of that leg. Returns
        the executed moves in order, with their actual amounts.
        """
        executed: list[Move] = []
        for leg in plan.legs:
            available = await tx.withdraw(backends[leg.source], leg.withdraw_amount)
            if available < leg.withdraw_amount:
                logger.warning(
                    f"{leg.source} returned {available} of {leg.withdraw_amount} requested; "
                    "moves trimmed"
                )
            for move in leg.moves:
                amount = min(move.amount, available)
                if amount <= 0:
                    break
                await tx.deposit(backends[move.destination], amount)
                available -= amount
                if amount != move.amount:
                    move = Move(source=move.source, destination=move.destination, amount=amount)
                executed.append(move)
        return executed
