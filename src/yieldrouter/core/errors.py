"""Exception hierarchy for the yield router.

Every error aborts the enclosing manager operation; nothing partial is
committed and nothing is retried internally.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from yieldrouter.core.types import RebalanceDecision


class YieldRouterError(Exception):
    """Base class for all manager-level failures."""


class ZeroAmount(YieldRouterError):
    """A positive amount was required but 0 was given."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"{operation}: amount must be > 0")
        self.operation = operation


class NoBackendsAvailable(YieldRouterError):
    """The operation needs at least one registered backend."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"{operation}: no backends registered")
        self.operation = operation


class BackendAlreadyExists(YieldRouterError):
    def __init__(self, handle: str) -> None:
        super().__init__(f"backend already registered: {handle}")
        self.handle = handle


class BackendNotFound(YieldRouterError):
    def __init__(self, handle: str) -> None:
        super().__init__(f"backend not registered: {handle}")
        self.handle = handle


class RebalanceNotProfitable(YieldRouterError):
    """The profitability gate rejected the rebalance."""

    def __init__(self, decision: RebalanceDecision) -> None:
        super().__init__(f"rebalance not profitable: {decision.reason}")
        self.decision = decision


class Unauthorized(YieldRouterError):
    def __init__(self, caller: str, required: str) -> None:
        super().__init__(f"caller {caller!r} lacks role {required!r}")
        self.caller = caller
        self.required = required


class InvalidParameter(YieldRouterError):
    def __init__(self, name: str, value: Any, reason: str) -> None:
        super().__init__(f"invalid {name}={value!r}: {reason}")
        self.name = name
        self.value = value


class BackendCallFailed(YieldRouterError):
    """A backend capability call was rejected.

    The underlying exception is attached as ``__cause__``. When rolling back
    earlier legs also failed, those failures are listed in
    ``compensation_errors``.
    """

    def __init__(self, backend: str, action: str, amount: int | None = None) -> None:
        detail = f" amount={amount}" if amount is not None else ""
        super().__init__(f"{action} on backend {backend} failed{detail}")
        self.backend = backend
        self.action = action
        self.amount = amount
        self.compensation_errors: list[Exception] = []


# ---------------------------------------------------------------------------
# Errors raised by backend adapters themselves
# ---------------------------------------------------------------------------

class BackendError(Exception):
    """Raised by a backend adapter when its wrapped source rejects a call."""


class DepositFailed(BackendError):
    pass


class WithdrawFailed(BackendError):
    pass
