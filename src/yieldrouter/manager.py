"""Yield manager: allocates a capital pool across backends and rebalances it.

Every public operation runs under a single lock, checks the caller's role
before doing anything else, and stages its state changes (registry, target
table, parameters, idle balance, events). Staged changes are committed only
when every backend call succeeded; on failure the fund mover has already
rolled back the backend calls and the staged copy is simply dropped.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from yieldrouter.config import YieldRouterSettings, settings
from yieldrouter.core.access import ANONYMOUS, AccessPolicy, Principal, Role
from yieldrouter.core.bus import EventBus
from yieldrouter.core.contracts import GasPriceSource, YieldBackend
from yieldrouter.core.errors import (
    BackendCallFailed,
    BackendNotFound,
    InvalidParameter,
    NoBackendsAvailable,
    RebalanceNotProfitable,
    ZeroAmount,
)
from yieldrouter.core.types import (
    BackendInfo,
    Event,
    EventType,
    ManagerParameters,
    Move,
    RebalanceDecision,
)
from yieldrouter.execution.fund_mover import FundMover
from yieldrouter.execution.paper_backend import StaticGasPrice
from yieldrouter.logging import caller_var, generate_operation_id, get_logger, log_exception, operation_var
from yieldrouter.portfolio.allocator import TargetAllocationTable, compute_target_weights
from yieldrouter.portfolio.profitability import ProfitabilityGate
from yieldrouter.portfolio.rebalancer import plan_rebalance
from yieldrouter.portfolio.registry import BackendRegistry

logger = get_logger(__name__)

# Parameters that change target weights
_WEIGHT_PARAMETERS = frozenset({"max_allocation_per_backend_bp", "min_allocation_threshold_bp"})


@dataclass
class _Staged:
    """Working copy of manager state for one operation."""

    registry: BackendRegistry
    targets: TargetAllocationTable
    params: ManagerParameters
    idle_balance: int
    events: list[Event] = field(default_factory=list)

    def emit(self, event_type: EventType, **data: Any) -> None:
        self.events.append(Event(event_type=event_type, data=data))


@dataclass
class _Snapshot:
    """Live balances and yields read once per step."""

    backends: list[YieldBackend]
    balances: list[int]
    yields: list[int]

    @property
    def handles(self) -> list[str]:
        return [b.handle for b in self.backends]

    @property
    def total(self) -> int:
        return sum(self.balances)


class YieldManager:
    """Allocates capital across registered yield backends.

    Roles: the vault principal may ``allocate`` / ``withdraw_to``; the owner
    principal may manage backends and parameters; anyone may ``rebalance``
    (it only succeeds when the profitability gate approves) and read views.
    """

    def __init__(
        self,
        access: AccessPolicy,
        *,
        params: ManagerParameters | None = None,
        bus: EventBus | None = None,
        gas_price_source: GasPriceSource | None = None,
        fixed_gas_per_move: int | None = None,
        asset: str | None = None,
        mover: FundMover | None = None,
    ) -> None:
        self._access = access
        self._params = params or ManagerParameters.from_settings(settings)
        self._bus = bus
        self._gas = gas_price_source or StaticGasPrice()
        self._gate = ProfitabilityGate(fixed_gas_per_move or settings.fixed_gas_per_move)
        self._asset = asset
        self._mover = mover or FundMover()

        self._registry = BackendRegistry()
        self._targets = TargetAllocationTable()
        self._idle_balance = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        owner: Principal,
        vault: Principal,
        cfg: YieldRouterSettings | None = None,
        **kwargs: Any,
    ) -> "YieldManager":
        cfg = cfg or settings
        return cls(
            AccessPolicy(owner=owner, vault=vault),
            params=ManagerParameters.from_settings(cfg),
            gas_price_source=kwargs.pop("gas_price_source", None) or StaticGasPrice(cfg.gas_price),
            fixed_gas_per_move=cfg.fixed_gas_per_move,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def access(self) -> AccessPolicy:
        return self._access

    @property
    def bus(self) -> EventBus | None:
        return self._bus

    @property
    def parameters(self) -> ManagerParameters:
        return self._params.model_copy()

    @property
    def idle_balance(self) -> int:
        """Funds held by the manager itself (truncation remainders, unplaced surplus)."""
        return self._idle_balance

    # ------------------------------------------------------------------
    # Vault operations
    # ------------------------------------------------------------------

    async def allocate(self, caller: Principal, amount: int) -> int:
        """Distribute ``amount`` across backends by freshly computed weights.

        Returns the total deposited. The truncation remainder stays idle.
        """
        async with self._operation("allocate", caller, Role.VAULT) as staged:
            if amount <= 0:
                raise ZeroAmount("allocate")
            if len(staged.registry) == 0:
                raise NoBackendsAvailable("allocate")

            snapshot = await self._recompute_targets(staged)
            weights = [staged.targets.weight(h) for h in snapshot.handles]
            parts = self._mover.split_by_weight(amount, weights)

            staged.idle_balance += amount
            async with self._mover.transaction() as tx:
                for backend, part in zip(snapshot.backends, parts):
                    if part == 0:
                        continue
                    await tx.deposit(backend, part)
                    staged.emit(EventType.ALLOCATED, backend=backend.handle, amount=part)
            staged.idle_balance -= tx.deposited

            logger.info(
                f"Allocated {tx.deposited}/{amount} across {len(parts)} backends "
                f"(idle {staged.idle_balance})"
            )
            return tx.deposited

    async def withdraw_to(self, caller: Principal, amount: int, receiver: str) -> int:
        """Withdraw pro rata by balance and forward ``amount`` to ``receiver``.

        Returns the total pulled from backends, which may fall short of
        ``amount`` by the truncation remainder; the shortfall is covered from
        idle funds where available. When backends hold nothing this is a
        no-op returning 0.
        """
        async with self._operation("withdraw_to", caller, Role.VAULT) as staged:
            if amount <= 0:
                raise ZeroAmount("withdraw_to")

            snapshot = await self._read_balances(staged.registry.snapshot())
            if snapshot.total == 0:
                logger.info(f"withdraw_to({amount}) skipped: backends hold nothing")
                return 0

            parts = self._mover.split_by_balance(amount, snapshot.balances)
            async with self._mover.transaction() as tx:
                for backend, part in zip(snapshot.backends, parts):
                    if part == 0:
                        continue
                    withdrawn = await tx.withdraw(backend, part)
                    staged.emit(
                        EventType.WITHDRAWN, backend=backend.handle, amount=withdrawn, receiver=receiver
                    )

            available = staged.idle_balance + tx.withdrawn
            if available < amount:
                logger.debug(f"withdraw_to shortfall {amount - available} left to caller")
            staged.idle_balance = max(0, available - amount)

            logger.info(f"Forwarded {amount} to {receiver} (withdrew {tx.withdrawn})")
            return tx.withdrawn

    # ------------------------------------------------------------------
    # Rebalancing
    # ------------------------------------------------------------------

    async def rebalance(self, caller: Principal = ANONYMOUS) -> list[Move]:
        """Move capital toward target weights if the gate approves.

        Raises RebalanceNotProfitable otherwise. Returns executed moves.
        """
        async with self._operation("rebalance", caller, Role.ANYONE) as staged:
            decision = await self._evaluate(staged)
            if not decision.approved:
                raise RebalanceNotProfitable(decision)

            await self._recompute_targets(staged)
            snapshot = await self._read_balances(staged.registry.snapshot())
            plan = plan_rebalance(
                snapshot.handles,
                snapshot.balances,
                [staged.targets.weight(h) for h in snapshot.handles],
                snapshot.total,
            )

            backends = {b.handle: b for b in snapshot.backends}
            async with self._mover.transaction() as tx:
                moves = await self._mover.execute_plan(tx, plan, backends)
            staged.idle_balance += tx.withdrawn - tx.deposited

            for move in moves:
                staged.emit(
                    EventType.REBALANCED, source=move.source, destination=move.destination, amount=move.amount
                )
                logger.info(f"Rebalanced {move.amount} from {move.source} to {move.destination}")
            if plan.unfunded:
                logger.debug(f"Unfunded deficit after rebalance: {plan.unfunded}")
            return moves

    async def should_rebalance(self) -> bool:
        """Read-only profitability check."""
        decision = await self.evaluate_rebalance()
        return decision.approved

    async def evaluate_rebalance(self) -> RebalanceDecision:
        """Profitability estimate with the numbers behind it."""
        async with self._lock:
            return await self._evaluate(self._stage())

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def add_backend(self, caller: Principal, backend: YieldBackend) -> None:
        async with self._operation("add_backend", caller, Role.OWNER) as staged:
            if self._asset is not None and backend.asset != self._asset:
                raise InvalidParameter("backend.asset", backend.asset, f"manager asset is {self._asset}")
            staged.registry.add(backend)
            staged.emit(EventType.BACKEND_ADDED, backend=backend.handle)
            await self._recompute_targets(staged)
            logger.info(f"Backend added: {backend.handle} ({backend.name})")

    async def remove_backend(self, caller: Principal, handle: str) -> None:
        async with self._operation("remove_backend", caller, Role.OWNER) as staged:
            backend = staged.registry.remove(handle)
            staged.emit(EventType.BACKEND_REMOVED, backend=handle)

            # Removal does not require an empty backend; the balance is only reported.
            try:
                stranded = await self._read(backend, "total_assets")
            except BackendCallFailed as e:
                log_exception(logger, e, {"backend": handle, "action": "remove_backend"})
                logger.warning(f"Backend {handle} removed with unreadable balance")
            else:
                if stranded > 0:
                    logger.warning(f"Backend {handle} removed while still holding {stranded}")

            if len(staged.registry) > 0:
                await self._recompute_targets(staged)
            else:
                staged.targets.clear()
            logger.info(f"Backend removed: {handle}")

    async def update_parameters(self, caller: Principal, **values: int) -> ManagerParameters:
        """Apply several parameter changes as one operation.

        The merged parameters are validated together, so a cap and floor can
        move past each other in one call. Targets are recomputed when either
        of them is among ``values``. Nothing is applied if any value is invalid.
        """
        async with self._operation("update_parameters", caller, Role.OWNER) as staged:
            for name, value in values.items():
                if name not in ManagerParameters.model_fields:
                    raise InvalidParameter(name, value, "unknown parameter")
            try:
                staged.params = ManagerParameters.model_validate(
                    {**staged.params.model_dump(), **values}
                )
            except ValidationError as e:
                error = e.errors()[0]
                name = str(error["loc"][0]) if error["loc"] else ", ".join(values)
                raise InvalidParameter(name, values.get(name, values), error["msg"]) from e

            for name, value in values.items():
                staged.emit(EventType.PARAMETER_UPDATED, name=name, value=value)
                logger.info(f"Parameter {name} set to {value}")
            if _WEIGHT_PARAMETERS & values.keys() and len(staged.registry) > 0:
                await self._recompute_targets(staged)
            return staged.params.model_copy()

    async def set_rebalance_threshold(self, caller: Principal, value: int) -> None:
        await self.update_parameters(caller, rebalance_threshold_bp=value)

    async def set_min_tvl_for_rebalance(self, caller: Principal, value: int) -> None:
        await self.update_parameters(caller, min_tvl_for_rebalance=value)

    async def set_gas_cost_multiplier(self, caller: Principal, value: int) -> None:
        await self.update_parameters(caller, gas_cost_multiplier_pct=value)

    async def set_max_allocation_per_backend(self, caller: Principal, value: int) -> None:
        await self.update_parameters(caller, max_allocation_per_backend_bp=value)

    async def set_min_allocation_threshold(self, caller: Principal, value: int) -> None:
        await self.update_parameters(caller, min_allocation_threshold_bp=value)

    async def set_vault(self, caller: Principal, vault: Principal) -> None:
        async with self._operation("set_vault", caller, Role.OWNER):
            self._access.set_vault(vault)
            logger.info(f"Vault principal set to {vault}")

    async def transfer_ownership(self, caller: Principal, new_owner: Principal) -> None:
        async with self._operation("transfer_ownership", caller, Role.OWNER):
            self._access.transfer_ownership(new_owner)
            logger.info(f"Ownership transferred to {new_owner}")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def backend_count(self) -> int:
        return len(self._registry)

    def target_allocation(self, handle: str) -> int:
        if handle not in self._registry:
            raise BackendNotFound(handle)
        return self._targets.weight(handle)

    def target_allocations(self) -> dict[str, int]:
        return self._targets.as_dict()

    async def total_assets(self) -> int:
        """Aggregate live balance across backends (idle funds excluded)."""
        async with self._lock:
            snapshot = await self._read_balances(self._registry.snapshot())
            return snapshot.total

    async def all_backends_info(self) -> list[BackendInfo]:
        async with self._lock:
            infos = []
            for backend in self._registry.snapshot():
                infos.append(
                    BackendInfo(
                        handle=backend.handle,
                        name=backend.name,
                        asset=backend.asset,
                        balance=await self._read(backend, "total_assets"),
                        apy_bp=await self._read(backend, "apy"),
                        target_bp=self._targets.weight(backend.handle),
                    )
                )
            return infos

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _stage(self) -> _Staged:
        return _Staged(
            registry=self._registry.copy(),
            targets=self._targets.copy(),
            params=self._params.model_copy(),
            idle_balance=self._idle_balance,
        )

    def _commit(self, staged: _Staged) -> None:
        self._registry = staged.registry
        self._targets = staged.targets
        self._params = staged.params
        self._idle_balance = staged.idle_balance

    @asynccontextmanager
    async def _operation(self, name: str, caller: Principal, role: Role) -> AsyncIterator[_Staged]:
        """Serialize, authorize, stage, then commit and publish on success."""
        async with self._lock:
            self._access.require(caller, role)
            op_token = operation_var.set(generate_operation_id())
            caller_token = caller_var.set(caller.id)
            try:
                staged = self._stage()
                try:
                    yield staged
                except Exception as e:
                    logger.warning(f"{name} aborted, nothing committed: {e}")
                    raise
                self._commit(staged)
                await self._publish(staged.events)
            finally:
                operation_var.reset(op_token)
                caller_var.reset(caller_token)

    async def _publish(self, events: list[Event]) -> None:
        """Publish committed events; a failure here never reaches the caller."""
        if self._bus is None or not events:
            return
        try:
            await self._bus.publish_many(events)
        except Exception as e:
            log_exception(logger, e, {"undelivered_events": len(events)})

    async def _read(self, backend: YieldBackend, what: str) -> int:
        try:
            if what == "apy":
                value = await backend.apy()
            else:
                value = await backend.total_assets()
        except Exception as e:
            raise BackendCallFailed(backend.handle, what) from e
        value = int(value)
        if value < 0:
            raise BackendCallFailed(backend.handle, what, value)
        return value

    async def _read_balances(self, backends: list[YieldBackend]) -> _Snapshot:
        balances = [await self._read(b, "total_assets") for b in backends]
        return _Snapshot(backends=backends, balances=balances, yields=[])

    async def _read_all(self, backends: list[YieldBackend]) -> _Snapshot:
        snapshot = await self._read_balances(backends)
        snapshot.yields = [await self._read(b, "apy") for b in backends]
        return snapshot

    async def _recompute_targets(self, staged: _Staged) -> _Snapshot:
        """Recompute and stage the full target table from live yields."""
        backends = staged.registry.snapshot()
        yields = [await self._read(b, "apy") for b in backends]
        weights = compute_target_weights(
            yields,
            staged.params.max_allocation_per_backend_bp,
            staged.params.min_allocation_threshold_bp,
        )
        handles = [b.handle for b in backends]
        staged.targets.replace(handles, weights)
        staged.emit(EventType.TARGET_ALLOCATIONS_UPDATED, weights=dict(zip(handles, weights)))
        logger.debug(f"Target weights: {dict(zip(handles, weights))} (sum {sum(weights)})")
        return _Snapshot(backends=backends, balances=[], yields=yields)

    async def _evaluate(self, staged: _Staged) -> RebalanceDecision:
        snapshot = await self._read_all(staged.registry.snapshot())
        gas_price = await self._gas.current_price()
        return self._gate.evaluate(
            snapshot.handles,
            snapshot.balances,
            snapshot.yields,
            staged.targets,
            staged.params,
            gas_price,
        )
