"""Tests for yield manager allocation, withdrawal and administration."""

import asyncio
import logging

import pytest
from helpers import OWNER, STRANGER, VAULT, EventRecorder, make_params, register

from yieldrouter.core.access import AccessPolicy, Principal
from yieldrouter.core.bus import EventBus
from yieldrouter.core.errors import (
    BackendAlreadyExists,
    BackendCallFailed,
    BackendNotFound,
    InvalidParameter,
    NoBackendsAvailable,
    Unauthorized,
    ZeroAmount,
)
from yieldrouter.core.types import Event, EventType
from yieldrouter.execution.paper_backend import PaperBackend, StaticGasPrice
from yieldrouter.manager import YieldManager


class _BrokenYieldBackend(PaperBackend):
    async def apy(self) -> int:
        raise ConnectionError("rate oracle unreachable")


# ---------------------------------------------------------------------------
# allocate
# ---------------------------------------------------------------------------

async def test_allocate_splits_by_target_weights(manager, backends, bus, recorder) -> None:
    """Yields 400/300/300 give weights 4000/3000/3000."""
    await register(manager, *backends)
    deposited = await manager.allocate(VAULT, 1_000)

    assert deposited == 1_000
    assert [b.balance for b in backends] == [400, 300, 300]
    assert manager.target_allocations() == {"aave": 4000, "compound": 3000, "morpho": 3000}

    await bus.flush()
    allocated = recorder.of(EventType.ALLOCATED)
    assert [(e.data["backend"], e.data["amount"]) for e in allocated] == [
        ("aave", 400),
        ("compound", 300),
        ("morpho", 300),
    ]


async def test_allocate_keeps_truncation_remainder_idle(manager, backends) -> None:
    await register(manager, *backends)
    deposited = await manager.allocate(VAULT, 1_001)
    assert deposited == 1_000
    assert manager.idle_balance == 1
    assert await manager.total_assets() == 1_000


async def test_allocate_skips_zero_weight_backends(manager) -> None:
    """A backend clamped to weight 0 receives no deposit call."""
    big = PaperBackend("big", 9_500)
    small = PaperBackend("small", 500)
    await register(manager, big, small)
    assert manager.target_allocations() == {"big": 10_000, "small": 0}

    await manager.allocate(VAULT, 1_000)
    assert big.deposit_calls == [1_000]
    assert small.deposit_calls == []


async def test_allocate_recomputes_weights_from_live_yields(manager, backends) -> None:
    await register(manager, *backends)
    backends[0].apy_bp = 0
    backends[1].apy_bp = 500
    backends[2].apy_bp = 500
    await manager.allocate(VAULT, 1_000)
    assert manager.target_allocations() == {"aave": 0, "compound": 5000, "morpho": 5000}
    assert [b.balance for b in backends] == [0, 500, 500]


@pytest.mark.parametrize("amount", [0, -5])
async def test_allocate_rejects_non_positive_amount(manager, backends, amount) -> None:
    await register(manager, *backends)
    with pytest.raises(ZeroAmount):
        await manager.allocate(VAULT, amount)
    assert all(b.call_count == 0 for b in backends)


async def test_allocate_without_backends(manager) -> None:
    with pytest.raises(NoBackendsAvailable):
        await manager.allocate(VAULT, 100)


async def test_allocate_requires_vault(manager, backends) -> None:
    await register(manager, *backends)
    for caller in (OWNER, STRANGER):
        with pytest.raises(Unauthorized):
            await manager.allocate(caller, 100)
    assert all(b.balance == 0 for b in backends)


async def test_failed_allocate_rolls_everything_back(manager, backends, bus, recorder) -> None:
    """The third deposit fails: the first two are undone and nothing is committed."""
    await register(manager, *backends)
    await bus.flush()
    recorder.events.clear()

    backends[0].apy_bp = 100
    backends[2].fail_after(0)
    with pytest.raises(BackendCallFailed) as excinfo:
        await manager.allocate(VAULT, 1_000)

    assert excinfo.value.backend == "morpho"
    assert [b.balance for b in backends] == [0, 0, 0]
    # staged weights from the new yields were discarded
    assert manager.target_allocations() == {"aave": 4000, "compound": 3000, "morpho": 3000}
    assert manager.idle_balance == 0

    await bus.flush()
    assert recorder.events == []


async def test_concurrent_allocations_are_serialized(manager, backends) -> None:
    await register(manager, *backends)
    results = await asyncio.gather(
        manager.allocate(VAULT, 1_000),
        manager.allocate(VAULT, 2_000),
    )
    assert results == [1_000, 2_000]
    assert [b.balance for b in backends] == [1_200, 900, 900]


# ---------------------------------------------------------------------------
# withdraw_to
# ---------------------------------------------------------------------------

async def test_withdraw_is_pro_rata_by_balance(manager, backends, bus, recorder) -> None:
    await register(manager, *backends)
    await manager.allocate(VAULT, 1_000)

    withdrawn = await manager.withdraw_to(VAULT, 500, "user-1")

    assert withdrawn == 500
    assert [b.balance for b in backends] == [200, 150, 150]
    await bus.flush()
    events = recorder.of(EventType.WITHDRAWN)
    assert [e.data["amount"] for e in events] == [200, 150, 150]
    assert all(e.data["receiver"] == "user-1" for e in events)


async def test_withdraw_with_empty_backends_is_noop(manager, backends) -> None:
    """No backend holds anything: returns 0 without touching a backend."""
    await register(manager, *backends)
    assert await manager.withdraw_to(VAULT, 500, "user-1") == 0
    assert all(b.withdraw_calls == [] for b in backends)


async def test_withdraw_uses_idle_for_shortfall(manager, backends) -> None:
    await register(manager, *backends)
    await manager.allocate(VAULT, 1_001)
    assert manager.idle_balance == 1

    # 999 pro rata over 400/300/300 pulls 399 + 299 + 299 = 997
    withdrawn = await manager.withdraw_to(VAULT, 999, "user-1")
    assert withdrawn == 997
    assert manager.idle_balance == 0


@pytest.mark.parametrize("amount", [0, -1])
async def test_withdraw_rejects_non_positive_amount(manager, backends, amount) -> None:
    await register(manager, *backends)
    with pytest.raises(ZeroAmount):
        await manager.withdraw_to(VAULT, amount, "user-1")


async def test_withdraw_requires_vault(manager, backends) -> None:
    await register(manager, *backends)
    await manager.allocate(VAULT, 1_000)
    with pytest.raises(Unauthorized):
        await manager.withdraw_to(STRANGER, 100, "thief")
    assert await manager.total_assets() == 1_000


async def test_failed_withdraw_restores_balances(manager, backends) -> None:
    await register(manager, *backends)
    await manager.allocate(VAULT, 1_000)
    backends[2].fail_withdrawals = True

    with pytest.raises(BackendCallFailed):
        await manager.withdraw_to(VAULT, 500, "user-1")
    assert [b.balance for b in backends] == [400, 300, 300]


# ---------------------------------------------------------------------------
# Registry administration
# ---------------------------------------------------------------------------

async def test_add_backend_recomputes_full_table(manager, backends, bus, recorder) -> None:
    await manager.add_backend(OWNER, backends[0])
    assert manager.target_allocations() == {"aave": 10_000}

    await manager.add_backend(OWNER, backends[1])
    # 400/700 = 5714 and 300/700 = 4285; aave is capped at 5000, then both rescaled
    assert manager.target_allocations() == {"aave": 5385, "compound": 4614}

    await bus.flush()
    types = [e.event_type for e in recorder.events]
    assert types[:2] == [EventType.BACKEND_ADDED, EventType.TARGET_ALLOCATIONS_UPDATED]
    assert manager.backend_count() == 2


async def test_add_backend_twice_rejected(manager, backends) -> None:
    await register(manager, *backends)
    with pytest.raises(BackendAlreadyExists):
        await manager.add_backend(OWNER, PaperBackend("aave", 900))
    assert manager.backend_count() == 3
    assert manager.target_allocation("aave") == 4000


async def test_add_backend_requires_owner(manager, backends) -> None:
    with pytest.raises(Unauthorized):
        await manager.add_backend(VAULT, backends[0])
    assert manager.backend_count() == 0


async def test_add_backend_with_wrong_asset(bus, gas) -> None:
    manager = YieldManager(
        AccessPolicy(owner=OWNER, vault=VAULT),
        params=make_params(),
        bus=bus,
        gas_price_source=gas,
        asset="USDC",
    )
    with pytest.raises(InvalidParameter):
        await manager.add_backend(OWNER, PaperBackend("dai-pool", 300, asset="DAI"))
    assert manager.backend_count() == 0


async def test_unreadable_yield_aborts_add(manager, backends) -> None:
    await register(manager, *backends)
    with pytest.raises(BackendCallFailed):
        await manager.add_backend(OWNER, _BrokenYieldBackend("broken"))
    assert manager.backend_count() == 3
    assert "broken" not in manager.target_allocations()


async def test_remove_backend_clears_weight_and_recomputes(manager, backends) -> None:
    await register(manager, *backends)
    await manager.remove_backend(OWNER, "aave")

    assert manager.target_allocations() == {"compound": 5000, "morpho": 5000}
    with pytest.raises(BackendNotFound):
        manager.target_allocation("aave")


async def test_remove_last_backend_empties_table(manager, backends) -> None:
    await register(manager, backends[0])
    await manager.remove_backend(OWNER, "aave")
    assert manager.backend_count() == 0
    assert manager.target_allocations() == {}


async def test_remove_missing_backend(manager, backends) -> None:
    await register(manager, *backends)
    with pytest.raises(BackendNotFound):
        await manager.remove_backend(OWNER, "euler")


async def test_remove_backend_with_balance_warns(manager, backends, caplog) -> None:
    """Removal is allowed with funds still inside; a warning is logged."""
    await register(manager, *backends)
    await manager.allocate(VAULT, 1_000)

    with caplog.at_level(logging.WARNING, logger="yieldrouter.manager"):
        await manager.remove_backend(OWNER, "aave")

    assert any("still holding 400" in r.getMessage() for r in caplog.records)
    assert backends[0].balance == 400
    assert await manager.total_assets() == 600


# ---------------------------------------------------------------------------
# Parameters and roles
# ---------------------------------------------------------------------------

async def test_parameter_setters(manager, bus, recorder) -> None:
    await manager.set_rebalance_threshold(OWNER, 250)
    await manager.set_min_tvl_for_rebalance(OWNER, 5_000)
    await manager.set_gas_cost_multiplier(OWNER, 150)

    params = manager.parameters
    assert params.rebalance_threshold_bp == 250
    assert params.min_tvl_for_rebalance == 5_000
    assert params.gas_cost_multiplier_pct == 150

    await bus.flush()
    updates = recorder.of(EventType.PARAMETER_UPDATED)
    assert [e.data["name"] for e in updates] == [
        "rebalance_threshold_bp",
        "min_tvl_for_rebalance",
        "gas_cost_multiplier_pct",
    ]


async def test_lowering_cap_recomputes_weights(manager, backends) -> None:
    await register(manager, *backends)
    await manager.set_max_allocation_per_backend(OWNER, 3500)
    # 3500/3000/3000 summing to 9500, rescaled once
    assert manager.target_allocations() == {"aave": 3684, "compound": 3157, "morpho": 3157}


async def test_raising_floor_recomputes_weights(manager, backends) -> None:
    await register(manager, *backends)
    await manager.set_min_allocation_threshold(OWNER, 3500)
    assert manager.target_allocations() == {"aave": 10_000, "compound": 0, "morpho": 0}


@pytest.mark.parametrize(
    ("setter", "value"),
    [
        ("set_max_allocation_per_backend", 0),
        ("set_max_allocation_per_backend", 10_001),
        ("set_max_allocation_per_backend", 500),  # below the 1000 floor
        ("set_min_allocation_threshold", 6000),  # above the 5000 cap
        ("set_gas_cost_multiplier", 0),
        ("set_rebalance_threshold", -1),
    ],
)
async def test_invalid_parameters_rejected(manager, setter, value) -> None:
    before = manager.parameters
    with pytest.raises(InvalidParameter):
        await getattr(manager, setter)(OWNER, value)
    assert manager.parameters == before


async def test_setters_require_owner(manager) -> None:
    with pytest.raises(Unauthorized):
        await manager.set_gas_cost_multiplier(VAULT, 150)
    assert manager.parameters.gas_cost_multiplier_pct == 200


async def test_set_vault_and_transfer_ownership(manager, backends) -> None:
    new_vault = Principal("vault-v2")
    new_owner = Principal("multisig")
    await register(manager, *backends)

    await manager.set_vault(OWNER, new_vault)
    with pytest.raises(Unauthorized):
        await manager.allocate(VAULT, 100)
    assert await manager.allocate(new_vault, 100) == 100

    await manager.transfer_ownership(OWNER, new_owner)
    with pytest.raises(Unauthorized):
        await manager.set_gas_cost_multiplier(OWNER, 150)
    await manager.set_gas_cost_multiplier(new_owner, 150)
    assert manager.access.owner == new_owner


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

async def test_views(manager, backends) -> None:
    assert manager.backend_count() == 0
    assert await manager.total_assets() == 0
    assert await manager.all_backends_info() == []

    await register(manager, *backends)
    await manager.allocate(VAULT, 1_000)
    info = await manager.all_backends_info()

    assert [i.handle for i in info] == ["aave", "compound", "morpho"]
    assert info[0].balance == 400
    assert info[0].apy_bp == 400
    assert info[0].target_bp == 4000
    assert info[0].asset == "USDC"


async def test_target_allocation_for_unknown_backend(manager) -> None:
    with pytest.raises(BackendNotFound):
        manager.target_allocation("aave")


async def test_events_are_not_published_without_a_bus(backends) -> None:
    manager = YieldManager(
        AccessPolicy(owner=OWNER, vault=VAULT),
        params=make_params(),
        gas_price_source=StaticGasPrice(1),
    )
    await register(manager, *backends)
    assert await manager.allocate(VAULT, 10) == 10


async def test_recorder_sees_events_in_operation_order(manager, backends, bus) -> None:
    recorder = EventRecorder(bus)
    await manager.add_backend(OWNER, backends[0])
    await manager.allocate(VAULT, 100)
    await bus.flush()
    assert [e.event_type for e in recorder.events] == [
        EventType.BACKEND_ADDED,
        EventType.TARGET_ALLOCATIONS_UPDATED,
        EventType.TARGET_ALLOCATIONS_UPDATED,
        EventType.ALLOCATED,
    ]


class _BrokenBalanceBackend(PaperBackend):
    async def total_assets(self) -> int:
        raise ConnectionError("vault balance unreadable")


async def test_remove_backend_with_unreadable_balance(manager, backends, caplog) -> None:
    """A backend whose balance cannot be read can still be removed."""
    broken = _BrokenBalanceBackend("broken", 300)
    await register(manager, backends[0], broken)

    with caplog.at_level(logging.WARNING, logger="yieldrouter.manager"):
        await manager.remove_backend(OWNER, "broken")

    assert manager.backend_count() == 1
    assert manager.target_allocations() == {"aave": 10_000}
    assert any("unreadable balance" in r.getMessage() for r in caplog.records)


# ---------------------------------------------------------------------------
# Event delivery after commit
# ---------------------------------------------------------------------------

async def test_full_event_queue_does_not_fail_committed_operation(gas, caplog) -> None:
    bus = EventBus(max_queue_size=1)
    await bus.publish(Event(event_type=EventType.ALLOCATED))
    manager = YieldManager(
        AccessPolicy(owner=OWNER, vault=VAULT),
        params=make_params(),
        bus=bus,
        gas_price_source=gas,
    )

    with caplog.at_level(logging.ERROR, logger="yieldrouter.manager"):
        await manager.add_backend(OWNER, PaperBackend("aave", 400))

    assert manager.backend_count() == 1
    assert manager.target_allocations() == {"aave": 10_000}
    assert any(r.levelno == logging.ERROR for r in caplog.records)


# ---------------------------------------------------------------------------
# update_parameters
# ---------------------------------------------------------------------------

async def test_update_parameters_validates_the_combined_result(manager, backends, bus, recorder) -> None:
    """Cap 800 with floor 500 is valid together though neither order works one at a time."""
    await register(manager, *backends)

    params = await manager.update_parameters(
        OWNER, max_allocation_per_backend_bp=800, min_allocation_threshold_bp=500
    )

    assert params.max_allocation_per_backend_bp == 800
    assert params.min_allocation_threshold_bp == 500
    # 800/800/800 summing to 2400, rescaled once
    assert manager.target_allocations() == {"aave": 3333, "compound": 3333, "morpho": 3333}
    await bus.flush()
    assert [e.data["name"] for e in recorder.of(EventType.PARAMETER_UPDATED)] == [
        "max_allocation_per_backend_bp",
        "min_allocation_threshold_bp",
    ]


async def test_update_parameters_is_all_or_nothing(manager, backends, bus, recorder) -> None:
    await register(manager, *backends)
    before = manager.parameters
    await bus.flush()
    recorder.events.clear()

    with pytest.raises(InvalidParameter) as excinfo:
        await manager.update_parameters(OWNER, min_tvl_for_rebalance=5, max_allocation_per_backend_bp=0)

    assert excinfo.value.name == "max_allocation_per_backend_bp"
    assert manager.parameters == before
    assert manager.target_allocations() == {"aave": 4000, "compound": 3000, "morpho": 3000}
    await bus.flush()
    assert recorder.events == []


async def test_update_parameters_rejects_unknown_name(manager) -> None:
    before = manager.parameters
    with pytest.raises(InvalidParameter):
        await manager.update_parameters(OWNER, rebalance_threshold_bp=100, gas_price=5)
    assert manager.parameters == before
