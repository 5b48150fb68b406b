"""Shared test fixtures."""

import pytest
from helpers import OWNER, VAULT, EventRecorder, make_params

from yieldrouter.core.access import AccessPolicy
from yieldrouter.core.bus import EventBus
from yieldrouter.execution.paper_backend import PaperBackend, StaticGasPrice
from yieldrouter.manager import YieldManager


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def gas() -> StaticGasPrice:
    return StaticGasPrice(1)


@pytest.fixture
def manager(bus: EventBus, gas: StaticGasPrice) -> YieldManager:
    return YieldManager(
        AccessPolicy(owner=OWNER, vault=VAULT),
        params=make_params(),
        bus=bus,
        gas_price_source=gas,
        fixed_gas_per_move=1_000,
    )


@pytest.fixture
def backends() -> list[PaperBackend]:
    return [
        PaperBackend("aave", 400),
        PaperBackend("compound", 300),
        PaperBackend("morpho", 300),
    ]
