"""Shared test helpers: principals, parameter defaults, event capture."""

from yieldrouter.core.access import Principal
from yieldrouter.core.bus import EventBus
from yieldrouter.core.types import Event, EventType, ManagerParameters
from yieldrouter.execution.paper_backend import PaperBackend
from yieldrouter.manager import YieldManager

OWNER = Principal("owner")
VAULT = Principal("vault")
STRANGER = Principal("stranger")


def make_params(**overrides: int) -> ManagerParameters:
    """Parameters with explicit defaults, independent of the environment."""
    values = {
        "rebalance_threshold_bp": 500,
        "min_tvl_for_rebalance": 1_000,
        "gas_cost_multiplier_pct": 200,
        "max_allocation_per_backend_bp": 5000,
        "min_allocation_threshold_bp": 1000,
    }
    values.update(overrides)
    return ManagerParameters(**values)


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Event] = []
        for event_type in EventType:
            bus.subscribe(event_type, self._record)

    async def _record(self, event: Event) -> None:
        self.events.append(event)

    def of(self, event_type: EventType) -> list[Event]:
        return [e for e in self.events if e.event_type == event_type]


async def register(manager: YieldManager, *backends: PaperBackend) -> None:
    for backend in backends:
        await manager.add_backend(OWNER, backend)
