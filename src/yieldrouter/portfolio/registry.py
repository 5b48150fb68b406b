"""Backend registry: ordered, duplicate-free, O(1) lookup and removal."""

from collections.abc import Iterator

from yieldrouter.core.contracts import YieldBackend
from yieldrouter.core.errors import BackendAlreadyExists, BackendNotFound


class BackendRegistry:
    """Ordered collection of backends keyed by handle.

    Order is insertion order until a removal, which swaps the last entry into
    the freed slot. Iteration order is only relied on within a single call.
    """

    def __init__(self) -> None:
        self._backends: list[YieldBackend] = []
        self._index: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._backends)

    def __iter__(self) -> Iterator[YieldBackend]:
        return iter(list(self._backends))

    def __contains__(self, handle: object) -> bool:
        return handle in self._index

    @property
    def handles(self) -> list[str]:
        return [b.handle for b in self._backends]

    def get(self, handle: str) -> YieldBackend:
        try:
            return self._backends[self._index[handle]]
        except KeyError:
            raise BackendNotFound(handle) from None

    def add(self, backend: YieldBackend) -> None:
        if backend.handle in self._index:
            raise BackendAlreadyExists(backend.handle)
        self._index[backend.handle] = len(self._backends)
        self._backends.append(backend)

    def remove(self, handle: str) -> YieldBackend:
        """Remove by swapping the last backend into the freed slot."""
        idx = self._index.pop(handle, None)
        if idx is None:
            raise BackendNotFound(handle)
        removed = self._backends[idx]
        last = self._backends.pop()
        if last is not removed:
            self._backends[idx] = last
            self._index[last.handle] = idx
        return removed

    def snapshot(self) -> list[YieldBackend]:
        """Fixed list of backends for one operation."""
        return list(self._backends)

    def copy(self) -> "BackendRegistry":
        clone = BackendRegistry()
        clone._backends = list(self._backends)
        clone._index = dict(self._index)
        return clone
