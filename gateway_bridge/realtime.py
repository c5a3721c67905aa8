import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List


@dataclass(frozen=True)
class StateChange:
    device_id: str
    state: Dict[str, Any]


class StateFeed:
    """Hands device state changes to every listener.

    Each change carries the device's full state, so a listener that falls
    more than ``maxsize`` changes behind loses the oldest ones first.
    """

    def __init__(self, maxsize: int = 64):
        self.maxsize = maxsize
        self._listeners: List[asyncio.Queue] = []

    async def changes(self) -> AsyncIterator[StateChange]:
        q: asyncio.Queue = asyncio.Queue(self.maxsize)
        self._listeners.append(q)
        try:
            while True:
                yield await q.get()
        finally:
            self._listeners.remove(q)

    def publish(self, change: StateChange) -> int:
        for q in self._listeners:
            if q.full():
                q.get_nowait()
            q.put_nowait(change)
        return len(self._listeners)

    @property
    def subscribers(self) -> int:
        return len(self._listeners)
