"""Virtual washer device.

The washer state is ``{on, isRunning, isPaused}``. Running or paused
implies on, and switching off also stops and un-pauses the cycle. These
rules hold for the six named transitions only; a raw overwrite through
``Washer.state`` bypasses them.
"""
import asyncio, logging
import httpx
from typing import Any, Dict, Optional, Set

from .errors import UnsupportedCommand
from .schemas import Command, OnOff, PauseUnpause, StartStop

log = logging.getLogger("washer")

STATE_KEYS = ("on", "isRunning", "isPaused")


def initial_state() -> Dict[str, bool]:
    return {"on": False, "isRunning": False, "isPaused": False}


def transition(state: Dict[str, Any], name: str) -> Optional[Dict[str, bool]]:
    """Return the fields changed by a named transition, or None if it is guarded out."""
    on = state.get("on") is True
    running = state.get("isRunning") is True
    paused = state.get("isPaused") is True

    if name == "on":
        return {"on": True} if not on else None
    if name == "off":
        return {"on": False, "isRunning": False, "isPaused": False} if on else None
    if name == "start":
        return {"isRunning": True, "isPaused": False} if on and not running else None
    if name == "stop":
        return {"isRunning": False, "isPaused": False} if on and running else None
    if name == "pause":
        return {"isPaused": True} if on and running and not paused else None
    if name == "resume":
        return {"isPaused": False} if on and running and paused else None
    raise ValueError(f"Unknown washer transition: {name}")


def transition_for(command: Command) -> str:
    if isinstance(command, OnOff):
        return "on" if command.on else "off"
    if isinstance(command, StartStop):
        return "start" if command.start else "stop"
    if isinstance(command, PauseUnpause):
        return "pause" if command.pause else "resume"
    raise UnsupportedCommand(command.verb)


def apply_command(state: Dict[str, Any], command: Command) -> Dict[str, Any]:
    """Apply a platform command to a stored washer state, returning the new state."""
    current = {**initial_state(), **state}
    changes = transition(current, transition_for(command))
    return {**current, **changes} if changes else current


def describe(state: Dict[str, Any]) -> str:
    if not state.get("on"):
        return "OFF"
    if state.get("isPaused"):
        return "PAUSED"
    return "RUNNING" if state.get("isRunning") else "STOPPED"


class Washer:
    """In-memory washer that pushes every state change to a report endpoint."""

    def __init__(self, report_state_url: Optional[str] = None, timeout: float = 8.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.report_state_url = report_state_url
        self.timeout = timeout
        self.transport = transport
        self._state = initial_state()
        self._pending: Set[asyncio.Task] = set()

    def on(self):
        self._apply("on")

    def off(self):
        self._apply("off")

    def start(self):
        self._apply("start")

    def stop(self):
        self._apply("stop")

    def pause(self):
        self._apply("pause")

    def resume(self):
        self._apply("resume")

    def _apply(self, name: str):
        changes = transition(self._state, name)
        if changes:
            self._update(changes)

    @property
    def state(self) -> Dict[str, bool]:
        return dict(self._state)

    @state.setter
    def state(self, params: Dict[str, Any]):
        self._update({k: v for k, v in params.items() if k in STATE_KEYS and isinstance(v, bool)})

    def _update(self, changes: Dict[str, bool]):
        self._state.update(changes)
        self.print()
        self.report_state_soon()

    def print(self):
        log.info("***** The washer is %s *****", describe(self._state))

    def report_state_soon(self):
        """Schedule a report of the current state without waiting for it."""
        if not self.report_state_url:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("No running event loop; state report skipped")
            return
        task = loop.create_task(self.report_state())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def report_state(self) -> bool:
        if not self.report_state_url:
            return False
        try:
            async with httpx.AsyncClient(transport=self.transport) as c:
                r = await c.post(self.report_state_url, json=self.state, timeout=self.timeout)
                r.raise_for_status()
        except httpx.HTTPError as e:
            log.error("Report State error: %s", e)
            return False
        log.info("Report State successful")
        return True
