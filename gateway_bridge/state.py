import logging
from typing import Any, Dict, Optional

from .db import Base, ensure_sqlite_dir, make_engine, make_sessionmaker
from .errors import BridgeError
from .homegraph import HomeGraphClient
from .models import DeviceState
from .realtime import StateChange, StateFeed

log = logging.getLogger("state")

REPORTED_KEYS = ("on", "isPaused", "isRunning")


class StateStore:
    """Last-write-wins device state table; every write is published on the feed."""

    def __init__(self, db_url: str, feed: Optional[StateFeed] = None):
        self.db_url = db_url
        self.engine = make_engine(db_url)
        self.SessionLocal = make_sessionmaker(self.engine)
        self.feed = feed or StateFeed()

    async def init_db(self):
        ensure_sqlite_dir(self.db_url)
        Base.metadata.create_all(self.engine)

    def get(self, device_id: str) -> Optional[Dict[str, Any]]:
        with self.SessionLocal() as s:
            row = s.get(DeviceState, device_id)
            return dict(row.state) if row else None

    async def put(self, device_id: str, state: Dict[str, Any]) -> Dict[str, Any]:
        state = dict(state)
        with self.SessionLocal() as s:
            s.merge(DeviceState(id=device_id, state=state))
            s.commit()
        log.info("Stored state for %s: %s", device_id, state)
        self.feed.publish(StateChange(device_id, state))
        return state


def reportable_state(state: Dict[str, Any]) -> Dict[str, Any]:
    return {k: state[k] for k in REPORTED_KEYS if k in state}


async def handle_state_change(homegraph: HomeGraphClient, device_id: str, state: Dict[str, Any]) -> bool:
    """Push one changed device state to Home Graph. Failures are logged, never raised."""
    try:
        await homegraph.report_state(device_id, reportable_state(state))
    except BridgeError as e:
        log.error("Report state for %s failed: %s", device_id, e)
        return False
    except Exception as e:
        log.exception("Unexpected error reporting state for %s: %s", device_id, e)
        return False
    return True


async def report_state_consumer(feed: StateFeed, homegraph: HomeGraphClient):
    async for change in feed.changes():
        await handle_state_change(homegraph, change.device_id, change.state)
