"""
Sync scheduling: decides when a sync pass should run.

Two thresholds drive it. The minimum interval is a hard floor against
trigger storms; the staleness threshold is the soft "time to refresh"
signal used by the initial load, visibility, focus and reconnect events.
Periodic ticks sync whenever the floor allows and the app is visible.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Literal, NamedTuple

import httpx

from rewind.config import Settings
from rewind.errors import PipelineError
from rewind.logging_config import get_logger
from rewind.models import SyncRun
from rewind.storage.db import Database

logger = get_logger("scheduler")

TriggerEvent = Literal["initial_load", "visibility", "focus", "online", "tick"]

STALENESS_EVENTS = frozenset({"initial_load", "visibility", "focus", "online"})


class TriggerOutcome(NamedTuple):
    """What happened to one trigger event."""

    event: str
    ran: bool
    reason: str
    run: SyncRun | None = None


def probe_connectivity(url: str | None, timeout: float = 5.0) -> bool:
    """True when `url` answers at all. No URL configured means assume online."""
    if not url:
        return True
    try:
        httpx.head(url, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as exc:
        logger.debug(f"Connectivity probe failed: {exc}")
        return False
    return True


class SyncScheduler:
    """Collapses trigger events into at most one in-flight sync."""

    def __init__(
        self,
        sync: Callable[[], SyncRun],
        db: Database,
        min_interval: timedelta = timedelta(minutes=5),
        stale_after: timedelta = timedelta(minutes=30),
        tick_interval: timedelta = timedelta(minutes=15),
        is_online: Callable[[], bool] | None = None,
    ):
        if stale_after < min_interval:
            raise ValueError("stale_after must be >= min_interval")
        self.sync = sync
        self.db = db
        self.min_interval = min_interval
        self.stale_after = stale_after
        self.tick_interval = tick_interval
        self.is_online = is_online or (lambda: True)
        self._in_flight = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        db: Database,
        sync: Callable[[], SyncRun],
        is_online: Callable[[], bool] | None = None,
    ) -> SyncScheduler:
        return cls(
            sync=sync,
            db=db,
            min_interval=timedelta(minutes=settings.sync_min_interval_minutes),
            stale_after=timedelta(minutes=settings.sync_stale_minutes),
            tick_interval=timedelta(minutes=settings.sync_tick_minutes),
            is_online=is_online
            or (lambda: probe_connectivity(settings.connectivity_check_url)),
        )

    def is_due(self, last_sync: datetime | None, now: datetime) -> bool:
        """The minimum-interval floor has passed (or there was never a sync)."""
        return last_sync is None or now - last_sync >= self.min_interval

    def is_stale(self, last_sync: datetime | None, now: datetime) -> bool:
        return last_sync is None or now - last_sync >= self.stale_after

    def should_trigger(
        self,
        last_sync: datetime | None,
        now: datetime,
        event: TriggerEvent = "tick",
        visible: bool = True,
    ) -> bool:
        if not self.is_due(last_sync, now):
            return False
        if event in STALENESS_EVENTS:
            return self.is_stale(last_sync, now)
        return visible

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    def trigger(
        self,
        event: TriggerEvent,
        visible: bool = True,
        now: datetime | None = None,
    ) -> TriggerOutcome:
        """Handle one trigger event; runs the sync inline when it fires."""
        if not self.is_online():
            logger.info(f"Skipping {event} sync: offline")
            return TriggerOutcome(event, False, "offline")

        now = now or datetime.now(timezone.utc)
        last_sync = self.db.get_last_sync_time()
        if not self.should_trigger(last_sync, now, event, visible):
            reason = "too_soon" if not self.is_due(last_sync, now) else "fresh"
            logger.debug(f"Not syncing on {event}: {reason}")
            return TriggerOutcome(event, False, reason)

        if not self._in_flight.acquire(blocking=False):
            logger.debug(f"Not syncing on {event}: a sync is already running")
            return TriggerOutcome(event, False, "in_flight")

        try:
            logger.info(f"Sync triggered by {event}")
            run = self.sync()
            self.db.set_last_sync_time(now)
            return TriggerOutcome(event, True, "synced", run)
        except PipelineError as exc:
            logger.error(f"Scheduled sync failed: {exc}")
            return TriggerOutcome(event, False, exc.code)
        finally:
            self._in_flight.release()

    def run_forever(
        self,
        stop: threading.Event | None = None,
        visible: Callable[[], bool] = lambda: True,
    ) -> None:
        """Initial-load trigger, then a tick every `tick_interval` until stopped."""
        stop = stop or threading.Event()
        self.trigger("initial_load", visible=visible())
        while not stop.wait(self.tick_interval.total_seconds()):
            self.trigger("tick", visible=visible())
