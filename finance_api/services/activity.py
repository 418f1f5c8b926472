"""Client-side idle timeout and session heartbeat.

The two run independently. The heartbeat keeps the persisted session
record fresh and the idle timeout signs out a tab nobody is using, even while
another tab of the same user keeps the record alive.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Callable, Iterable

from .best_effort import BestEffortResult, run_best_effort
from .session_service import SessionRegistry

logger = logging.getLogger(__name__)

IDLE_TIMEOUT_REASON = "timeout"

DEFAULT_IDLE_TIMEOUT_SECONDS = 30 * 60
DEFAULT_WARNING_SECONDS = 2 * 60
DEFAULT_HEARTBEAT_SECONDS = 5 * 60

DEFAULT_ACTIVITY_EVENTS = frozenset(
    {
        "mousedown",
        "mousemove",
        "keypress",
        "scroll",
        "touchstart",
        "click",
        "wheel",
    }
)


def idle_warning_message(warning_seconds: float) -> str:
    minutes = int(warning_seconds // 60)
    return f"Your session will expire in {minutes} minutes due to inactivity"


class IdleTimeout:
    """Signs the user out after a period without interaction.

    ``start`` schedules a warning at ``timeout - warning_time`` (only when
    that is positive) and the sign-out at ``timeout``. Every qualifying
    interaction reschedules both.
    """

    def __init__(
        self,
        on_timeout: Callable[[str], Any],
        on_warning: Callable[[str], Any] | None = None,
        timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        warning_time: float = DEFAULT_WARNING_SECONDS,
        events: Iterable[str] = DEFAULT_ACTIVITY_EVENTS,
    ) -> None:
        self._on_timeout = on_timeout
        self._on_warning = on_warning
        self._timeout = timeout
        self._warning_time = warning_time
        self._events = frozenset(events)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._warning_handle: asyncio.TimerHandle | None = None
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def active(self) -> bool:
        return self._loop is not None

    def start(self) -> None:
        """Arm the timers; must be called from inside the running event loop."""
        self._loop = asyncio.get_running_loop()
        self._reschedule()

    def stop(self) -> None:
        self._cancel_timers()
        self._loop = None

    def record_activity(self, event_type: str) -> bool:
        """Reset the idle clock for a qualifying interaction.

        Returns:
            True if the timers were rescheduled.
        """
        if self._loop is None or event_type not in self._events:
            return False
        self._reschedule()
        return True

    def _cancel_timers(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        if self._warning_handle is not None:
            self._warning_handle.cancel()
            self._warning_handle = None

    def _reschedule(self) -> None:
        self._cancel_timers()
        warning_delay = self._timeout - self._warning_time
        if warning_delay > 0 and self._on_warning is not None:
            self._warning_handle = self._loop.call_later(warning_delay, self._fire_warning)
        self._timeout_handle = self._loop.call_later(self._timeout, self._fire_timeout)

    def _invoke(self, callback: Callable[[str], Any], argument: str) -> None:
        try:
            result = callback(argument)
        except Exception as e:
            logger.error("Idle timeout callback failed", extra={"error": str(e)})
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Idle sign-out failed", extra={"error": str(task.exception())})

    def _fire_warning(self) -> None:
        self._warning_handle = None
        self._invoke(self._on_warning, idle_warning_message(self._warning_time))

    def _fire_timeout(self) -> None:
        self._timeout_handle = None
        self._cancel_timers()
        self._loop = None
        logger.info("User idle, signing out", extra={"reason": IDLE_TIMEOUT_REASON})
        self._invoke(self._on_timeout, IDLE_TIMEOUT_REASON)


class SessionHeartbeat:
    """Refreshes the persisted session's ``lastActive`` on a fixed period."""

    def __init__(self, registry: SessionRegistry, interval: float = DEFAULT_HEARTBEAT_SECONDS) -> None:
        self._registry = registry
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Begin beating now and then every interval.

        Returns:
            False if there is no cached session to keep alive.
        """
        if self.running:
            return True
        if not self._registry.get_current_session_id():
            return False
        self._task = asyncio.create_task(self._run())
        return True

    async def beat(self) -> BestEffortResult[bool]:
        # Store calls are blocking; keep them off the event loop
        return await asyncio.to_thread(
            run_best_effort,
            "session heartbeat",
            self._registry.update_session_activity,
            default=False,
        )

    async def _run(self) -> None:
        while True:
            result = await self.beat()
            if not result.value:
                logger.debug("Heartbeat did not refresh the session")
            await asyncio.sleep(self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
