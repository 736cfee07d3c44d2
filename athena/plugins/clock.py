"""Wall-clock plugin: periodic ticks and one-shot timers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import itertools
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.registry import PLUGINS_LOADED
from ..core.schema import Argument, ArgType, Event, Explanation, Tool
from .base import PluginBase

if TYPE_CHECKING:
    from ..core.registry import Athena

logger = logging.getLogger("athena.plugins.clock")

TICK_EVENT = "clock/tick"
TIMER_EXPIRED_EVENT = "clock/timer-expired"
DEFAULT_TICK_SECONDS = 60.0
_CURRENT_TIME = Argument(ArgType.STRING, "Current time in ISO 8601 format.")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Timer:
    timer_id: str
    seconds: float
    reason: str
    target: datetime
    handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.timer_id,
            "seconds": self.seconds,
            "reason": self.reason,
            "target_time": self.target.isoformat(),
        }


class Clock(PluginBase):
    """Emits ``clock/tick`` periodically and ``clock/timer-expired`` for timers.

    Pending timers are persisted with their absolute target time, so a reload
    resumes each one with only the time that is actually left.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(config)
        self.tick_every_seconds = float(self.config.get("tick_every_seconds", DEFAULT_TICK_SECONDS))
        self.athena: Optional["Athena"] = None
        self.timers: Dict[str, Timer] = {}
        self._ids = itertools.count(1)
        self._tick_task: Optional[asyncio.Task] = None

    def describe(self) -> Optional[str]:
        lines = []
        if self.tick_every_seconds > 0:
            lines.append(
                f"A clock/tick event arrives every {self.tick_every_seconds:g} seconds. Use it to "
                "check whether something is due, or to think about what you care about."
            )
        if self.timers:
            pending = ", ".join(
                f"{timer.timer_id} ({timer.reason}, due {timer.target.isoformat()})"
                for timer in self.timers.values()
            )
            lines.append(f"Pending timers: {pending}.")
        return " ".join(lines) or None

    async def load(self, athena: "Athena") -> None:
        self.athena = athena
        athena.register_event(
            Event(
                name=TICK_EVENT,
                desc="Triggered periodically.",
                args={"current_time": _CURRENT_TIME},
            )
        )
        athena.register_event(
            Event(
                name=TIMER_EXPIRED_EVENT,
                desc="Triggered when a timer is up.",
                args={
                    "timer_id": Argument(ArgType.STRING, "Identifier of the timer."),
                    "seconds": Argument(ArgType.NUMBER, "Number of seconds the timer was set for."),
                    "reason": Argument(ArgType.STRING, "Reason for setting the timer."),
                    "current_time": _CURRENT_TIME,
                },
                explain_args=lambda args: Explanation(f"Timer is up: {args['reason']}"),
            )
        )
        athena.register_tool(
            Tool(
                name="clock/set-timer",
                desc="Sets a one-shot timer.",
                args={
                    "seconds": Argument(ArgType.NUMBER, "Number of seconds to set the timer for."),
                    "reason": Argument(ArgType.STRING, "Reason for setting the timer."),
                },
                retvals={
                    "timer_id": Argument(ArgType.STRING, "Identifier to cancel the timer with."),
                    "target_time": Argument(ArgType.STRING, "Target time in ISO 8601 format."),
                },
                handler=self._set_timer,
                explain_args=lambda args: Explanation(
                    f"Setting a timer for {args['seconds']:g} seconds...", args["reason"]
                ),
            )
        )
        athena.register_tool(
            Tool(
                name="clock/cancel-timer",
                desc="Cancels a pending timer.",
                args={"timer_id": Argument(ArgType.STRING, "Identifier returned by clock/set-timer.")},
                retvals={"status": Argument(ArgType.STRING, "The status of the operation.")},
                handler=self._cancel_timer,
            )
        )
        athena.register_tool(
            Tool(
                name="clock/get-current-time",
                desc="Gets the current time.",
                retvals={"current_time": _CURRENT_TIME},
                handler=self._get_current_time,
            )
        )
        if getattr(athena, "ready", False):
            self._start_ticking()
        else:
            athena.once_private_event(PLUGINS_LOADED, self._on_plugins_loaded)

    async def unload(self, athena: "Athena") -> None:
        athena.off_private_event(self._on_plugins_loaded)
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None
        for timer in self.timers.values():
            if timer.handle is not None:
                timer.handle.cancel()
                timer.handle = None
        athena.deregister_tool("clock/get-current-time")
        athena.deregister_tool("clock/cancel-timer")
        athena.deregister_tool("clock/set-timer")
        athena.deregister_event(TIMER_EXPIRED_EVENT)
        athena.deregister_event(TICK_EVENT)

    def get_state(self) -> Dict[str, Any]:
        return {"timers": [timer.to_dict() for timer in self.timers.values()]}

    def set_state(self, state: Dict[str, Any]) -> None:
        restored: List[Dict[str, Any]] = list(state.get("timers") or [])
        for entry in restored:
            target = datetime.fromisoformat(entry["target_time"])
            self._arm(
                Timer(
                    timer_id=str(entry["id"]),
                    seconds=float(entry["seconds"]),
                    reason=str(entry["reason"]),
                    target=target,
                )
            )
        if restored:
            logger.info("Restored %d pending timer(s).", len(restored))
            # Keep fresh ids clear of restored ones.
            numeric = [int(t) for t in self.timers if t.isdigit()]
            self._ids = itertools.count(max(numeric, default=0) + 1)

    # ------------------------------------------------------------------
    def _on_plugins_loaded(self, name: str, args: Dict[str, Any]) -> None:
        self._start_ticking()

    def _start_ticking(self) -> None:
        if self.tick_every_seconds <= 0 or self._tick_task is not None:
            return
        self._tick_task = asyncio.ensure_future(self._tick_loop())

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_every_seconds)
            self.athena.emit_event(TICK_EVENT, {"current_time": utcnow().isoformat()})

    def _arm(self, timer: Timer) -> None:
        loop = asyncio.get_running_loop()
        delay = max(0.0, (timer.target - utcnow()).total_seconds())
        timer.handle = loop.call_later(delay, self._expire, timer.timer_id)
        self.timers[timer.timer_id] = timer

    def _expire(self, timer_id: str) -> None:
        timer = self.timers.pop(timer_id, None)
        if timer is None:
            return
        self.athena.emit_event(
            TIMER_EXPIRED_EVENT,
            {
                "timer_id": timer.timer_id,
                "seconds": timer.seconds,
                "reason": timer.reason,
                "current_time": utcnow().isoformat(),
            },
        )

    async def _set_timer(self, args: Dict[str, Any]) -> Dict[str, Any]:
        seconds = float(args["seconds"])
        if seconds < 0:
            raise ValueError("Timer length must not be negative.")
        timer = Timer(
            timer_id=str(next(self._ids)),
            seconds=seconds,
            reason=args["reason"],
            target=utcnow() + timedelta(seconds=seconds),
        )
        self._arm(timer)
        return {"timer_id": timer.timer_id, "target_time": timer.target.isoformat()}

    async def _cancel_timer(self, args: Dict[str, Any]) -> Dict[str, Any]:
        timer = self.timers.pop(args["timer_id"], None)
        if timer is None:
            raise ValueError(f"No pending timer with id {args['timer_id']}.")
        if timer.handle is not None:
            timer.handle.cancel()
        return {"status": "success"}

    async def _get_current_time(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {"current_time": utcnow().isoformat()}


__all__ = ["Clock", "Timer"]
