from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass

from .backend import AudioParamLike

_LOGGER = logging.getLogger("syno.transitions")


@dataclass(frozen=True, slots=True)
class ScheduledTransition:
    param: AudioParamLike
    end: float
    duration: float
    begin_time: float


class TransitionManager:
    """Schedules linear parameter ramps and tracks them for the timer display."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: list[ScheduledTransition] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)

    def schedule(
        self,
        param: AudioParamLike,
        start: float,
        end: float,
        duration: float,
        begin_time: float,
        middle: float | None = None,
    ) -> ScheduledTransition:
        if duration <= 0:
            raise ValueError("transition duration must be positive")
        param.set_value_at_time(start, begin_time)
        if middle is not None:
            param.linear_ramp_to_value_at_time(middle, begin_time + duration / 2)
        param.linear_ramp_to_value_at_time(end, begin_time + duration)
        entry = ScheduledTransition(param=param, end=end, duration=duration, begin_time=begin_time)
        with self._lock:
            self._active.append(entry)
        _LOGGER.debug(
            "Scheduled %s -> %s over %.2fs at %.2fs", start, end, duration, begin_time
        )
        return entry

    def get_active_timers(self, now: float) -> list[int]:
        """Whole seconds elapsed per unfinished transition; finished ones are pruned.

        Entries scheduled in the future report negative values.
        """
        with self._lock:
            self._active = [t for t in self._active if now - t.begin_time < t.duration]
            return [math.floor(now - t.begin_time) for t in self._active]

    def clear(self) -> None:
        with self._lock:
            self._active.clear()
