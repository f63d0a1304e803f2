from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeAlias

import numpy as np

from .backend import AudioBackend, GainLike, NodeLike
from .defaults import LEVEL_MAX

_LOGGER = logging.getLogger("syno.processors")

Rng: TypeAlias = np.random.Generator

CHOP_MIN_PERIOD = 0.1
CHOP_PERIOD_SPAN = 0.8


class RecurringTimer:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None], *, name: str = "timer") -> None:
        if interval <= 0:
            raise ValueError("timer interval must be positive")
        self._interval = interval
        self._callback = callback
        self._name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=0.2)

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._callback()
            except Exception as exc:
                _LOGGER.warning("%s tick failed: %s", self._name, exc, exc_info=True)


def chop_period(rate: float) -> float:
    """Gate period in seconds: 0.1 at rate 0 up to 0.9 at rate 9."""
    clamped = min(max(rate, 0.0), LEVEL_MAX)
    return CHOP_MIN_PERIOD + clamped * CHOP_PERIOD_SPAN / LEVEL_MAX


@dataclass
class ChopStage:
    gain: GainLike
    period: float
    timer: RecurringTimer | None = None

    def cancel(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


def _toggle(gain: GainLike, time: float, period: float) -> None:
    gain.gain.set_value_at_time(1.0, time)
    gain.gain.set_value_at_time(0.0, time + period / 2)
    gain.gain.set_value_at_time(1.0, time + period)


def apply_chop(
    backend: AudioBackend,
    source: NodeLike,
    rate: float,
    start_time: float,
    *,
    until: float | None = None,
    lookahead: int = 4,
) -> ChopStage:
    """Gate ``source`` on and off once per period starting at ``start_time``.

    Offline backends get every toggle up to the render end scheduled at once.
    Real-time backends keep ``lookahead`` periods scheduled and a timer re-arms
    one more period per tick.
    """
    period = chop_period(rate)
    gain = backend.create_gain()
    source.connect(gain)
    stage = ChopStage(gain=gain, period=period)

    end = until
    if backend.duration is not None:
        end = backend.duration if end is None else min(end, backend.duration)
        next_time = start_time
        while next_time < end:
            _toggle(gain, next_time, period)
            next_time += period
        return stage

    next_time = start_time
    for _ in range(lookahead):
        _toggle(gain, next_time, period)
        next_time += period

    def rearm() -> None:
        nonlocal next_time
        if end is not None and next_time >= end:
            stage.cancel()
            return
        _toggle(gain, next_time, period)
        next_time += period

    stage.timer = RecurringTimer(period, rearm, name="syno-chop")
    stage.timer.start()
    _LOGGER.debug("Chop armed: period %.3fs from %.3fs", period, start_time)
    return stage


def reverb_impulse(
    sample_rate: int, decay: float, rng: Rng | None = None
) -> np.ndarray:
    """Stereo noise impulse shaped by ``(1 - i/length) ** decay``."""
    generator = rng or np.random.default_rng()
    length = max(1, int(sample_rate * max(decay, 0.0)))
    envelope = (1.0 - np.arange(length) / length) ** max(decay, 0.0)
    noise = generator.uniform(-1.0, 1.0, (2, length))
    return (noise * envelope).astype(np.float32)


def apply_reverb(
    backend: AudioBackend, source: NodeLike, decay: float, *, rng: Rng | None = None
) -> NodeLike:
    impulse_data = reverb_impulse(backend.sample_rate, decay, rng)
    impulse = backend.create_buffer(2, impulse_data.shape[1])
    impulse.data[:] = impulse_data
    convolver = backend.create_convolver(impulse)
    source.connect(convolver)
    return convolver
