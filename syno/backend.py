"""Abstract audio backend driven by the orchestrator.

The orchestrator only ever talks to these protocols: it creates nodes,
wires them, and schedules parameter automation. Sample generation belongs
to the backend. ``syno.engine`` provides the bundled implementation.
"""

from __future__ import annotations

from typing import Callable, Literal, Protocol, Union, runtime_checkable

import numpy as np
from numpy.typing import NDArray

BackendState = Literal["suspended", "running", "closed"]
Waveform = Literal["sine", "square", "sawtooth", "triangle"]


class AudioParamLike(Protocol):
    """A rampable scalar control."""

    @property
    def value(self) -> float: ...

    @value.setter
    def value(self, value: float) -> None: ...

    def set_value_at_time(self, value: float, time: float) -> None: ...

    def linear_ramp_to_value_at_time(self, value: float, time: float) -> None: ...

    def cancel_scheduled_values(self, time: float) -> None: ...


class AudioBufferLike(Protocol):
    sample_rate: int

    @property
    def data(self) -> NDArray[np.float32]: ...

    @property
    def channels(self) -> int: ...

    @property
    def frames(self) -> int: ...

    @property
    def duration(self) -> float: ...


ConnectTarget = Union["NodeLike", AudioParamLike]


class NodeLike(Protocol):
    def connect(self, target: ConnectTarget) -> None: ...

    def disconnect(self) -> None: ...


class SourceLike(NodeLike, Protocol):
    def start(self, when: float = 0.0) -> None: ...

    def stop(self, when: float = 0.0) -> None: ...

    def add_ended_listener(self, callback: Callable[[], None]) -> None: ...


class OscillatorLike(SourceLike, Protocol):
    @property
    def frequency(self) -> AudioParamLike: ...


class BufferSourceLike(SourceLike, Protocol):
    @property
    def playback_rate(self) -> AudioParamLike: ...


class GainLike(NodeLike, Protocol):
    @property
    def gain(self) -> AudioParamLike: ...


class PannerLike(NodeLike, Protocol):
    @property
    def pan(self) -> AudioParamLike: ...


class FilterLike(NodeLike, Protocol):
    @property
    def frequency(self) -> AudioParamLike: ...

    @property
    def q(self) -> AudioParamLike: ...


@runtime_checkable
class AudioBackend(Protocol):
    sample_rate: int

    @property
    def state(self) -> BackendState: ...

    @property
    def current_time(self) -> float: ...

    @property
    def duration(self) -> float | None:
        """Render length for offline backends, ``None`` for real-time ones."""
        ...

    @property
    def destination(self) -> NodeLike: ...

    def create_oscillator(self, waveform: Waveform, frequency: float) -> OscillatorLike: ...

    def create_buffer(self, channels: int, frames: int) -> AudioBufferLike: ...

    def create_buffer_source(
        self, buffer: AudioBufferLike, *, loop: bool = False
    ) -> BufferSourceLike: ...

    def create_gain(self) -> GainLike: ...

    def create_stereo_panner(self) -> PannerLike: ...

    def create_lowpass_filter(self) -> FilterLike: ...

    def create_convolver(self, impulse: AudioBufferLike) -> NodeLike: ...

    def create_offline(self, duration: float) -> "OfflineBackend": ...

    def resume(self) -> None: ...

    def suspend(self) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class OfflineBackend(AudioBackend, Protocol):
    def start_rendering(self) -> AudioBufferLike: ...
