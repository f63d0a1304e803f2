# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportUnknownArgumentType=false

"""
Block-based signal graph engine.

1. Parameters: sample-accurate set/ramp automation plus audio-rate inputs
2. Nodes: oscillators, buffer players, gain, stereo panner, lowpass biquad,
   convolver, destination; every node renders one block on demand (pull)
3. Contexts: a real-time context fed by a sounddevice output stream and an
   offline context that renders a fixed length into an AudioBuffer
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal, TypeAlias

import numpy as np
from numpy.typing import NDArray
from scipy.signal import lfilter, oaconvolve, sawtooth, square  # type: ignore[import]

from .backend import BackendState, Waveform
from .config import DEFAULT_ENGINE_CONFIG
from .errors import BackendStateError, PlaybackError

_LOGGER = logging.getLogger("syno.engine")

FloatArray: TypeAlias = NDArray[np.float64]
WaveFn: TypeAlias = Callable[[FloatArray], FloatArray]

# Phase in cycles [0, 1) -> waveform in [-1, 1]
WAVEFORMS: Mapping[Waveform, WaveFn] = MappingProxyType(
    {
        "sine": lambda phase: np.sin(2 * np.pi * phase),
        "square": lambda phase: square(2 * np.pi * phase),
        "sawtooth": lambda phase: sawtooth(2 * np.pi * phase),
        "triangle": lambda phase: sawtooth(2 * np.pi * phase, width=0.5),
    }
)


@dataclass
class AudioBuffer:
    """Fixed-length multichannel audio, shaped (channels, frames)."""

    data: NDArray[np.float32]
    sample_rate: int

    @property
    def channels(self) -> int:
        return int(self.data.shape[0])

    @property
    def frames(self) -> int:
        return int(self.data.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate


@dataclass(frozen=True, slots=True)
class _Block:
    index: int
    start_frame: int
    times: FloatArray

    @property
    def frames(self) -> int:
        return int(self.times.size)


@dataclass(frozen=True, slots=True)
class _AutomationEvent:
    kind: Literal["set", "ramp"]
    time: float
    value: float


def _silence(channels: int, frames: int) -> FloatArray:
    return np.zeros((channels, frames), dtype=np.float64)


def _mix(signals: list[FloatArray], frames: int) -> FloatArray:
    if not signals:
        return _silence(1, frames)
    channels = max(signal.shape[0] for signal in signals)
    out = _silence(channels, frames)
    for signal in signals:
        # Mono inputs broadcast onto every channel.
        out += signal
    return out


class AudioParam:
    """A scalar control with timeline automation and summed audio-rate inputs."""

    def __init__(self, context: _GraphContext, default: float, *, name: str) -> None:
        self._context = context
        self._default = float(default)
        self._events: list[_AutomationEvent] = []
        self._inputs: list[AudioNode] = []
        self.name = name

    def __repr__(self) -> str:
        return f"AudioParam({self.name}, events={len(self._events)})"

    @property
    def value(self) -> float:
        with self._context.lock:
            return self._value_at(self._context.current_time)

    @value.setter
    def value(self, value: float) -> None:
        with self._context.lock:
            if not self._events:
                self._default = float(value)
                return
            self._insert(_AutomationEvent("set", self._context.current_time, float(value)))

    @property
    def events(self) -> tuple[_AutomationEvent, ...]:
        with self._context.lock:
            return tuple(self._events)

    def set_value_at_time(self, value: float, time: float) -> None:
        with self._context.lock:
            self._insert(_AutomationEvent("set", max(float(time), 0.0), float(value)))

    def linear_ramp_to_value_at_time(self, value: float, time: float) -> None:
        with self._context.lock:
            self._insert(_AutomationEvent("ramp", max(float(time), 0.0), float(value)))

    def cancel_scheduled_values(self, time: float) -> None:
        with self._context.lock:
            self._events = [event for event in self._events if event.time < time]

    def automation(self, times: FloatArray) -> FloatArray:
        """Evaluate the timeline alone (no audio-rate inputs) at ``times``."""
        out = np.full(times.shape, self._default, dtype=np.float64)
        prev_time, prev_value = 0.0, self._default
        for event in self._events:
            if event.kind == "ramp" and event.time > prev_time:
                span = (times >= prev_time) & (times < event.time)
                if span.any():
                    frac = (times[span] - prev_time) / (event.time - prev_time)
                    out[span] = prev_value + (event.value - prev_value) * frac
            out[times >= event.time] = event.value
            prev_time, prev_value = event.time, event.value
        return out

    def _value_at(self, time: float) -> float:
        return float(self.automation(np.array([time], dtype=np.float64))[0])

    def _insert(self, event: _AutomationEvent) -> None:
        index = bisect.bisect_right([existing.time for existing in self._events], event.time)
        self._events.insert(index, event)

    def _render(self, block: _Block) -> FloatArray:
        values = self.automation(block.times)
        for node in list(self._inputs):
            # Audio-rate inputs are down-mixed to mono before summing.
            values = values + node._pull(block).mean(axis=0)
        return values


class AudioNode:
    def __init__(self, context: _GraphContext, *, name: str) -> None:
        self._context = context
        self._inputs: list[AudioNode] = []
        self._outputs: list[AudioNode | AudioParam] = []
        self._cache_index = -1
        self._cache: FloatArray | None = None
        self._busy = False
        self.name = name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name})"

    def connect(self, target: AudioNode | AudioParam) -> None:
        with self._context.lock:
            target._inputs.append(self)
            self._outputs.append(target)

    def disconnect(self) -> None:
        with self._context.lock:
            for target in self._outputs:
                if self in target._inputs:
                    target._inputs.remove(self)
            self._outputs.clear()

    @property
    def connected(self) -> bool:
        return bool(self._outputs)

    def _pull(self, block: _Block) -> FloatArray:
        if self._cache_index == block.index and self._cache is not None:
            return self._cache
        if self._busy:
            # A cycle without delay renders as silence.
            return _silence(1, block.frames)
        self._busy = True
        try:
            self._cache = self._process(block)
            self._cache_index = block.index
        finally:
            self._busy = False
        return self._cache

    def _mixed_inputs(self, block: _Block) -> FloatArray:
        return _mix([node._pull(block) for node in list(self._inputs)], block.frames)

    def _process(self, block: _Block) -> FloatArray:
        raise NotImplementedError


class _ScheduledSource(AudioNode):
    def __init__(self, context: _GraphContext, *, name: str) -> None:
        super().__init__(context, name=name)
        self._start_time: float | None = None
        self._stop_time: float | None = None
        self._exhausted = False
        self._ended = False
        self._listeners: list[Callable[[], None]] = []

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def start_time(self) -> float | None:
        return self._start_time

    @property
    def stop_time(self) -> float | None:
        return self._stop_time

    def start(self, when: float = 0.0) -> None:
        with self._context.lock:
            if self._start_time is not None:
                raise RuntimeError(f"{self!r} was already started")
            self._start_time = max(float(when), self._context.current_time)
            self._context._register_source(self)

    def stop(self, when: float = 0.0) -> None:
        with self._context.lock:
            if self._start_time is None:
                raise RuntimeError(f"{self!r} was never started")
            self._stop_time = max(float(when), self._context.current_time)

    def add_ended_listener(self, callback: Callable[[], None]) -> None:
        with self._context.lock:
            self._listeners.append(callback)

    def _active(self, block: _Block) -> NDArray[np.bool_]:
        if self._start_time is None or self._ended:
            return np.zeros(block.frames, dtype=bool)
        mask = block.times >= self._start_time
        if self._stop_time is not None:
            mask &= block.times < self._stop_time
        return mask

    def _finish_if_done(self, now: float) -> bool:
        if self._ended or self._start_time is None:
            return False
        stopped = self._stop_time is not None and now >= self._stop_time
        if stopped or self._exhausted:
            self._ended = True
            return True
        return False

    def _notify_ended(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as exc:
                _LOGGER.warning("Ended listener failed for %r: %s", self, exc, exc_info=True)


class OscillatorNode(_ScheduledSource):
    def __init__(self, context: _GraphContext, waveform: Waveform, frequency: float) -> None:
        if waveform not in WAVEFORMS:
            raise ValueError(f"Unknown waveform: {waveform}. Valid: {list(WAVEFORMS)}")
        super().__init__(context, name=waveform)
        self.waveform: Waveform = waveform
        self.frequency = AudioParam(context, frequency, name="frequency")
        self._phase = 0.0

    def _process(self, block: _Block) -> FloatArray:
        out = _silence(1, block.frames)
        active = self._active(block)
        if not active.any():
            return out
        freq = self.frequency._render(block)
        increments = np.where(active, freq / self._context.sample_rate, 0.0)
        phases = self._phase + np.cumsum(increments) - increments
        self._phase = float((self._phase + increments.sum()) % 1.0)
        wave = WAVEFORMS[self.waveform](np.mod(phases, 1.0))
        out[0] = np.where(active, wave, 0.0)
        return out


class AudioBufferSourceNode(_ScheduledSource):
    def __init__(self, context: _GraphContext, buffer: AudioBuffer, *, loop: bool = False) -> None:
        super().__init__(context, name="buffer")
        self.buffer = buffer
        self.loop = loop
        self.playback_rate = AudioParam(context, 1.0, name="playback_rate")
        self._position = 0.0

    def _process(self, block: _Block) -> FloatArray:
        channels = max(self.buffer.channels, 1)
        out = _silence(channels, block.frames)
        active = self._active(block)
        frames = self.buffer.frames
        if not active.any():
            return out
        if frames == 0:
            self._exhausted = True
            return out
        rate = self.playback_rate._render(block)
        steps = np.where(active, rate * self.buffer.sample_rate / self._context.sample_rate, 0.0)
        positions = self._position + np.cumsum(steps) - steps
        self._position += float(steps.sum())
        if self.loop:
            positions = np.mod(positions, frames)
            valid = active
        else:
            valid = active & (positions >= 0) & (positions <= frames - 1)
            if self._position >= frames or self._position < 0:
                self._exhausted = True
        safe = np.clip(positions, 0, frames - 1)
        index0 = np.floor(safe).astype(np.int64)
        index1 = (index0 + 1) % frames if self.loop else np.minimum(index0 + 1, frames - 1)
        frac = safe - index0
        data = self.buffer.data.astype(np.float64, copy=False)
        samples = data[:, index0] * (1.0 - frac) + data[:, index1] * frac
        out[:] = np.where(valid, samples, 0.0)
        return out


class GainNode(AudioNode):
    def __init__(self, context: _GraphContext) -> None:
        super().__init__(context, name="gain")
        self.gain = AudioParam(context, 1.0, name="gain")

    def _process(self, block: _Block) -> FloatArray:
        return self._mixed_inputs(block) * self.gain._render(block)


class StereoPannerNode(AudioNode):
    def __init__(self, context: _GraphContext) -> None:
        super().__init__(context, name="panner")
        self.pan = AudioParam(context, 0.0, name="pan")

    def _process(self, block: _Block) -> FloatArray:
        signal = self._mixed_inputs(block)
        pan = np.clip(self.pan._render(block), -1.0, 1.0)
        out = _silence(2, block.frames)
        if signal.shape[0] == 1:
            # Equal-power placement of a mono input.
            angle = (pan + 1.0) * np.pi / 4.0
            out[0] = signal[0] * np.cos(angle)
            out[1] = signal[0] * np.sin(angle)
            return out
        left, right = signal[0], signal[1]
        x = np.where(pan <= 0, pan + 1.0, pan) * np.pi / 2.0
        gain_l, gain_r = np.cos(x), np.sin(x)
        out[0] = np.where(pan <= 0, left + right * gain_l, left * gain_l)
        out[1] = np.where(pan <= 0, right * gain_r, right + left * gain_r)
        return out


def lowpass_coefficients(
    cutoff: float, q_db: float, sample_rate: int
) -> tuple[FloatArray, FloatArray]:
    """Lowpass biquad coefficients, resonance given in dB."""
    nyquist = sample_rate / 2
    cutoff = min(max(cutoff, 10.0), nyquist * 0.99)
    w0 = 2 * np.pi * cutoff / sample_rate
    alpha = np.sin(w0) / (2 * 10 ** (q_db / 20))
    cos_w0 = np.cos(w0)
    b = np.array([(1 - cos_w0) / 2, 1 - cos_w0, (1 - cos_w0) / 2])
    a = np.array([1 + alpha, -2 * cos_w0, 1 - alpha])
    return b / a[0], a / a[0]


class BiquadFilterNode(AudioNode):
    """Lowpass biquad; cutoff and Q are read once per block."""

    def __init__(self, context: _GraphContext) -> None:
        super().__init__(context, name="lowpass")
        self.frequency = AudioParam(context, 350.0, name="frequency")
        self.q = AudioParam(context, 1.0, name="q")
        self._state: FloatArray | None = None

    def _process(self, block: _Block) -> FloatArray:
        signal = self._mixed_inputs(block)
        cutoff = float(self.frequency._render(block)[0])
        q_db = float(self.q._render(block)[0])
        b, a = lowpass_coefficients(cutoff, q_db, self._context.sample_rate)
        if self._state is None or self._state.shape[0] != signal.shape[0]:
            self._state = np.zeros((signal.shape[0], 2), dtype=np.float64)
        out = np.empty_like(signal)
        for channel in range(signal.shape[0]):
            filtered, self._state[channel] = lfilter(b, a, signal[channel], zi=self._state[channel])
            out[channel] = filtered
        return out


class ConvolverNode(AudioNode):
    """Streaming convolution with an impulse response, normalized to unit energy."""

    def __init__(self, context: _GraphContext, impulse: AudioBuffer) -> None:
        super().__init__(context, name="convolver")
        data = impulse.data.astype(np.float64)
        energy = float(np.mean(np.sum(data**2, axis=1))) if data.size else 0.0
        self._impulse = data / np.sqrt(energy) if energy > 0 else data
        self._tail: FloatArray | None = None

    def _process(self, block: _Block) -> FloatArray:
        signal = self._mixed_inputs(block)
        channels = max(self._impulse.shape[0], 1)
        taps = self._impulse.shape[1]
        if taps == 0:
            return signal
        if self._tail is None:
            self._tail = _silence(channels, taps - 1)
        full = _silence(channels, block.frames + taps - 1)
        if signal.any():
            for channel in range(channels):
                source = signal[min(channel, signal.shape[0] - 1)]
                full[channel] = oaconvolve(source, self._impulse[channel])
        full[:, : taps - 1] += self._tail
        self._tail = full[:, block.frames :].copy()
        return full[:, : block.frames]


class AudioDestinationNode(AudioNode):
    def __init__(self, context: _GraphContext) -> None:
        super().__init__(context, name="destination")

    def _process(self, block: _Block) -> FloatArray:
        signal = self._mixed_inputs(block)
        if signal.shape[0] == 1:
            return np.repeat(signal, 2, axis=0)
        return signal[:2]


class _GraphContext:
    def __init__(
        self,
        *,
        sample_rate: int = DEFAULT_ENGINE_CONFIG.sample_rate,
        block_size: int = DEFAULT_ENGINE_CONFIG.block_size,
    ) -> None:
        self.sample_rate = int(sample_rate)
        self.block_size = int(block_size)
        self.lock = threading.RLock()
        self._state: BackendState = "suspended"
        self._frame = 0
        self._block_index = 0
        self._sources: list[_ScheduledSource] = []
        self._destination = AudioDestinationNode(self)

    @property
    def state(self) -> BackendState:
        return self._state

    @property
    def current_time(self) -> float:
        return self._frame / self.sample_rate

    @property
    def duration(self) -> float | None:
        return None

    @property
    def destination(self) -> AudioDestinationNode:
        return self._destination

    def create_oscillator(self, waveform: Waveform, frequency: float) -> OscillatorNode:
        return OscillatorNode(self, waveform, frequency)

    def create_buffer(self, channels: int, frames: int) -> AudioBuffer:
        return AudioBuffer(np.zeros((channels, frames), dtype=np.float32), self.sample_rate)

    def create_buffer_source(
        self, buffer: AudioBuffer, *, loop: bool = False
    ) -> AudioBufferSourceNode:
        return AudioBufferSourceNode(self, buffer, loop=loop)

    def create_gain(self) -> GainNode:
        return GainNode(self)

    def create_stereo_panner(self) -> StereoPannerNode:
        return StereoPannerNode(self)

    def create_lowpass_filter(self) -> BiquadFilterNode:
        return BiquadFilterNode(self)

    def create_convolver(self, impulse: AudioBuffer) -> ConvolverNode:
        return ConvolverNode(self, impulse)

    def create_offline(self, duration: float) -> OfflineContext:
        return OfflineContext(duration, sample_rate=self.sample_rate, block_size=self.block_size)

    def resume(self) -> None:
        if self._state == "closed":
            raise BackendStateError("context is closed")
        self._state = "running"

    def suspend(self) -> None:
        if self._state == "closed":
            raise BackendStateError("context is closed")
        self._state = "suspended"

    def close(self) -> None:
        with self.lock:
            self._state = "closed"
            self._sources.clear()

    def render_block(self, frames: int) -> NDArray[np.float32]:
        """Render the next ``frames`` samples as a (2, frames) array and advance the clock."""
        with self.lock:
            times = (self._frame + np.arange(frames, dtype=np.float64)) / self.sample_rate
            block = _Block(self._block_index, self._frame, times)
            out = self._destination._pull(block)
            self._frame += frames
            self._block_index += 1
            now = self.current_time
            ended = [source for source in self._sources if source._finish_if_done(now)]
            if ended:
                self._sources = [source for source in self._sources if not source.ended]
                for source in ended:
                    source._notify_ended()
            return out.astype(np.float32)

    def _register_source(self, source: _ScheduledSource) -> None:
        self._sources.append(source)


class OfflineContext(_GraphContext):
    """Renders a fixed length of audio as fast as possible."""

    def __init__(
        self,
        duration: float,
        *,
        sample_rate: int = DEFAULT_ENGINE_CONFIG.sample_rate,
        block_size: int = DEFAULT_ENGINE_CONFIG.block_size,
    ) -> None:
        if duration <= 0:
            raise ValueError("offline duration must be positive")
        super().__init__(sample_rate=sample_rate, block_size=block_size)
        self._duration = float(duration)
        self._length = max(1, int(round(self._duration * self.sample_rate)))

    @property
    def duration(self) -> float:
        return self._duration

    def start_rendering(self) -> AudioBuffer:
        with self.lock:
            if self._state == "closed":
                raise BackendStateError("offline context was already rendered")
            self._state = "running"
            chunks: list[NDArray[np.float32]] = []
            while self._frame < self._length:
                chunks.append(self.render_block(min(self.block_size, self._length - self._frame)))
            self._state = "closed"
        _LOGGER.debug("Offline render finished: %.3fs", self._duration)
        return AudioBuffer(np.concatenate(chunks, axis=1), self.sample_rate)


def _load_sounddevice() -> Any | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    return sd_module


class RealtimeContext(_GraphContext):
    """Context whose clock is driven by a sounddevice output stream."""

    def __init__(
        self,
        *,
        sample_rate: int = DEFAULT_ENGINE_CONFIG.sample_rate,
        block_size: int = DEFAULT_ENGINE_CONFIG.block_size,
        device: int | str | None = None,
    ) -> None:
        super().__init__(sample_rate=sample_rate, block_size=block_size)
        self._device = device
        self._stream: Any | None = None

    def resume(self) -> None:
        if self._state == "closed":
            raise BackendStateError("context is closed")
        if self._stream is None:
            self._stream = self._open_stream()
        try:
            self._stream.start()
        except Exception as exc:
            raise PlaybackError(f"could not start audio output: {exc}") from exc
        self._state = "running"

    def suspend(self) -> None:
        if self._state == "closed":
            raise BackendStateError("context is closed")
        if self._stream is not None:
            self._stream.stop()
        self._state = "suspended"

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.close()
            except Exception as exc:
                _LOGGER.warning("Closing audio stream failed: %s", exc, exc_info=True)
        super().close()

    def _open_stream(self) -> Any:
        sd = _load_sounddevice()
        if sd is None:
            raise PlaybackError(
                "Real-time playback requires sounddevice. "
                "Install it (pip install 'syno[playback]') or render offline."
            )
        try:
            return sd.OutputStream(
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                channels=2,
                dtype="float32",
                device=self._device,
                callback=self._callback,
            )
        except Exception as exc:
            raise PlaybackError(f"could not open audio output: {exc}") from exc

    def _callback(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            _LOGGER.debug("Output stream status: %s", status)
        outdata[:] = self.render_block(frames).T
