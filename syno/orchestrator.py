"""
Session orchestration: turns parsed nodes into a live signal graph.

1. ensure_context: lazily create the backend and the master bus
2. play: capture buffers on demand, then build one chain per node
   source -> gain -> [pan] -> [chop] -> [reverb] -> [lowpass] -> master
3. stop: hard-mute and tear down every chain, clear session state
4. get_vu_levels / get_timers: polling queries for meters; metering also
   prunes voices whose source has ended
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import partial
from types import MappingProxyType
from typing import Literal, cast

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field

from .backend import (
    AudioBackend,
    AudioBufferLike,
    AudioParamLike,
    BufferSourceLike,
    FilterLike,
    GainLike,
    NodeLike,
    OscillatorLike,
    PannerLike,
    SourceLike,
)
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .defaults import DEFAULT_REGISTRY, LEVEL_MAX, Registry
from .engine import OfflineContext, RealtimeContext
from .errors import BackendStateError, BufferNotFoundError, SynoError
from .generators import create_node
from .nodes import AstNode, MasterNode, Ramp, SynthNode, Transition
from .parser import parse
from .processors import ChopStage, apply_chop, apply_reverb
from .transitions import TransitionManager

_LOGGER = logging.getLogger("syno.orchestrator")

OrchestratorState = Literal["idle", "building", "playing", "stopping"]
BackendFactory = Callable[[], AudioBackend]

PERIODIC_TYPES = frozenset({"sine", "square", "sawtooth", "triangle"})
FILTER_Q = 2.0
FILTER_HZ_PER_LEVEL = 100.0
FILTER_FLOOR_HZ = 10.0  # keeps a zero level a valid lowpass

_ENVELOPE_STEP = 0.1


class VuLevels(BaseModel):
    left: float = Field(default=0.0, ge=0.0)
    right: float = Field(default=0.0, ge=0.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


@dataclass
class VoiceBundle:
    """Every handle one node contributed to the live graph."""

    node: SynthNode
    source: SourceLike
    gain: GainLike
    stop_time: float
    audible: bool = True
    pan: PannerLike | None = None
    chop: ChopStage | None = None
    reverb: NodeLike | None = None
    filter: FilterLike | None = None
    depth: GainLike | None = None
    params: list[AudioParamLike] = field(default_factory=list)
    ended: bool = False

    @property
    def output(self) -> NodeLike:
        for stage in (self.filter, self.reverb, self.chop.gain if self.chop else None, self.pan):
            if stage is not None:
                return stage
        return self.gain

    def handles(self) -> list[NodeLike]:
        stages: list[NodeLike | None] = [
            self.source,
            self.gain,
            self.pan,
            self.chop.gain if self.chop else None,
            self.reverb,
            self.filter,
            self.depth,
        ]
        return [stage for stage in stages if stage is not None]


def level(value: float) -> float:
    """Author-facing 0-9 level -> 0-1, clamped."""
    if not math.isfinite(value):
        return 0.0
    return min(max(value, 0.0), LEVEL_MAX) / LEVEL_MAX


def clamp_pan(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(max(value, -1.0), 1.0)


def cutoff_hz(value: float) -> float:
    """0-9 filter level -> 0-900 Hz, linear."""
    return max(level(value) * LEVEL_MAX * FILTER_HZ_PER_LEVEL, FILTER_FLOOR_HZ)


def effective_duration(node: SynthNode, config: EngineConfig = DEFAULT_ENGINE_CONFIG) -> float:
    if isinstance(node.volume, Transition):
        return node.volume.duration
    return config.fallback_duration


def session_length(nodes: Sequence[AstNode], config: EngineConfig = DEFAULT_ENGINE_CONFIG) -> float:
    """Latest scheduled stop time across ``nodes`` and their modulators."""

    def _end(node: SynthNode) -> float:
        own = node.start_time + effective_duration(node, config)
        return max([own, *(_end(child) for child in node.recursion)])

    ends = [_end(node) for node in nodes if isinstance(node, SynthNode)]
    return max(ends, default=0.0)


def _silent(ramp: Ramp) -> bool:
    if isinstance(ramp, Transition):
        return all(level(v) == 0.0 for v in (ramp.start, ramp.end, ramp.middle or 0.0))
    return level(ramp) == 0.0


def _latest_capture(nodes: Sequence[AstNode], before: int, slot: str) -> tuple[int, SynthNode] | None:
    for index in range(before - 1, -1, -1):
        candidate = nodes[index]
        if isinstance(candidate, SynthNode) and candidate.capture == slot:
            return index, candidate
    return None


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


class Orchestrator:
    """Owns one backend context and at most one playing session."""

    def __init__(
        self,
        backend_factory: BackendFactory | None = None,
        *,
        registry: Registry = DEFAULT_REGISTRY,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._backend_factory: BackendFactory = backend_factory or partial(
            RealtimeContext, sample_rate=config.sample_rate, block_size=config.block_size
        )
        self._registry = registry
        self._config = config
        self._rng = rng
        self._lock = threading.RLock()
        self._state: OrchestratorState = "idle"
        self._backend: AudioBackend | None = None
        self._master: GainLike | None = None
        self._graph: list[VoiceBundle] = []
        self._buffers: dict[str, AudioBufferLike] = {}
        self._transitions = TransitionManager()
        self._session_start = 0.0

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def backend(self) -> AudioBackend | None:
        return self._backend

    @property
    def master_gain(self) -> GainLike | None:
        return self._master

    @property
    def active_graph(self) -> tuple[VoiceBundle, ...]:
        with self._lock:
            return tuple(self._graph)

    @property
    def buffers(self) -> Mapping[str, AudioBufferLike]:
        with self._lock:
            return MappingProxyType(dict(self._buffers))

    def buffer(self, slot: str) -> AudioBufferLike:
        with self._lock:
            try:
                return self._buffers[slot]
            except KeyError:
                raise BufferNotFoundError(slot) from None

    @property
    def transitions(self) -> TransitionManager:
        return self._transitions

    @property
    def session_start(self) -> float:
        return self._session_start

    def ensure_context(self) -> AudioBackend:
        with self._lock:
            if self._backend is None or self._backend.state == "closed":
                try:
                    backend = self._backend_factory()
                    master = backend.create_gain()
                    master.gain.value = level(self._registry.master.volume)
                    master.connect(backend.destination)
                except SynoError:
                    raise
                except Exception as exc:
                    raise BackendStateError(f"could not create audio backend: {exc}") from exc
                self._backend, self._master = backend, master
                _LOGGER.debug("Backend created at %d Hz", backend.sample_rate)
            backend = self._backend
            if backend.state == "suspended":
                try:
                    backend.resume()
                except SynoError:
                    raise
                except Exception as exc:
                    raise BackendStateError(f"could not resume audio backend: {exc}") from exc
            if backend.state != "running":
                raise BackendStateError(f"audio backend is {backend.state}, expected running")
            return backend

    def play(self, nodes: Sequence[AstNode]) -> float:
        """Build and start every node; returns the session start time."""
        with self._lock:
            if self._graph or self._state != "idle":
                self.stop()
            backend = self.ensure_context()
            assert self._master is not None
            self._state = "building"
            self._session_start = backend.current_time
            try:
                for index, node in enumerate(nodes):
                    if isinstance(node, MasterNode):
                        self._master.gain.value = level(node.volume)
                        continue
                    self._capture_dependencies(backend, nodes, index, node)
                    self._graph.extend(
                        self._build_voice(
                            backend, node, self._session_start, self._transitions, self._master
                        )
                    )
            except Exception:
                _LOGGER.error("Building the session failed; tearing down", exc_info=True)
                self.stop()
                raise
            self._state = "playing"
            _LOGGER.info("Playing %d voices", len(self._graph))
            return self._session_start

    def stop(self) -> None:
        with self._lock:
            backend = self._backend
            self._state = "stopping"
            if backend is not None:
                now = backend.current_time
                for bundle in self._graph:
                    self._teardown(bundle, now)
            self._graph.clear()
            self._buffers.clear()
            self._transitions.clear()
            if backend is not None and backend.state == "running":
                try:
                    backend.suspend()
                except Exception as exc:
                    _LOGGER.warning("Suspending backend failed: %s", exc, exc_info=True)
            self._state = "idle"

    def cleanup(self) -> None:
        with self._lock:
            self.stop()
            backend, self._backend, self._master = self._backend, None, None
            if backend is None:
                return
            try:
                backend.close()
            except Exception as exc:
                _LOGGER.warning("Closing backend failed: %s", exc, exc_info=True)

    def prune_finished(self) -> int:
        """Drop voices whose source the backend reported as ended."""
        with self._lock:
            finished = [bundle for bundle in self._graph if bundle.ended]
            if not finished or self._backend is None:
                return 0
            now = self._backend.current_time
            for bundle in finished:
                self._teardown(bundle, now)
            pruned = {id(bundle) for bundle in finished}
            self._graph = [bundle for bundle in self._graph if id(bundle) not in pruned]
            _LOGGER.debug("Pruned %d finished voices", len(finished))
            return len(finished)

    def get_vu_levels(self) -> VuLevels:
        with self._lock:
            self.prune_finished()
            voices = [bundle for bundle in self._graph if bundle.audible]
            if self._master is None or not voices:
                return VuLevels()
            total_left = total_right = 0.0
            for bundle in voices:
                volume = max(_finite(bundle.gain.gain.value), 0.0) * self._config.vu_scale
                pan = clamp_pan(bundle.pan.pan.value) if bundle.pan is not None else 0.0
                total_left += volume * max(0.0, 1.0 - pan)
                total_right += volume * max(0.0, 1.0 + pan)
            master = max(_finite(self._master.gain.value), 0.0)
            upper = self._config.vu_upper_bound
            left = min(total_left / len(voices) * master, upper)
            right = min(total_right / len(voices) * master, upper)
            return VuLevels(left=_finite(left), right=_finite(right))

    def get_timers(self) -> list[int]:
        with self._lock:
            if self._backend is None:
                return []
            timers = self._transitions.get_active_timers(self._backend.current_time)
            return [timer for timer in timers if timer >= 0]

    def _capture_dependencies(
        self, backend: AudioBackend, nodes: Sequence[AstNode], index: int, node: SynthNode
    ) -> None:
        for slot in node.slot_dependencies:
            if slot in self._buffers:
                continue
            found = _latest_capture(nodes, index, slot)
            if found is None:
                _LOGGER.debug("Slot %s has no earlier capture; %s reads silence", slot, node.type)
                continue
            source_index, source = found
            self._capture_dependencies(backend, nodes, source_index, source)
            self._buffers[slot] = self._render_capture(
                backend, source, effective_duration(node, self._config)
            )

    def _render_capture(
        self, backend: AudioBackend, node: SynthNode, duration: float
    ) -> AudioBufferLike:
        offline = backend.create_offline(duration)
        offline.resume()
        # Captures always start at the head of the buffer.
        self._build_voice(
            offline,
            node.model_copy(update={"start_time": 0.0}),
            0.0,
            TransitionManager(),
            offline.destination,
        )
        rendered = offline.start_rendering()
        _LOGGER.debug("Captured %s: %.2fs", node.capture, rendered.duration)
        return rendered

    def _create_source(self, backend: AudioBackend, node: SynthNode) -> SourceLike | None:
        if node.is_buffer_ref:
            assert node.buffer is not None
            try:
                buffer = self.buffer(node.buffer)
            except BufferNotFoundError as exc:
                _LOGGER.debug("Skipping buffer voice: %s", exc)
                return None
            return backend.create_buffer_source(buffer, loop=False)
        return create_node(backend, node, rng=self._rng)

    def _build_voice(
        self,
        backend: AudioBackend,
        node: SynthNode,
        session_start: float,
        transitions: TransitionManager,
        output: NodeLike,
        *,
        audible: bool = True,
    ) -> list[VoiceBundle]:
        source = self._create_source(backend, node)
        if source is None:
            return []
        begin = session_start + node.start_time
        stop_at = begin + effective_duration(node, self._config)

        gain = backend.create_gain()
        source.connect(gain)
        bundle = VoiceBundle(node=node, source=source, gain=gain, stop_time=stop_at, audible=audible)
        source.add_ended_listener(partial(_mark_ended, bundle))
        bundle.params.append(gain.gain)
        self._apply_volume(backend, node, source, gain, begin, transitions)
        last: NodeLike = gain

        if isinstance(node.pan, Transition) or node.pan != 0.0:
            panner = backend.create_stereo_panner()
            self._apply_ramp(panner.pan, node.pan, clamp_pan, begin, transitions)
            last.connect(panner)
            bundle.pan, last = panner, panner
            bundle.params.append(panner.pan)

        if node.chop is not None:
            bundle.chop = apply_chop(
                backend,
                last,
                node.chop,
                begin,
                until=stop_at,
                lookahead=self._config.chop_lookahead,
            )
            last = bundle.chop.gain
            bundle.params.append(bundle.chop.gain.gain)

        if node.reverb is not None:
            bundle.reverb = apply_reverb(backend, last, node.reverb, rng=self._rng)
            last = bundle.reverb

        if node.filter is not None:
            lowpass = backend.create_lowpass_filter()
            lowpass.q.value = FILTER_Q
            self._apply_ramp(lowpass.frequency, node.filter, cutoff_hz, begin, transitions)
            last.connect(lowpass)
            bundle.filter, last = lowpass, lowpass
            bundle.params.append(lowpass.frequency)

        carrier, depth_scale = self._carrier_param(node, source)
        if node.type in PERIODIC_TYPES and isinstance(node.freq, Transition):
            self._apply_ramp(carrier, node.freq, float, begin, transitions)
        if node.glissando is not None:
            self._apply_ramp(carrier, node.glissando, float, begin, transitions)
        if node.type in PERIODIC_TYPES or node.is_buffer_ref:
            bundle.params.append(carrier)

        modulators: list[VoiceBundle] = []
        for child in node.recursion:
            modulators.extend(
                self._build_modulator(backend, child, session_start, transitions, carrier, depth_scale)
            )

        last.connect(output)
        source.start(begin)
        source.stop(stop_at)
        _LOGGER.debug("Built %s voice: %.2fs -> %.2fs", node.type, begin, stop_at)
        return [bundle, *modulators]

    def _build_modulator(
        self,
        backend: AudioBackend,
        node: SynthNode,
        session_start: float,
        transitions: TransitionManager,
        carrier: AudioParamLike,
        depth_scale: float,
    ) -> list[VoiceBundle]:
        if _silent(node.volume):
            _LOGGER.debug("Skipping silent %s modulator", node.type)
            return []
        depth = backend.create_gain()
        depth.gain.value = depth_scale
        bundles = self._build_voice(
            backend, node, session_start, transitions, depth, audible=False
        )
        if not bundles:
            return []
        depth.connect(carrier)
        bundles[0].depth = depth
        return bundles

    def _carrier_param(self, node: SynthNode, source: SourceLike) -> tuple[AudioParamLike, float]:
        if node.type in PERIODIC_TYPES:
            return cast(OscillatorLike, source).frequency, self._config.fm_depth_hz
        return cast(BufferSourceLike, source).playback_rate, self._config.rate_depth

    def _apply_volume(
        self,
        backend: AudioBackend,
        node: SynthNode,
        source: SourceLike,
        gain: GainLike,
        begin: float,
        transitions: TransitionManager,
    ) -> None:
        if isinstance(node.volume, Transition):
            self._apply_ramp(gain.gain, node.volume, level, begin, transitions)
            return
        target = level(node.volume)
        if node.envelope is None:
            gain.gain.value = target
            return
        attack, decay, sustain, release = (int(digit) for digit in node.envelope)
        attack_end = begin + attack * _ENVELOPE_STEP
        gain.gain.set_value_at_time(0.0, begin)
        gain.gain.linear_ramp_to_value_at_time(target, attack_end)
        gain.gain.linear_ramp_to_value_at_time(
            target * sustain / LEVEL_MAX, attack_end + decay * _ENVELOPE_STEP
        )
        source.add_ended_listener(
            partial(_release, backend, gain.gain, release * _ENVELOPE_STEP)
        )

    def _apply_ramp(
        self,
        param: AudioParamLike,
        ramp: Ramp,
        scale: Callable[[float], float],
        begin: float,
        transitions: TransitionManager,
    ) -> None:
        if not isinstance(ramp, Transition):
            param.value = scale(ramp)
            return
        transitions.schedule(
            param,
            scale(ramp.start),
            scale(ramp.end),
            ramp.duration,
            begin,
            middle=None if ramp.middle is None else scale(ramp.middle),
        )

    def _teardown(self, bundle: VoiceBundle, now: float) -> None:
        steps: list[tuple[str, Callable[[], None]]] = []
        if bundle.chop is not None:
            steps.append(("chop timer", bundle.chop.cancel))
        for param in bundle.params:
            steps.append(("automation", partial(param.cancel_scheduled_values, now)))
        steps.append(("mute", partial(bundle.gain.gain.set_value_at_time, 0.0, now)))
        steps.append(("stop", partial(bundle.source.stop, now)))
        for handle in bundle.handles():
            steps.append(("disconnect", handle.disconnect))
        for label, action in steps:
            try:
                action()
            except Exception as exc:
                _LOGGER.warning("Teardown step %r failed for %s: %s", label, bundle.node.type, exc)


def _mark_ended(bundle: VoiceBundle) -> None:
    # Runs on the render thread; the orchestrator lock is not taken here.
    bundle.ended = True


def _release(backend: AudioBackend, param: AudioParamLike, release: float) -> None:
    now = backend.current_time
    live = param.value
    param.cancel_scheduled_values(now)
    param.set_value_at_time(live, now)
    param.linear_ramp_to_value_at_time(0.0, now + release)


def render(
    source: str | Sequence[AstNode],
    duration: float | None = None,
    *,
    registry: Registry = DEFAULT_REGISTRY,
    config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    rng: np.random.Generator | None = None,
) -> NDArray[np.float32]:
    """Render a script (or parsed nodes) offline; returns a (frames, 2) array."""
    nodes = parse(source, registry) if isinstance(source, str) else list(source)
    length = duration if duration is not None else session_length(nodes, config)
    if length <= 0:
        return np.zeros((0, 2), dtype=np.float32)
    offline = OfflineContext(length, sample_rate=config.sample_rate, block_size=config.block_size)
    orchestrator = Orchestrator(lambda: offline, registry=registry, config=config, rng=rng)
    try:
        orchestrator.play(nodes)
        rendered = offline.start_rendering()
    finally:
        orchestrator.cleanup()
    return np.ascontiguousarray(rendered.data.T)
