"""Node factory: maps resolved AST nodes to backend sources."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import TypeAlias, cast

import numpy as np
from numpy.typing import NDArray
from scipy.signal import lfilter  # type: ignore[import]

from .backend import AudioBackend, SourceLike, Waveform
from .nodes import Ramp, SynthNode, Transition

_LOGGER = logging.getLogger("syno.generators")

NOISE_SECONDS = 2.0
NOISE_VARIANTS = ("white", "pink", "brown", "gray")

Rng: TypeAlias = np.random.Generator
NoiseFn: TypeAlias = Callable[[int, int, Rng], NDArray[np.float64]]

_OSCILLATOR_WAVEFORMS: Mapping[str, Waveform] = MappingProxyType(
    {
        "sine": "sine",
        "square": "square",
        "sawtooth": "sawtooth",
        "triangle": "triangle",
    }
)

# Kellett's economy pink filter: (pole, input gain) per leaky integrator
_PINK_POLES = (
    (0.99886, 0.0555179),
    (0.99332, 0.0750759),
    (0.96900, 0.1538520),
    (0.86650, 0.3104856),
    (0.55000, 0.5329522),
    (-0.7616, -0.0168980),
)
_PINK_SCALE = 0.11
_BROWN_STEP = 0.02
_GRAY_BAND = (500.0, 5000.0)


def start_value(value: Ramp | None, fallback: float) -> float:
    if value is None:
        return fallback
    if isinstance(value, Transition):
        return value.start
    return float(value)


def _white(frames: int, sample_rate: int, rng: Rng) -> NDArray[np.float64]:
    return rng.uniform(-1.0, 1.0, frames)


def _pink(frames: int, sample_rate: int, rng: Rng) -> NDArray[np.float64]:
    white = rng.uniform(-1.0, 1.0, frames)
    pink = np.zeros(frames, dtype=np.float64)
    for pole, gain in _PINK_POLES:
        pink += lfilter([gain], [1.0, -pole], white)
    delayed = np.concatenate(([0.0], white[:-1])) * 0.115926
    pink += delayed + white * 0.5362
    return np.clip(pink * _PINK_SCALE, -1.0, 1.0)


def _brown(frames: int, sample_rate: int, rng: Rng) -> NDArray[np.float64]:
    white = rng.uniform(-1.0, 1.0, frames)
    brown = np.empty(frames, dtype=np.float64)
    last = 0.0
    for i in range(frames):
        last = min(max(last + white[i] * _BROWN_STEP, -1.0), 1.0)
        brown[i] = last
    return brown


def _gray(frames: int, sample_rate: int, rng: Rng) -> NDArray[np.float64]:
    white = rng.uniform(-1.0, 1.0, frames)
    pseudo_freq = np.arange(frames) / max(frames, 1) * (sample_rate / 2)
    low, high = _GRAY_BAND
    weight = np.where((pseudo_freq < low) | (pseudo_freq > high), 1.5, 0.5)
    return np.clip(white * weight, -1.0, 1.0)


NOISE_GENERATORS: Mapping[int, NoiseFn] = MappingProxyType(
    {0: _white, 1: _pink, 2: _brown, 3: _gray}
)


def noise_variant(value: Ramp | None) -> int:
    variant = int(np.floor(start_value(value, 0.0)))
    clamped = min(max(variant, 0), len(NOISE_VARIANTS) - 1)
    if clamped != variant:
        _LOGGER.debug("Noise variant %s clamped to %s", variant, clamped)
    return clamped


def noise_samples(
    variant: int, frames: int, sample_rate: int, rng: Rng | None = None
) -> NDArray[np.float64]:
    generator = NOISE_GENERATORS[min(max(variant, 0), len(NOISE_VARIANTS) - 1)]
    return generator(frames, sample_rate, rng or np.random.default_rng())


def create_node(
    backend: AudioBackend, node: SynthNode, *, rng: Rng | None = None
) -> SourceLike | None:
    """Build the source for ``node``; buffer playback is wired by the orchestrator."""
    if node.type in _OSCILLATOR_WAVEFORMS:
        freq = start_value(node.freq, 440.0)
        return backend.create_oscillator(_OSCILLATOR_WAVEFORMS[node.type], freq)
    if node.type == "noise":
        variant = noise_variant(node.freq)
        frames = int(backend.sample_rate * NOISE_SECONDS)
        buffer = backend.create_buffer(1, frames)
        buffer.data[0] = noise_samples(variant, frames, backend.sample_rate, rng)
        _LOGGER.debug("Noise source: %s", NOISE_VARIANTS[variant])
        return cast(SourceLike, backend.create_buffer_source(buffer, loop=True))
    if node.type == "buffer":
        return None
    _LOGGER.error("Unknown generator type: %s", node.type)
    return None
