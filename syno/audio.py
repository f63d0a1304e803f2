from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any, Callable, cast

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .config import DEFAULT_ENGINE_CONFIG
from .errors import InvalidConfigError

FloatArray = NDArray[np.float32]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[Sequence[float]] | FloatArray

SAMPLE_RATE = DEFAULT_ENGINE_CONFIG.sample_rate


def ensure_audio_contract(audio: AudioNumbers) -> FloatArray:
    """Normalize to float32 (frames, 2) with peaks no louder than full scale."""

    stereo: FloatArray = np.asarray(audio, dtype=np.float32)
    match stereo.ndim:
        case 1:
            stereo = np.repeat(stereo[:, None], 2, axis=1)
        case 2 if stereo.shape[1] in (1, 2):
            if stereo.shape[1] == 1:
                stereo = np.repeat(stereo, 2, axis=1)
        case _:
            raise InvalidConfigError(f"expected mono or (frames, 2) audio, got {stereo.shape}")
    if stereo.size == 0:
        return stereo
    stereo = np.nan_to_num(stereo, nan=0.0, posinf=0.0, neginf=0.0)
    peak = float(np.max(np.abs(stereo)))
    if peak > 1.0:
        stereo = stereo / peak
    return stereo


def write_wav(
    path: str | Path,
    audio: AudioNumbers,
    *,
    sample_rate: int = SAMPLE_RATE,
) -> Path:
    """Write rendered stereo audio to a wav file."""

    target = Path(path)
    write_fn = getattr(sf, "write", None)
    assert callable(write_fn)
    write_audio = cast(Callable[..., None], write_fn)
    normalized = ensure_audio_contract(audio)
    target.parent.mkdir(parents=True, exist_ok=True)
    # soundfile stubs are incomplete; cast is intentional for type safety.
    write_audio(target, normalized, sample_rate, subtype="FLOAT")  # type: ignore[reportUnknownMemberType]
    return target
