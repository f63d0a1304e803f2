from pathlib import Path

import numpy as np
import pytest
import soundfile as sf  # type: ignore[import]

from syno.audio import ensure_audio_contract, write_wav
from syno.errors import InvalidConfigError


def test_write_wav_writes_stereo(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "out.wav"
    audio = np.zeros((400, 2), dtype=np.float32)
    audio[:, 0] = 0.5

    path = write_wav(target, audio, sample_rate=8000)

    data, sample_rate = sf.read(path)
    assert path == target
    assert sample_rate == 8000
    assert data.shape == (400, 2)
    assert np.allclose(data[:, 0], 0.5)


def test_mono_is_duplicated_to_both_channels() -> None:
    out = ensure_audio_contract([0.1, -0.2, 0.3])
    assert out.shape == (3, 2)
    assert np.allclose(out[:, 0], out[:, 1])


def test_peaks_are_normalized_and_nan_is_zeroed() -> None:
    audio = np.array([[2.0, -4.0], [np.nan, 1.0]], dtype=np.float32)
    out = ensure_audio_contract(audio)
    assert np.max(np.abs(out)) == pytest.approx(1.0)
    assert out[1, 0] == 0.0


def test_unsupported_shapes_are_rejected() -> None:
    with pytest.raises(InvalidConfigError):
        ensure_audio_contract(np.zeros((10, 3), dtype=np.float32))
