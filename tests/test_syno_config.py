import pytest
from pydantic import ValidationError

from syno.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from syno.errors import InvalidConfigError


def test_defaults() -> None:
    assert DEFAULT_ENGINE_CONFIG.sample_rate == 44_100
    assert DEFAULT_ENGINE_CONFIG.fallback_duration == 20.0
    assert DEFAULT_ENGINE_CONFIG.vu_upper_bound == pytest.approx(36.0)


def test_from_env_reads_overrides() -> None:
    config = EngineConfig.from_env(
        {"SYNO_SAMPLE_RATE": "48000", "SYNO_BLOCK_SIZE": "512", "SYNO_FALLBACK_DURATION": "7.5"}
    )
    assert config.sample_rate == 48_000
    assert config.block_size == 512
    assert config.fallback_duration == pytest.approx(7.5)


def test_from_env_ignores_unrelated_and_empty_values() -> None:
    assert EngineConfig.from_env({"SYNO_SAMPLE_RATE": "", "HOME": "/tmp"}) == EngineConfig()


@pytest.mark.parametrize(
    "environ",
    [
        {"SYNO_SAMPLE_RATE": "fast"},
        {"SYNO_SAMPLE_RATE": "1000"},
        {"SYNO_SAMPLE_RATE": "8000", "SYNO_BLOCK_SIZE": "16384"},
        {"SYNO_FALLBACK_DURATION": "0"},
    ],
)
def test_from_env_rejects_invalid_values(environ: dict[str, str]) -> None:
    with pytest.raises(InvalidConfigError):
        EngineConfig.from_env(environ)


def test_config_is_frozen() -> None:
    with pytest.raises(ValidationError):
        DEFAULT_ENGINE_CONFIG.sample_rate = 8000  # type: ignore[misc]
