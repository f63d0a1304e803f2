from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidConfigError

_LOGGER = logging.getLogger("syno.config")

# Environment overrides: env var -> EngineConfig field
_ENV_FIELDS: Mapping[str, str] = MappingProxyType(
    {
        "SYNO_SAMPLE_RATE": "sample_rate",
        "SYNO_BLOCK_SIZE": "block_size",
        "SYNO_FALLBACK_DURATION": "fallback_duration",
    }
)


class EngineConfig(BaseModel):
    """Engine-wide constants shared by the orchestrator and the graph engine."""

    sample_rate: int = Field(default=44_100, ge=8_000, le=192_000)
    block_size: int = Field(default=1024, ge=32, le=16_384)
    fallback_duration: float = Field(default=20.0, gt=0.0)
    vu_scale: float = Field(default=18.0, gt=0.0)
    fm_depth_hz: float = Field(default=1000.0, ge=0.0)
    rate_depth: float = Field(default=1.0, ge=0.0)
    chop_lookahead: int = Field(default=4, ge=1)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_block_fits_second(self) -> "EngineConfig":
        if self.block_size > self.sample_rate:
            raise ValueError("block_size must not exceed one second of audio")
        return self

    @property
    def vu_upper_bound(self) -> float:
        # gain <= 1, pan weight <= 2, master <= 1
        return self.vu_scale * 2.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        source = os.environ if environ is None else environ
        overrides: dict[str, str] = {}
        for env_name, field_name in _ENV_FIELDS.items():
            raw = source.get(env_name)
            if raw:
                overrides[field_name] = raw
        if overrides:
            _LOGGER.debug("Engine overrides from environment: %s", overrides)
        try:
            return cls.model_validate(overrides)
        except ValidationError as exc:
            raise InvalidConfigError(f"invalid engine settings: {exc}") from exc


DEFAULT_ENGINE_CONFIG = EngineConfig()
