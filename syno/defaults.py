"""Read-only defaults consulted by the parser for every omitted field."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

GeneratorTag = Literal["s", "q", "a", "t", "n", "b"]
GeneratorType = Literal["sine", "square", "sawtooth", "triangle", "noise", "buffer"]

# Author-facing tag -> resolved generator type
TAG_TYPES: Mapping[GeneratorTag, GeneratorType] = MappingProxyType(
    {
        "s": "sine",
        "q": "square",
        "a": "sawtooth",
        "t": "triangle",
        "n": "noise",
        "b": "buffer",
    }
)
TYPE_TAGS: Mapping[GeneratorType, GeneratorTag] = MappingProxyType(
    {generator_type: tag for tag, generator_type in TAG_TYPES.items()}
)

LEVEL_MAX = 9.0


class GeneratorDefaults(BaseModel):
    freq: float | None = None
    volume: float = 5.0
    pan: float = 0.0
    envelope: str = "0155"

    model_config = ConfigDict(frozen=True, extra="forbid")


class MasterDefaults(BaseModel):
    volume: float = 8.0
    # Reserved for a future master EQ; not applied by the orchestrator.
    eq: tuple[float, ...] = (5.0,) * 10

    model_config = ConfigDict(frozen=True, extra="forbid")


class TransitionDefaults(BaseModel):
    default_duration: float = Field(default=4.0, gt=0.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


_PERIODIC = GeneratorDefaults(freq=440.0)

_GENERATORS: Mapping[GeneratorTag, GeneratorDefaults] = MappingProxyType(
    {
        "s": _PERIODIC,
        "q": _PERIODIC,
        "a": _PERIODIC,
        "t": _PERIODIC,
        "n": GeneratorDefaults(freq=0.5),
        "b": GeneratorDefaults(),
    }
)


class Registry(BaseModel):
    generators: Mapping[GeneratorTag, GeneratorDefaults] = Field(
        default_factory=lambda: _GENERATORS
    )
    master: MasterDefaults = MasterDefaults()
    transitions: TransitionDefaults = TransitionDefaults()

    model_config = ConfigDict(frozen=True, extra="forbid")

    def generator(self, tag: GeneratorTag) -> GeneratorDefaults:
        return self.generators[tag]

    def knows(self, tag: str) -> bool:
        return tag in self.generators


DEFAULT_REGISTRY = Registry()
