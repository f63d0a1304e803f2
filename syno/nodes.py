from __future__ import annotations

from typing import Annotated, Literal, TypeAlias, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .defaults import GeneratorTag, GeneratorType


class Transition(BaseModel):
    """A linear ramp (optionally through a middle value) on one scalar control."""

    start: float
    end: float
    duration: float = Field(gt=0.0)
    middle: float | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")


Ramp: TypeAlias = Union[float, Transition]


class SynthNode(BaseModel):
    kind: Literal["synth"] = "synth"
    type: GeneratorType
    tag: GeneratorTag
    start_time: float = Field(default=0.0, ge=0.0)
    freq: Ramp | None = None
    volume: Ramp = 5.0
    pan: Ramp = 0.0
    filter: Ramp | None = None
    chop: float | None = None
    reverb: float | None = None
    envelope: str | None = Field(default=None, pattern=r"^\d{4}$")
    glissando: Transition | None = None
    recursion: tuple["SynthNode", ...] = ()
    buffer: str | None = None
    capture: str | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_buffer_fields(self) -> "SynthNode":
        if self.type == "buffer" and self.buffer is None:
            raise ValueError("buffer nodes need a slot")
        if self.type != "buffer" and self.buffer is not None:
            raise ValueError("only buffer nodes read a slot")
        if self.glissando is not None and self.type != "buffer":
            raise ValueError("glissando applies to buffer playback only")
        return self

    @property
    def is_buffer_ref(self) -> bool:
        return self.type == "buffer"

    @property
    def slot_dependencies(self) -> tuple[str, ...]:
        """Slots this node reads, its own first and then its modulators' in order."""
        slots: list[str] = []
        if self.buffer is not None:
            slots.append(self.buffer)
        for modulator in self.recursion:
            for slot in modulator.slot_dependencies:
                if slot not in slots:
                    slots.append(slot)
        return tuple(slots)

    def with_capture(self, slot: str) -> "SynthNode":
        return self.model_copy(update={"capture": slot})


class MasterNode(BaseModel):
    kind: Literal["master"] = "master"
    volume: float

    model_config = ConfigDict(frozen=True, extra="forbid")


AstNode: TypeAlias = Annotated[Union[SynthNode, MasterNode], Field(discriminator="kind")]
