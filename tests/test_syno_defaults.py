import pytest
from pydantic import ValidationError

from syno.defaults import DEFAULT_REGISTRY, TAG_TYPES, TYPE_TAGS, GeneratorDefaults, Registry
from syno.nodes import SynthNode, Transition


@pytest.mark.parametrize("tag", ["s", "q", "a", "t"])
def test_periodic_defaults(tag: str) -> None:
    defaults = DEFAULT_REGISTRY.generator(tag)  # type: ignore[arg-type]
    assert defaults == GeneratorDefaults(freq=440.0, volume=5.0, pan=0.0, envelope="0155")


def test_noise_buffer_and_master_defaults() -> None:
    assert DEFAULT_REGISTRY.generator("n").freq == 0.5
    assert DEFAULT_REGISTRY.generator("b").freq is None
    assert DEFAULT_REGISTRY.master.volume == 8.0
    assert len(DEFAULT_REGISTRY.master.eq) == 10
    assert DEFAULT_REGISTRY.transitions.default_duration == 4.0


def test_registry_is_read_only() -> None:
    with pytest.raises(ValidationError):
        DEFAULT_REGISTRY.master = DEFAULT_REGISTRY.master  # type: ignore[misc]
    with pytest.raises(TypeError):
        DEFAULT_REGISTRY.generators["z"] = GeneratorDefaults()  # type: ignore[index]


def test_registries_share_the_generator_table() -> None:
    fresh = Registry()
    assert fresh == DEFAULT_REGISTRY
    assert fresh.generator("s") is DEFAULT_REGISTRY.generator("s")
    custom = Registry(generators={"s": GeneratorDefaults(freq=220.0)})
    assert custom.generator("s").freq == 220.0
    assert not custom.knows("q")


def test_tag_type_tables_are_inverse() -> None:
    for tag, generator_type in TAG_TYPES.items():
        assert TYPE_TAGS[generator_type] == tag
    assert DEFAULT_REGISTRY.knows("n")
    assert not DEFAULT_REGISTRY.knows("x")


class TestSynthNode:
    def test_buffer_type_requires_slot(self) -> None:
        with pytest.raises(ValidationError):
            SynthNode(type="buffer", tag="b")

    def test_only_buffers_read_slots(self) -> None:
        with pytest.raises(ValidationError):
            SynthNode(type="sine", tag="s", buffer="b0")

    def test_glissando_is_buffer_only(self) -> None:
        with pytest.raises(ValidationError):
            SynthNode(type="sine", tag="s", glissando=Transition(start=1, end=2, duration=1))

    def test_transition_duration_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Transition(start=0, end=1, duration=0)

    def test_with_capture_returns_copy(self) -> None:
        node = SynthNode(type="sine", tag="s")
        captured = node.with_capture("b4")
        assert captured.capture == "b4"
        assert node.capture is None
