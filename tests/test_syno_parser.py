import pytest

from syno.defaults import DEFAULT_REGISTRY, Registry, TransitionDefaults
from syno.errors import GrammarError, UnknownGeneratorError
from syno.nodes import MasterNode, SynthNode, Transition
from syno.parser import IMPLICIT_SLOT, Parser, parse, parse_script


def _synth(text: str) -> SynthNode:
    nodes = parse(text)
    assert len(nodes) == 1
    node = nodes[0]
    assert isinstance(node, SynthNode)
    return node


def test_bare_tag_uses_registry_defaults() -> None:
    node = _synth("s")
    defaults = DEFAULT_REGISTRY.generator("s")
    assert node.type == "sine"
    assert node.freq == defaults.freq
    assert node.volume == defaults.volume
    assert node.pan == defaults.pan
    assert node.envelope == defaults.envelope


def test_volume_ramp_with_duration() -> None:
    node = _synth("sv2>8'3")
    assert node.volume == Transition(start=2, end=8, duration=3)
    assert node.freq == 440.0


def test_three_point_frequency_ramp() -> None:
    node = _synth("s440>880>220'2")
    assert node.freq == Transition(start=440, middle=880, end=220, duration=2)


def test_ramp_without_duration_uses_registry_default() -> None:
    registry = Registry(transitions=TransitionDefaults(default_duration=1.5))
    node = Parser(registry).parse("qv1>9")[0]
    assert isinstance(node, SynthNode)
    assert node.volume == Transition(start=1, end=9, duration=1.5)


def test_bad_token_is_dropped_and_parsing_continues() -> None:
    result = parse_script("s q5v9 !!!bad!!! a2")
    assert [node.type for node in result.nodes] == ["sine", "square", "sawtooth"]
    assert len(result.errors) == 1
    assert isinstance(result.errors[0], GrammarError)
    assert not result.ok
    square = result.nodes[1]
    assert isinstance(square, SynthNode)
    assert square.freq == 5.0
    assert square.volume == 9.0


def test_unknown_tag_is_distinguished_from_grammar_errors() -> None:
    result = parse_script("x440 v5")
    assert isinstance(result.errors[0], UnknownGeneratorError)
    assert result.errors[0].tag == "x"
    assert isinstance(result.errors[1], GrammarError)
    assert result.nodes == []


@pytest.mark.parametrize(
    "token", ["s440x", "se12", "s\\1>2'3", "sv2>8'0", "bv5", "{s", "s440'2", "sv5'1"]
)
def test_malformed_tokens_raise_grammar_error(token: str) -> None:
    with pytest.raises(GrammarError):
        Parser().parse_token(token)


def test_all_fields_in_order() -> None:
    node = _synth("2t330v4p-0.5h3r1.5f6e1234")
    assert node.type == "triangle"
    assert node.start_time == 2.0
    assert node.freq == 330.0
    assert node.volume == 4.0
    assert node.pan == -0.5
    assert node.chop == 3.0
    assert node.reverb == 1.5
    assert node.filter == 6.0
    assert node.envelope == "1234"


def test_question_mark_requests_default_frequency() -> None:
    assert _synth("a?v3").freq == 440.0


def test_noise_variant_lives_in_frequency_field() -> None:
    assert _synth("n2").freq == 2.0
    assert _synth("n").freq == 0.5


@pytest.mark.parametrize("text", ["master v5", "masterv5"])
def test_master_directive(text: str) -> None:
    assert parse(text) == [MasterNode(volume=5.0)]


def test_master_only_joins_a_volume_argument() -> None:
    result = parse_script("master s440")
    assert [node.type for node in result.nodes if isinstance(node, SynthNode)] == ["sine"]
    assert len(result.errors) == 1
    assert isinstance(result.errors[0], GrammarError)
    assert result.errors[0].token == "master"


def test_duration_after_a_single_value_is_rejected() -> None:
    result = parse_script("s440'2 q")
    assert [node.type for node in result.nodes] == ["square"]
    assert isinstance(result.errors[0], GrammarError)


def test_comments_and_lines_are_ignored() -> None:
    nodes = parse("s # first voice\n\n# all comment\nq220")
    assert [node.type for node in nodes] == ["sine", "square"]


def test_buffer_reference_and_glissando() -> None:
    node = _synth("b3\\1>2'4")
    assert node.type == "buffer"
    assert node.buffer == "b3"
    assert node.freq is None
    assert node.glissando == Transition(start=1, end=2, duration=4)
    assert node.capture is None


def test_definition_is_captured_and_audible() -> None:
    node = _synth("b2=s220")
    assert node.type == "sine"
    assert node.capture == "b2"


def test_modulator_prefixes_nest_and_repeat() -> None:
    node = _synth("{b0}{s5v1}a110")
    assert node.type == "sawtooth"
    first, second = node.recursion
    assert first.is_buffer_ref and first.buffer == "b0"
    assert second.type == "sine" and second.volume == 1.0
    assert node.slot_dependencies == ("b0",)


def test_nested_modulator_dependencies_are_collected() -> None:
    node = _synth("{{b4}s5}{b1}s")
    assert node.slot_dependencies == ("b4", "b1")


class TestImplicitBuffer:
    def test_first_plain_generator_populates_b0(self) -> None:
        nodes = parse("master v5 {b0}s b0 b1=q q a")
        captures = [node.capture for node in nodes if isinstance(node, SynthNode)]
        assert captures == [None, None, "b1", IMPLICIT_SLOT, None]

    def test_modulated_generator_can_populate_b0(self) -> None:
        nodes = parse("{s3v2}a110 {b0}s")
        assert [node.capture for node in nodes if isinstance(node, SynthNode)] == [
            IMPLICIT_SLOT,
            None,
        ]

    def test_failed_tokens_do_not_take_the_slot(self) -> None:
        nodes = parse("??? t")
        assert isinstance(nodes[0], SynthNode)
        assert nodes[0].capture == IMPLICIT_SLOT

    def test_each_parse_call_starts_fresh(self) -> None:
        parser = Parser()
        assert parser.parse("s")[0] == parser.parse("s")[0]
