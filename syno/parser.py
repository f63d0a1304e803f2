"""
Recursive-descent parser for the syno notation.

Grammar (one whitespace-delimited token at a time):

    token      := master | definition | generator
    master     := "master" "v" NUMBER            ("master v5" is also accepted)
    definition := "b" INT "=" generator
    generator  := [NUMBER] prefix* TAG fields
    prefix     := "{" generator "}"
    TAG        := "s" | "q" | "a" | "t" | "n" | "b" INT
    fields     := [freq] ["v" ramp] ["p" sramp] ["h" NUMBER] ["r" NUMBER]
                  ["f" ramp] ["\\" ramp] ["e" DIGIT{4}]
    freq       := "?" | ramp
    ramp       := NUMBER [">" NUMBER [">" NUMBER] ["'" NUMBER]]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from pydantic import ValidationError

from .defaults import DEFAULT_REGISTRY, TAG_TYPES, GeneratorTag, Registry
from .errors import GrammarError, SynoError, UnknownGeneratorError
from .nodes import AstNode, MasterNode, Ramp, SynthNode, Transition

_LOGGER = logging.getLogger("syno.parser")

_NUMBER = re.compile(r"(?:\d*\.)?\d+")
_SIGNED_NUMBER = re.compile(r"-?(?:\d*\.)?\d+")
_INT = re.compile(r"\d+")
_ENVELOPE = re.compile(r"\d{4}")
_TAG_LETTER = re.compile(r"[a-z]")
_DEFINITION = re.compile(r"b(\d+)=")
_MASTER_ARGUMENT = re.compile(r"v(?:\d*\.)?\d+")
_FIELD_LETTERS = frozenset("vphrfe")

IMPLICIT_SLOT = "b0"


@dataclass(frozen=True)
class ParseResult:
    nodes: list[AstNode] = field(default_factory=list)
    errors: list[SynoError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class _Cursor:
    """Character cursor over a single token."""

    def __init__(self, token: str) -> None:
        self.token = token
        self.pos = 0

    @property
    def done(self) -> bool:
        return self.pos >= len(self.token)

    def peek(self) -> str:
        return self.token[self.pos] if not self.done else ""

    def accept(self, literal: str) -> bool:
        if self.token.startswith(literal, self.pos):
            self.pos += len(literal)
            return True
        return False

    def expect(self, literal: str) -> None:
        if not self.accept(literal):
            raise self.error(f"expected {literal!r}")

    def match(self, pattern: re.Pattern[str]) -> str | None:
        found = pattern.match(self.token, self.pos)
        if found is None:
            return None
        self.pos = found.end()
        return found.group(0)

    def number(self, *, signed: bool = False) -> float:
        text = self.match(_SIGNED_NUMBER if signed else _NUMBER)
        if text is None:
            raise self.error("expected a number")
        return float(text)

    def optional_number(self) -> float | None:
        text = self.match(_NUMBER)
        return float(text) if text is not None else None

    def error(self, reason: str) -> GrammarError:
        return GrammarError(self.token, self.pos, reason)


class Parser:
    """Turns notation text into an ordered list of AST nodes."""

    def __init__(self, registry: Registry = DEFAULT_REGISTRY) -> None:
        self._registry = registry

    @property
    def registry(self) -> Registry:
        return self._registry

    def parse(self, text: str) -> list[AstNode]:
        return self.parse_script(text).nodes

    def parse_script(self, text: str) -> ParseResult:
        result = ParseResult()
        implicit_tagged = False
        for token in _tokenize(text):
            try:
                node = self.parse_token(token)
            except SynoError as exc:
                _LOGGER.warning("Dropping token %r: %s", token, exc)
                result.errors.append(exc)
                continue
            if not implicit_tagged and _takes_implicit_slot(node):
                assert isinstance(node, SynthNode)
                node = node.with_capture(IMPLICIT_SLOT)
                implicit_tagged = True
            _LOGGER.debug("Parsed %r -> %r", token, node)
            result.nodes.append(node)
        return result

    def parse_token(self, token: str) -> AstNode:
        cursor = _Cursor(token)
        if cursor.accept("master"):
            return self._master(cursor)
        node = self._definition(cursor) or self._generator(cursor)
        if not cursor.done:
            raise cursor.error("unexpected trailing input")
        return node

    def _master(self, cursor: _Cursor) -> MasterNode:
        cursor.expect("v")
        volume = cursor.number()
        if not cursor.done:
            raise cursor.error("unexpected trailing input")
        return MasterNode(volume=volume)

    def _definition(self, cursor: _Cursor) -> SynthNode | None:
        found = _DEFINITION.match(cursor.token, cursor.pos)
        if found is None:
            return None
        cursor.pos = found.end()
        node = self._generator(cursor)
        return node.with_capture(f"b{found.group(1)}")

    def _generator(self, cursor: _Cursor) -> SynthNode:
        start_time = cursor.optional_number() or 0.0

        modulators: list[SynthNode] = []
        while cursor.accept("{"):
            modulators.append(self._generator(cursor))
            cursor.expect("}")

        tag_pos = cursor.pos
        letter = cursor.match(_TAG_LETTER)
        if letter is None:
            raise cursor.error("expected a generator tag")
        if not self._registry.knows(letter):
            # A field letter in tag position is a missing tag, not an unknown one.
            if letter in _FIELD_LETTERS:
                raise GrammarError(cursor.token, tag_pos, "missing generator tag")
            raise UnknownGeneratorError(letter, cursor.token)
        tag: GeneratorTag = letter  # type: ignore[assignment]
        defaults = self._registry.generator(tag)

        slot: str | None = None
        if tag == "b":
            digits = cursor.match(_INT)
            if digits is None:
                raise cursor.error("expected a buffer slot number")
            slot = f"b{int(digits)}"

        freq: Ramp | None = defaults.freq
        if tag != "b":
            if cursor.accept("?"):
                freq = defaults.freq
            elif _NUMBER.match(cursor.token, cursor.pos):
                freq = self._ramp(cursor)

        volume: Ramp = self._ramp(cursor) if cursor.accept("v") else defaults.volume
        pan: Ramp = self._ramp(cursor, signed=True) if cursor.accept("p") else defaults.pan
        chop = cursor.number() if cursor.accept("h") else None
        reverb = cursor.number() if cursor.accept("r") else None
        cutoff = self._ramp(cursor) if cursor.accept("f") else None

        glissando: Transition | None = None
        if cursor.accept("\\"):
            if tag != "b":
                raise cursor.error("glissando applies to buffer playback only")
            ramp = self._ramp(cursor)
            glissando = ramp if isinstance(ramp, Transition) else None
            if glissando is None:
                raise cursor.error("glissando needs a start>end ramp")

        envelope = defaults.envelope
        if cursor.accept("e"):
            code = cursor.match(_ENVELOPE)
            if code is None:
                raise cursor.error("envelope needs exactly four digits")
            envelope = code

        try:
            return SynthNode(
                type=TAG_TYPES[tag],
                tag=tag,
                start_time=start_time,
                freq=freq,
                volume=volume,
                pan=pan,
                filter=cutoff,
                chop=chop,
                reverb=reverb,
                envelope=envelope,
                glissando=glissando,
                recursion=tuple(modulators),
                buffer=slot,
            )
        except ValidationError as exc:
            raise cursor.error(f"invalid values: {exc.errors()[0]['msg']}") from exc

    def _ramp(self, cursor: _Cursor, *, signed: bool = False) -> Ramp:
        values = [cursor.number(signed=signed)]
        while len(values) < 3 and cursor.accept(">"):
            values.append(cursor.number(signed=signed))
        if len(values) == 1:
            if cursor.accept("'"):
                raise cursor.error("a duration needs a start>end ramp")
            return values[0]
        duration = self._registry.transitions.default_duration
        if cursor.accept("'"):
            duration = cursor.number()
        try:
            if len(values) == 2:
                return Transition(start=values[0], end=values[1], duration=duration)
            return Transition(start=values[0], middle=values[1], end=values[2], duration=duration)
        except ValidationError as exc:
            raise cursor.error("ramp duration must be positive") from exc


def _tokenize(text: str) -> list[str]:
    tokens: list[str] = []
    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        tokens.extend(line.split())
    return _join_master_arguments(tokens)


def _join_master_arguments(tokens: list[str]) -> list[str]:
    joined: list[str] = []
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if (
            token == "master"
            and index + 1 < len(tokens)
            and _MASTER_ARGUMENT.fullmatch(tokens[index + 1])
        ):
            joined.append(token + tokens[index + 1])
            index += 2
            continue
        joined.append(token)
        index += 1
    return joined


def _takes_implicit_slot(node: AstNode) -> bool:
    if not isinstance(node, SynthNode):
        return False
    return node.capture is None and not node.slot_dependencies


def parse(text: str, registry: Registry = DEFAULT_REGISTRY) -> list[AstNode]:
    return Parser(registry).parse(text)


def parse_script(text: str, registry: Registry = DEFAULT_REGISTRY) -> ParseResult:
    return Parser(registry).parse_script(text)
