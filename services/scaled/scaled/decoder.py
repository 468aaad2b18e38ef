"""
Weight line decoding.

A scale sends one reading per line in one of a few vendor formats. Lines
are cleaned, then matched against GRAMMARS in order; the first grammar
that matches decides the weight and stability. Order matters: the looser
formats further down would otherwise claim lines meant for the stricter
ones above them.
"""
from __future__ import annotations
import logging
import re
from typing import List, NamedTuple, Optional

from .errors import DecodeRejected
from .models import MAX_WEIGHT_KG, MIN_WEIGHT_KG, Reading

logger = logging.getLogger(__name__)

_CONTROL_AND_HIGH = re.compile(r"[\x00-\x1f\x7f-\xff]")
_NOT_ALLOWED = re.compile(r"[^A-Za-z0-9+\-.,\s]")
MIN_LINE_CHARS = 2


class Grammar(NamedTuple):
    name: str
    pattern: re.Pattern
    stable_tag: str  # value of group 1 that means "stable"
    weight_group: int
    divisor: int

    def match(self, line: str) -> Optional[tuple]:
        m = self.pattern.match(line)
        if not m:
            return None
        stable = m.group(1).upper() == self.stable_tag
        try:
            weight = int(m.group(self.weight_group)) / self.divisor
        except ValueError as e:
            # int() refuses digit runs past sys.get_int_max_str_digits()
            raise DecodeRejected(line, f"unparseable weight ({self.name})") from e
        return weight, stable


GRAMMARS: List[Grammar] = [
    # ST,GS,+0000230kg -> 230 kg, stable
    Grammar(
        "comma_triple",
        re.compile(r"^(ST|US),(GS|US),([+-]?[0-9]+)kg$", re.IGNORECASE),
        stable_tag="ST",
        weight_group=3,
        divisor=1,
    ),
    # SGS+0000900 / USGS+0000900 -> 90.0 kg, one implied decimal
    Grammar(
        "tagged_legacy",
        re.compile(r"^(US|S)GS([+-]?[0-9]{7})$", re.IGNORECASE),
        stable_tag="S",
        weight_group=2,
        divisor=10,
    ),
    # ST+0000070 / US+0000070 -> 7.0 kg, one implied decimal
    Grammar(
        "bare_tag_legacy",
        re.compile(r"^(ST|US)([+-]?[0-9]+)$", re.IGNORECASE),
        stable_tag="ST",
        weight_group=2,
        divisor=10,
    ),
]


def clean_line(line: str) -> str:
    """Drop control/high-byte garbage and anything outside [A-Za-z0-9+-.,\\s]."""
    cleaned = _CONTROL_AND_HIGH.sub("", line)
    cleaned = _NOT_ALLOWED.sub("", cleaned)
    return cleaned.strip()


def decode(line: str) -> Reading:
    """Decode one framed line into a Reading.

    Raises:
        DecodeRejected: the line is too short, matches no grammar, or the
            weight falls outside [0, 60000] kg. Negative weights are
            rejected, never clamped.
    """
    cleaned = clean_line(line)
    if len(cleaned) < MIN_LINE_CHARS:
        raise DecodeRejected(cleaned, "too short")

    for grammar in GRAMMARS:
        result = grammar.match(cleaned)
        if result is None:
            continue
        weight, stable = result
        if not MIN_WEIGHT_KG <= weight <= MAX_WEIGHT_KG:
            raise DecodeRejected(cleaned, f"out of range ({grammar.name})", weight=weight)
        return Reading(weight_kg=weight, stable=stable)

    raise DecodeRejected(cleaned, "no grammar matched")


def try_decode(line: str) -> Optional[Reading]:
    """Like decode() but returns None for rejected lines, logging the reason."""
    try:
        return decode(line)
    except DecodeRejected as e:
        logger.debug(f"Dropped line: {e}")
        return None
