"""
Participant source references.

Template sources are parsed once, at format load time, into a tagged union:

  "SEED_3"      → Seed(3)                 concrete draw position
  "A_1"         → BlockPosition("A", 1)   whoever finishes 1st in block A
  "M7_winner"   → MatchWinner("M7")       winner of match M7
  "M7_loser"    → MatchLoser("M7")        loser of match M7

Downstream code works with these objects only; the raw strings are never re-parsed.
The canonical string (``ref.key``) doubles as the slot key for manual overrides.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

from app.services.errors import ValidationError

_SEED_RE = re.compile(r"^SEED_(\d+)$", re.IGNORECASE)
_MATCH_OUTCOME_RE = re.compile(r"^([A-Za-z0-9]+)_(winner|loser)$", re.IGNORECASE)
_BLOCK_POSITION_RE = re.compile(r"^([A-Za-z][A-Za-z0-9]*)_(\d+)$")


def ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


@dataclass(frozen=True)
class Seed:
    seed: int

    @property
    def key(self) -> str:
        return f"SEED_{self.seed}"

    def describe(self) -> str:
        return f"Seed {self.seed}"


@dataclass(frozen=True)
class BlockPosition:
    block: str
    position: int

    @property
    def key(self) -> str:
        return f"{self.block}_{self.position}"

    def describe(self) -> str:
        return f"Block {self.block} {ordinal(self.position)} place"


@dataclass(frozen=True)
class MatchWinner:
    match_code: str

    @property
    def key(self) -> str:
        return f"{self.match_code}_winner"

    def describe(self) -> str:
        return f"Winner of Match {self.match_code}"


@dataclass(frozen=True)
class MatchLoser:
    match_code: str

    @property
    def key(self) -> str:
        return f"{self.match_code}_loser"

    def describe(self) -> str:
        return f"Loser of Match {self.match_code}"


SlotRef = Union[Seed, BlockPosition, MatchWinner, MatchLoser]
MatchOutcomeRef = (MatchWinner, MatchLoser)


def parse_source(raw: str) -> SlotRef:
    """Parse a template source string. Raises ValidationError if it is not a known form."""
    if raw is None or not str(raw).strip():
        raise ValidationError("Participant source is empty", code="missing_source")
    text = str(raw).strip()

    m = _SEED_RE.match(text)
    if m:
        seed = int(m.group(1))
        if seed < 1:
            raise ValidationError(f"Seed must be >= 1 in source '{text}'", code="unparseable_placeholder")
        return Seed(seed)

    m = _MATCH_OUTCOME_RE.match(text)
    if m:
        code, role = m.group(1), m.group(2).lower()
        return MatchWinner(code) if role == "winner" else MatchLoser(code)

    m = _BLOCK_POSITION_RE.match(text)
    if m:
        position = int(m.group(2))
        if position < 1:
            raise ValidationError(f"Block position must be >= 1 in source '{text}'", code="unparseable_placeholder")
        return BlockPosition(m.group(1), position)

    raise ValidationError(
        f"Unparseable participant source '{text}' (expected SEED_<n>, <block>_<rank>, <match>_winner or <match>_loser)",
        code="unparseable_placeholder",
    )


def depends_on_match(ref: SlotRef) -> bool:
    return isinstance(ref, MatchOutcomeRef)
