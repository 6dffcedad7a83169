"""
Static dependency graph between matches and blocks.

Built from the effective participant sources of a tournament (template source, or a
per-tournament source override). It bounds every cascade: a changed block only re-resolves
the matches that reference one of its positions, a changed match only re-resolves the
matches that reference its winner or loser.

A match depends on:
  - match N, when one of its sources is N_winner / N_loser
  - every match of block B, when one of its sources is a B_<rank> position
Cycles in that relation are rejected when a format is loaded or a source overridden.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from app.services.errors import ValidationError
from app.services.placeholders import BlockPosition, MatchLoser, MatchWinner, SlotRef


@dataclass(frozen=True)
class MatchSources:
    match_code: str
    block_name: str
    team_a: Optional[SlotRef] = None
    team_b: Optional[SlotRef] = None
    execution_priority: int = 0

    def refs(self) -> List[Tuple[str, SlotRef]]:
        return [(side, ref) for side, ref in (("a", self.team_a), ("b", self.team_b)) if ref is not None]


class DependencyGraph:
    def __init__(self, sources: Iterable[MatchSources]):
        self.sources: Dict[str, MatchSources] = {s.match_code: s for s in sources}
        self.codes_by_block: Dict[str, List[str]] = defaultdict(list)
        self.block_dependents: Dict[str, Set[str]] = defaultdict(set)
        self.match_dependents: Dict[str, Set[str]] = defaultdict(set)
        self.slot_dependents: Dict[str, Set[str]] = defaultdict(set)

        for code in sorted(self.sources):
            entry = self.sources[code]
            self.codes_by_block[entry.block_name].append(code)
            for _, ref in entry.refs():
                self.slot_dependents[ref.key].add(code)
                if isinstance(ref, BlockPosition):
                    self.block_dependents[ref.block].add(code)
                elif isinstance(ref, (MatchWinner, MatchLoser)):
                    self.match_dependents[ref.match_code].add(code)

    def dependents_of_block(self, block_name: str) -> List[str]:
        return sorted(self.block_dependents.get(block_name, ()))

    def dependents_of_match(self, match_code: str) -> List[str]:
        return sorted(self.match_dependents.get(match_code, ()))

    def dependents_of_slot(self, slot_key: str) -> List[str]:
        return sorted(self.slot_dependents.get(slot_key, ()))

    def all_refs(self) -> List[SlotRef]:
        refs = {ref for entry in self.sources.values() for _, ref in entry.refs()}
        return sorted(refs, key=lambda r: r.key)

    def upstream(self, match_code: str) -> List[str]:
        """Match codes ``match_code`` directly depends on."""
        entry = self.sources.get(match_code)
        if entry is None:
            return []
        codes: Set[str] = set()
        for _, ref in entry.refs():
            if isinstance(ref, BlockPosition):
                codes.update(self.codes_by_block.get(ref.block, ()))
            elif isinstance(ref, (MatchWinner, MatchLoser)):
                codes.add(ref.match_code)
        return sorted(codes)

    def problems(self) -> List[str]:
        """Every dangling reference and cycle, as readable messages."""
        errors: List[str] = []
        for code in sorted(self.sources):
            for side, ref in self.sources[code].refs():
                if isinstance(ref, BlockPosition) and ref.block not in self.codes_by_block:
                    errors.append(f"{code} side {side.upper()}: block '{ref.block}' has no matches")
                elif isinstance(ref, (MatchWinner, MatchLoser)):
                    if ref.match_code == code:
                        errors.append(f"{code} side {side.upper()}: references itself")
                    elif ref.match_code not in self.sources:
                        errors.append(f"{code} side {side.upper()}: match '{ref.match_code}' does not exist")
        if not errors:
            cycle = self._find_cycle()
            if cycle:
                errors.append("Dependency cycle: " + " -> ".join(cycle))
        return errors

    def validate(self) -> None:
        errors = self.problems()
        if errors:
            raise ValidationError("; ".join(errors), code="invalid_format", context={"errors": errors})

    def _find_cycle(self) -> Optional[List[str]]:
        WHITE, GREY, BLACK = 0, 1, 2
        colour = {code: WHITE for code in self.sources}
        stack: List[str] = []

        def visit(code: str) -> Optional[List[str]]:
            colour[code] = GREY
            stack.append(code)
            for dep in self.upstream(code):
                if dep not in colour:
                    continue
                if colour[dep] == GREY:
                    return stack[stack.index(dep):] + [dep]
                if colour[dep] == WHITE:
                    found = visit(dep)
                    if found:
                        return found
            stack.pop()
            colour[code] = BLACK
            return None

        for code in sorted(self.sources):
            if colour[code] == WHITE:
                found = visit(code)
                if found:
                    return found
        return None

    def topological_codes(self) -> List[str]:
        """Match codes with every dependency first; ties by (execution_priority, code)."""
        done: Set[str] = set()
        order: List[str] = []
        pending = sorted(self.sources, key=lambda c: (self.sources[c].execution_priority, c))
        while pending:
            progressed = False
            for code in list(pending):
                if all(dep in done or dep not in self.sources for dep in self.upstream(code)):
                    order.append(code)
                    done.add(code)
                    pending.remove(code)
                    progressed = True
                    break
            if not progressed:
                # Cyclic remainder; keep deterministic order
                order.extend(pending)
                break
        return order

    def block_order(self) -> List[str]:
        """Blocks ordered by the position of their last match in topological order."""
        position = {code: i for i, code in enumerate(self.topological_codes())}
        return sorted(
            self.codes_by_block,
            key=lambda name: (max(position[c] for c in self.codes_by_block[name]), name),
        )
