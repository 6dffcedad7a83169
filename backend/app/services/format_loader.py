"""
Format loading and tournament instantiation.

create_format validates every template source once, at load time:
  - match codes unique within the format
  - every source parses into a typed reference
  - block positions name a block of the format, match outcomes an existing match
  - no dependency cycles
Downstream code only ever sees the parsed references.

instantiate_tournament materializes a format for one tournament: blocks (phase taken from
their templates), matches, and explicit members for blocks fed by seeds. It then runs a
full recalculation so seeded participants are filled in immediately.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlmodel import Session, select

from app.models.block import Block, BlockMember
from app.models.format import Format
from app.models.match import Match
from app.models.match_template import MatchTemplate
from app.models.team import Team
from app.models.tournament import Tournament
from app.services.dependency_graph import DependencyGraph, MatchSources
from app.services.errors import NotFoundError, ValidationError
from app.services.match_store import SqlMatchResultStore
from app.services.placeholders import Seed, parse_source
from app.services.progression_engine import CascadeReport, ProgressionEngine
from app.services.tiebreak_rules import parse_rules, rules_to_json, validate_rules

logger = logging.getLogger(__name__)

PHASES = ("preliminary", "final")


def validate_templates(templates: Sequence[Dict[str, Any]]) -> List[MatchSources]:
    """Parse and cross-check template definitions. Raises ValidationError listing every problem."""
    errors: List[str] = []
    entries: List[MatchSources] = []
    seen = set()

    for index, raw in enumerate(templates):
        code = str(raw.get("match_code") or "").strip()
        block_name = str(raw.get("block_name") or "").strip()
        label = code or f"template #{index + 1}"
        if not code:
            errors.append(f"{label}: match_code is required")
            continue
        if code in seen:
            errors.append(f"{label}: duplicate match_code")
            continue
        seen.add(code)
        if not block_name:
            errors.append(f"{label}: block_name is required")
        if raw.get("phase", "preliminary") not in PHASES:
            errors.append(f"{label}: phase must be one of {', '.join(PHASES)}")

        refs = {}
        for side in ("a", "b"):
            try:
                refs[side] = parse_source(raw.get(f"team_{side}_source"))
            except ValidationError as exc:
                errors.append(f"{label} side {side.upper()}: {exc.message}")
                refs[side] = None

        start, end = raw.get("loser_position_start"), raw.get("loser_position_end")
        if start is not None and end is not None and end < start:
            errors.append(f"{label}: loser_position_end must not be below loser_position_start")
        for name in ("winner_position", "loser_position_start", "loser_position_end"):
            if raw.get(name) is not None and raw[name] < 1:
                errors.append(f"{label}: {name} must be >= 1")

        entries.append(
            MatchSources(
                match_code=code,
                block_name=block_name,
                team_a=refs["a"],
                team_b=refs["b"],
                execution_priority=int(raw.get("execution_priority") or 0),
            )
        )

    if not errors:
        errors.extend(DependencyGraph(entries).problems())
    if errors:
        raise ValidationError("; ".join(errors), code="invalid_format", context={"errors": errors})
    return entries


def create_format(
    session: Session,
    name: str,
    templates: Sequence[Dict[str, Any]],
    description: Optional[str] = None,
) -> Format:
    if not templates:
        raise ValidationError("A format needs at least one match template", code="invalid_format")
    validate_templates(templates)

    fmt = Format(name=name, description=description)
    session.add(fmt)
    session.flush()
    for raw in templates:
        session.add(
            MatchTemplate(
                format_id=fmt.id,
                match_code=raw["match_code"].strip(),
                block_name=raw["block_name"].strip(),
                phase=raw.get("phase", "preliminary"),
                round_label=raw.get("round_label"),
                team_a_source=parse_source(raw["team_a_source"]).key,
                team_b_source=parse_source(raw["team_b_source"]).key,
                team_a_display_name=raw.get("team_a_display_name"),
                team_b_display_name=raw.get("team_b_display_name"),
                winner_position=raw.get("winner_position"),
                loser_position_start=raw.get("loser_position_start"),
                loser_position_end=raw.get("loser_position_end"),
                execution_priority=int(raw.get("execution_priority") or 0),
                is_bye=bool(raw.get("is_bye", False)),
            )
        )
    session.commit()
    session.refresh(fmt)
    logger.info("Format %s (%s) created with %s templates", fmt.name, fmt.id, len(templates))
    return fmt


def instantiate_tournament(
    session: Session,
    tournament_id: int,
    block_rules: Optional[Dict[str, List[Dict[str, Any]]]] = None,
) -> CascadeReport:
    """Create blocks, members and matches from the tournament's format, then resolve seeds."""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFoundError(f"Tournament {tournament_id} not found")
    if tournament.format_id is None:
        raise ValidationError(f"Tournament {tournament_id} has no format", code="missing_format")
    existing = session.exec(select(Match.id).where(Match.tournament_id == tournament_id)).first()
    if existing is not None:
        raise ValidationError(f"Tournament {tournament_id} already has matches", code="already_instantiated")

    templates = session.exec(
        select(MatchTemplate)
        .where(MatchTemplate.format_id == tournament.format_id)
        .order_by(MatchTemplate.execution_priority, MatchTemplate.match_code)
    ).all()
    if not templates:
        raise ValidationError(f"Format {tournament.format_id} has no templates", code="invalid_format")

    block_rules = block_rules or {}
    for block_name, raw_rules in block_rules.items():
        validate_rules(parse_rules(raw_rules), tournament.sport_code)

    seeds = {
        t.seed: t.id
        for t in session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()
        if t.seed is not None
    }

    blocks: Dict[str, Block] = {}
    for template in templates:
        if template.block_name in blocks:
            continue
        raw_rules = block_rules.get(template.block_name)
        block = Block(
            tournament_id=tournament_id,
            name=template.block_name,
            phase=template.phase,
            tie_breaking_rules=rules_to_json(parse_rules(raw_rules)) if raw_rules else None,
        )
        session.add(block)
        blocks[template.block_name] = block
    session.flush()

    members: Dict[int, set] = {}
    for template in templates:
        block = blocks[template.block_name]
        session.add(
            Match(
                tournament_id=tournament_id,
                block_id=block.id,
                template_id=template.id,
                match_code=template.match_code,
            )
        )
        if template.phase != "preliminary":
            continue
        for raw in (template.team_a_source, template.team_b_source):
            ref = parse_source(raw)
            if isinstance(ref, Seed) and ref.seed in seeds:
                members.setdefault(block.id, set()).add(seeds[ref.seed])

    for block_id, team_ids in sorted(members.items()):
        for team_id in sorted(team_ids):
            session.add(BlockMember(block_id=block_id, team_id=team_id))

    tournament.status = "ongoing"
    session.add(tournament)
    session.commit()
    logger.info(
        "Tournament %s instantiated: %s blocks, %s matches", tournament_id, len(blocks), len(templates)
    )

    engine = ProgressionEngine(SqlMatchResultStore(session))
    return engine.recalculate_tournament(tournament_id)
