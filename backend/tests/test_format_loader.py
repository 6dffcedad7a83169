"""Format validation at load time and tournament instantiation."""
import pytest
from sqlmodel import Session, select

from app.models.block import Block, BlockMember
from app.models.match import Match
from app.models.match_template import MatchTemplate
from app.models.team import Team
from app.models.tournament import Tournament
from app.services.errors import NotFoundError, ValidationError
from app.services.format_loader import create_format, instantiate_tournament, validate_templates


def _t(code, block, a, b, **kwargs):
    return dict(match_code=code, block_name=block, team_a_source=a, team_b_source=b, **kwargs)


LEAGUE = [
    _t("A1", "A", "SEED_1", "SEED_2"),
    _t("A2", "A", "SEED_1", "SEED_3"),
    _t("A3", "A", "SEED_2", "SEED_3"),
    _t("F1", "F", "A_1", "A_2", phase="final", winner_position=1, loser_position_start=2),
]


def _errors(templates):
    with pytest.raises(ValidationError) as exc:
        validate_templates(templates)
    assert exc.value.code == "invalid_format"
    return exc.value.context["errors"]


class TestValidateTemplates:
    def test_valid_format(self):
        entries = validate_templates(LEAGUE)
        assert [e.match_code for e in entries] == ["A1", "A2", "A3", "F1"]
        assert entries[3].team_a.key == "A_1"

    def test_duplicate_code(self):
        errors = _errors(LEAGUE + [_t("A1", "A", "SEED_1", "SEED_4")])
        assert any("duplicate" in e for e in errors)

    def test_unparseable_source(self):
        errors = _errors([_t("M1", "A", "SEED_1", "first of group A")])
        assert any("Unparseable" in e for e in errors)

    def test_dangling_references(self):
        errors = _errors([_t("M1", "A", "SEED_1", "SEED_2"), _t("M2", "B", "Z_1", "M9_winner")])
        assert len(errors) >= 2

    def test_cycle_rejected(self):
        templates = [_t("M1", "A", "SEED_1", "M2_winner"), _t("M2", "B", "SEED_2", "M1_loser")]
        errors = _errors(templates)
        assert any("cycle" in e.lower() for e in errors)

    def test_block_position_into_own_block_is_a_cycle(self):
        errors = _errors([_t("A1", "A", "SEED_1", "SEED_2"), _t("A2", "A", "A_1", "SEED_3")])
        assert any("cycle" in e.lower() for e in errors)

    def test_bad_phase_and_placement_bounds(self):
        errors = _errors(
            [_t("M1", "A", "SEED_1", "SEED_2", phase="group", loser_position_start=3, loser_position_end=2)]
        )
        assert any("phase" in e for e in errors)
        assert any("loser_position_end" in e for e in errors)


class TestCreateFormat:
    def test_stores_canonical_sources(self, session: Session):
        fmt = create_format(session, "Mini league", [_t("M1", "A", "seed_1", "SEED_2"), _t("M2", "A", "SEED_1", "SEED_3")])
        sources = session.exec(select(MatchTemplate.team_a_source).where(MatchTemplate.format_id == fmt.id)).all()
        assert sources == ["SEED_1", "SEED_1"]

    def test_empty_format_rejected(self, session: Session):
        with pytest.raises(ValidationError):
            create_format(session, "Empty", [])


class TestInstantiate:
    def _tournament(self, session: Session, with_format=True) -> Tournament:
        fmt_id = create_format(session, "League + final", LEAGUE).id if with_format else None
        tournament = Tournament(name="Cup", format_id=fmt_id)
        session.add(tournament)
        session.commit()
        session.refresh(tournament)
        for seed in (1, 2, 3):
            session.add(Team(tournament_id=tournament.id, name=f"Team {seed}", seed=seed))
        session.commit()
        return tournament

    def test_creates_blocks_matches_and_members(self, session: Session):
        tournament = self._tournament(session)
        report = instantiate_tournament(session, tournament.id)

        blocks = {b.name: b for b in session.exec(select(Block).where(Block.tournament_id == tournament.id)).all()}
        assert set(blocks) == {"A", "F"}
        assert blocks["F"].phase == "final"
        assert len(session.exec(select(Match).where(Match.tournament_id == tournament.id)).all()) == 4
        members = session.exec(select(BlockMember).where(BlockMember.block_id == blocks["A"].id)).all()
        assert len(members) == 3
        assert session.exec(select(BlockMember).where(BlockMember.block_id == blocks["F"].id)).all() == []

        a1 = session.exec(select(Match).where(Match.match_code == "A1")).one()
        assert a1.team_a_id is not None and a1.team_b_id is not None
        assert a1.id in report.changed_matches
        session.refresh(tournament)
        assert tournament.status == "ongoing"

    def test_block_rules_are_validated_and_stored(self, session: Session):
        tournament = self._tournament(session)
        with pytest.raises(ValidationError):
            instantiate_tournament(session, tournament.id, block_rules={"A": [{"type": "win_rate", "order": 1}]})

        rules = [{"type": "points", "order": 1}, {"type": "head_to_head", "order": 2}]
        instantiate_tournament(session, tournament.id, block_rules={"A": rules})
        block = session.exec(select(Block).where(Block.name == "A")).one()
        assert block.tie_breaking_rules == rules

    def test_missing_format_and_reinstantiation(self, session: Session):
        bare = self._tournament(session, with_format=False)
        with pytest.raises(ValidationError) as exc:
            instantiate_tournament(session, bare.id)
        assert exc.value.code == "missing_format"

        with pytest.raises(NotFoundError):
            instantiate_tournament(session, 999)
