"""Participant sources parse once into typed references; malformed sources are rejected."""
import pytest

from app.services.errors import ValidationError
from app.services.placeholders import (
    BlockPosition,
    MatchLoser,
    MatchWinner,
    Seed,
    depends_on_match,
    ordinal,
    parse_source,
)


class TestParseSource:
    def test_seed(self):
        assert parse_source("SEED_3") == Seed(3)
        assert parse_source("seed_12") == Seed(12)

    def test_block_position(self):
        assert parse_source("A_1") == BlockPosition("A", 1)
        assert parse_source("B2_4") == BlockPosition("B2", 4)

    def test_match_outcomes(self):
        assert parse_source("M7_winner") == MatchWinner("M7")
        assert parse_source("M7_loser") == MatchLoser("M7")
        assert parse_source("SF1_WINNER") == MatchWinner("SF1")

    def test_whitespace_is_ignored(self):
        assert parse_source("  A_2 ") == BlockPosition("A", 2)

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_missing_source(self, raw):
        with pytest.raises(ValidationError) as exc:
            parse_source(raw)
        assert exc.value.code == "missing_source"

    @pytest.mark.parametrize("raw", ["A", "winner_of_M5", "A_0", "SEED_0", "1_2", "M7-winner"])
    def test_unparseable(self, raw):
        with pytest.raises(ValidationError) as exc:
            parse_source(raw)
        assert exc.value.code == "unparseable_placeholder"


class TestKeysAndDescriptions:
    def test_key_is_canonical(self):
        assert parse_source("seed_3").key == "SEED_3"
        assert parse_source("M7_Winner").key == "M7_winner"
        assert BlockPosition("A", 1).key == "A_1"

    def test_descriptions(self):
        assert Seed(3).describe() == "Seed 3"
        assert BlockPosition("A", 1).describe() == "Block A 1st place"
        assert BlockPosition("C", 2).describe() == "Block C 2nd place"
        assert MatchWinner("M7").describe() == "Winner of Match M7"
        assert MatchLoser("M7").describe() == "Loser of Match M7"

    def test_ordinal(self):
        assert [ordinal(n) for n in (1, 2, 3, 4, 11, 12, 13, 21, 22, 101)] == [
            "1st",
            "2nd",
            "3rd",
            "4th",
            "11th",
            "12th",
            "13th",
            "21st",
            "22nd",
            "101st",
        ]

    def test_depends_on_match(self):
        assert depends_on_match(MatchWinner("M1"))
        assert depends_on_match(MatchLoser("M1"))
        assert not depends_on_match(BlockPosition("A", 1))
        assert not depends_on_match(Seed(1))
