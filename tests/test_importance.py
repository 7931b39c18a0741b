"""
Tests for the heuristic importance analyzer.

Expected values are built up signal by signal from the 0.5 base so a failure
points at the signal that moved.
"""

import pytest

from memindex.core.importance import (
    DEFAULT_KEYWORDS,
    ImportanceAnalyzer,
    KeywordTables,
    analyze_importance,
)
from memindex.models import MemoryType


@pytest.fixture(scope="module")
def analyzer():
    return ImportanceAnalyzer()


class TestBounds:
    def test_empty_content_is_floor(self, analyzer):
        assert analyzer.analyze("") == 0.1
        assert analyze_importance("") == 0.1

    def test_whitespace_content_is_floor(self, analyzer):
        assert analyzer.analyze("   \n\t ") == 0.1

    def test_saturates_at_ceiling(self, analyzer):
        content = (
            "Important: remember this critical deadline.\n"
            "- Always rotate the api key before it expires"
        )
        assert analyzer.analyze(content, MemoryType.PROCEDURAL) == 1.0

    def test_plain_text_is_base(self, analyzer):
        assert analyzer.analyze("the sky") == pytest.approx(0.5)


class TestKeywords:
    def test_low_keyword_lowers_score(self, analyzer):
        assert analyzer.analyze("hello") == pytest.approx(0.48)

    def test_high_keyword(self, analyzer):
        assert analyzer.analyze("urgent") == pytest.approx(0.65)

    def test_medium_keyword(self, analyzer):
        assert analyzer.analyze("fyi") == pytest.approx(0.55)

    def test_phrase_counts_once(self, analyzer):
        assert analyzer.analyze("urgent urgent urgent") == pytest.approx(0.65)

    def test_word_boundaries(self, analyzer):
        # "ok" must not match inside "book" or "okay"
        assert analyzer.analyze("book") == pytest.approx(0.5)
        assert analyzer.analyze("okay") == pytest.approx(0.48)

    def test_case_insensitive(self, analyzer):
        assert analyzer.analyze("URGENT") == analyzer.analyze("urgent")

    def test_keyword_contribution_capped(self, analyzer):
        content = "important critical urgent essential priority deadline"
        # 6 high keywords = 0.9, capped at 0.3
        assert analyzer.analyze(content) == pytest.approx(0.8)

    def test_keyword_contribution_floored(self, analyzer):
        content = "hello hi thanks ok sure yes no maybe test example okay"
        # 11 low keywords = -0.22, floored at -0.2; 11 words = +0.05
        assert analyzer.analyze(content) == pytest.approx(0.35)


class TestStructure:
    def test_question(self, analyzer):
        assert analyzer.analyze("where is it?") == pytest.approx(0.55)

    def test_exclamation(self, analyzer):
        assert analyzer.analyze("wow!") == pytest.approx(0.53)

    def test_medium_length(self, analyzer):
        content = " ".join(["word"] * 20)
        assert analyzer.analyze(content) == pytest.approx(0.55)

    def test_long_content(self, analyzer):
        content = " ".join(["word"] * 150)
        assert analyzer.analyze(content) == pytest.approx(0.6)

    def test_bullet_list(self, analyzer):
        assert analyzer.analyze("groceries\n- milk\n- eggs") == pytest.approx(0.6)

    def test_numbered_list(self, analyzer):
        # numbers 1 and 2 also count as specificity: 2 * 0.03
        assert analyzer.analyze("steps\n1. open\n2. close") == pytest.approx(0.66)


class TestTypeBonus:
    @pytest.mark.parametrize("memory_type,expected", [
        (MemoryType.EPISODIC, 0.5),
        (MemoryType.SEMANTIC, 0.55),
        (MemoryType.FACT, 0.6),
        (MemoryType.PROCEDURAL, 0.65),
    ])
    def test_bonus_per_type(self, analyzer, memory_type, expected):
        assert analyzer.analyze("the sky", memory_type) == pytest.approx(expected)

    def test_injected_type_bonuses(self):
        analyzer = ImportanceAnalyzer(type_bonuses={MemoryType.EPISODIC: 0.2})
        assert analyzer.analyze("the sky", MemoryType.EPISODIC) == pytest.approx(0.7)
        assert analyzer.analyze("the sky", MemoryType.FACT) == pytest.approx(0.5)


class TestEntitiesAndSpecificity:
    def test_capitalized_names(self, analyzer):
        # 3 capitalised words = 0.06
        assert analyzer.analyze("Alice met Bob and Carol") == pytest.approx(0.56)

    def test_two_capitalized_words_ignored(self, analyzer):
        assert analyzer.analyze("Alice met Bob") == pytest.approx(0.5)

    def test_email(self, analyzer):
        assert analyzer.analyze("ping dev@corp.io") == pytest.approx(0.6)

    def test_url(self, analyzer):
        assert analyzer.analyze("see https://docs.python.org") == pytest.approx(0.55)

    def test_numbers_date_time_currency(self, analyzer):
        content = "call 555 at 10:30 on 2024-05-01 for $20"
        # numbers capped 0.1, date 0.1, time 0.05, currency 0.1
        assert analyzer.analyze(content) == pytest.approx(0.85)


class TestInjectionAndBatch:
    def test_custom_keyword_tables(self):
        tables = KeywordTables(high=("banana",), medium=(), low=())
        analyzer = ImportanceAnalyzer(keywords=tables)
        assert analyzer.analyze("banana") == pytest.approx(0.65)
        assert analyzer.analyze("urgent") == pytest.approx(0.5)

    def test_default_tables_are_data(self):
        assert "never forget" in DEFAULT_KEYWORDS.high
        assert DEFAULT_KEYWORDS.ceiling == 0.3
        assert DEFAULT_KEYWORDS.floor == -0.2

    def test_batch_preserves_order(self, analyzer):
        contents = ["urgent", "", "hello", "the sky"]
        scores = analyzer.analyze_batch(contents)
        assert scores == [analyzer.analyze(c) for c in contents]
        assert scores[1] == 0.1

    def test_deterministic(self, analyzer):
        content = "Remember: the meeting with Dana is on 3/14/2025 at 09:00!"
        assert analyzer.analyze(content) == analyzer.analyze(content)
        assert 0.1 <= analyzer.analyze(content) <= 1.0
