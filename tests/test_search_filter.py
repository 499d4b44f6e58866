"""Tests for multi-term tag search."""

from datetime import UTC, datetime

from living_tags.services.tagging.models import TaggedView, TextView
from living_tags.services.tagging.search import filter_texts, matches, parse_terms

NOW = datetime(2024, 5, 1, tzinfo=UTC)


def text_with(*names: str, text_id: str = "t1") -> TextView:
    tags = tuple(TaggedView(f"id-{n}", n, 1.0, "manual") for n in names)
    return TextView(text_id, "content", NOW, tags)


class TestParseTerms:
    def test_splits_on_whitespace_and_commas(self):
        assert parse_terms("Вовочка,  школа , семья") == ["вовочка", "школа", "семья"]

    def test_empty_and_none(self):
        assert parse_terms("") == []
        assert parse_terms(None) == []
        assert parse_terms(" , ,  ") == []


class TestMatches:
    def test_no_terms_matches_everything(self):
        assert matches(text_with(), "")
        assert matches(text_with("a"), "  ")

    def test_all_terms_required(self):
        text = text_with("Вовочка", "Школа")
        assert matches(text, "вовочка школа")
        assert not matches(text, "вовочка семья")

    def test_term_is_substring_of_any_tag(self):
        text = text_with("Штирлиц", "Армия")
        assert matches(text, "штир")
        assert matches(text, "арм, лиц")

    def test_case_insensitive(self):
        assert matches(text_with("Программисты"), "ПРОГРАММ")

    def test_text_without_tags_fails_non_empty_query(self):
        assert not matches(text_with(), "a")

    def test_order_independent_and_idempotent(self):
        text = text_with("Врачи", "Семья")
        assert matches(text, "семья врачи") == matches(text, "врачи семья")
        assert matches(text, "врачи врачи") == matches(text, "врачи")


def test_filter_texts_keeps_order():
    texts = [
        text_with("a", "b", text_id="1"),
        text_with("b", text_id="2"),
        text_with("a", text_id="3"),
    ]
    assert [t.id for t in filter_texts(texts, "a")] == ["1", "3"]
    assert [t.id for t in filter_texts(texts, None)] == ["1", "2", "3"]
