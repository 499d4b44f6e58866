"""Tests for reconciliation of classifier output with existing assignments."""

import pytest

from living_tags.core.exceptions import ManualAssignmentConflict
from living_tags.services.tagging.models import SOURCE_AI, SOURCE_MANUAL, Assignment
from living_tags.services.tagging.reconciliation import (
    convert_to_manual,
    guard_ai_write,
    partition,
    reconcile,
)
from tests.conftest import candidate


def ai(text_id, tag_id, confidence):
    return Assignment(text_id, tag_id, confidence, SOURCE_AI)


def manual(text_id, tag_id):
    return Assignment.manual(text_id, tag_id)


class TestAssignmentRecord:
    def test_manual_requires_full_confidence(self):
        with pytest.raises(ValueError):
            Assignment("t1", "g1", 0.9, SOURCE_MANUAL)

    def test_confidence_bounds(self):
        with pytest.raises(ValueError):
            Assignment("t1", "g1", 1.2, SOURCE_AI)
        with pytest.raises(ValueError):
            Assignment("t1", "g1", -0.1, SOURCE_AI)

    def test_unknown_source_rejected(self):
        with pytest.raises(ValueError):
            Assignment("t1", "g1", 0.5, "robot")

    def test_zero_confidence_ai_is_valid(self):
        assert Assignment("t1", "g1", 0.0, SOURCE_AI).confidence == 0.0


class TestReconcile:
    def test_partition(self):
        current = [manual("t1", "a"), ai("t1", "b", 0.4)]
        manual_part, ai_part = partition(current)
        assert [a.tag_id for a in manual_part] == ["a"]
        assert [a.tag_id for a in ai_part] == ["b"]

    def test_stale_ai_dropped_and_manual_kept(self):
        current = [manual("t1", "vovochka"), ai("t1", "school", 0.7)]
        result = reconcile(current, [candidate("family", 0.8)], "t1")

        by_tag = {a.tag_id: a for a in result}
        assert set(by_tag) == {"vovochka", "family"}
        assert by_tag["vovochka"].source == SOURCE_MANUAL
        assert by_tag["family"] == ai("t1", "family", 0.8)

    def test_candidate_for_manual_tag_is_discarded(self):
        current = [manual("t1", "a")]
        result = reconcile(current, [candidate("a", 0.99)], "t1")
        assert result == [manual("t1", "a")]

    def test_zero_candidates_leaves_only_manual(self):
        current = [manual("t1", "a"), ai("t1", "b", 0.5), ai("t1", "c", 0.6)]
        assert reconcile(current, [], "t1") == [manual("t1", "a")]

    def test_duplicate_candidates_collapse_to_highest_confidence(self):
        candidates = [candidate("a", 0.4), candidate("a", 0.9), candidate("a", 0.6)]
        result = reconcile([], candidates, "t1")
        assert result == [ai("t1", "a", 0.9)]

    def test_assignments_of_other_texts_ignored(self):
        current = [manual("t2", "a"), ai("t1", "b", 0.5)]
        result = reconcile(current, [candidate("a", 0.7)], "t1")
        assert result == [ai("t1", "a", 0.7)]

    def test_manual_tags_never_shadowed(self):
        current = [manual("t1", "a"), manual("t1", "b")]
        candidates = [candidate("a", 0.3), candidate("b", 0.3), candidate("c", 0.3)]
        result = reconcile(current, candidates, "t1")
        assert sum(1 for a in result if a.tag_id == "a") == 1
        assert sum(1 for a in result if a.tag_id == "b") == 1
        assert all(a.is_manual for a in result if a.tag_id in ("a", "b"))


class TestConvertToManual:
    def test_converts_ai(self):
        result = convert_to_manual(ai("t1", "a", 0.42), "t1", "a")
        assert result == manual("t1", "a")

    def test_idempotent(self):
        first = convert_to_manual(None, "t1", "a")
        assert convert_to_manual(first, "t1", "a") == first


class TestGuard:
    def test_ai_over_manual_rejected(self):
        with pytest.raises(ManualAssignmentConflict):
            guard_ai_write(manual("t1", "a"), ai("t1", "a", 0.5))

    def test_manual_over_ai_allowed(self):
        guard_ai_write(ai("t1", "a", 0.5), manual("t1", "a"))

    def test_ai_over_ai_allowed(self):
        guard_ai_write(ai("t1", "a", 0.5), ai("t1", "a", 0.6))
