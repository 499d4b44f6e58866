"""Reconciliation of classifier output with existing assignments.

Manual assignments are authoritative: re-classification replaces every AI
assignment of a text but never removes, alters or shadows a manual one.
"""

from __future__ import annotations

from collections.abc import Iterable

from living_tags.core.exceptions import ManualAssignmentConflict
from living_tags.services.tagging.models import SOURCE_AI, Assignment, TagCandidate


def partition(assignments: Iterable[Assignment]) -> tuple[list[Assignment], list[Assignment]]:
    """Split assignments into (manual, ai)."""
    manual: list[Assignment] = []
    ai: list[Assignment] = []
    for assignment in assignments:
        (manual if assignment.is_manual else ai).append(assignment)
    return manual, ai


def reconcile(
    current: Iterable[Assignment],
    candidates: Iterable[TagCandidate],
    text_id: str,
) -> list[Assignment]:
    """Compute the assignment set of a text after fresh classifier output.

    Args:
        current: Assignments currently held for the text.
        candidates: Classifier output, already restricted to the glossary.
        text_id: The text being re-classified.

    Returns:
        Manual assignments (unchanged) followed by one AI assignment per
        surviving candidate. Stale AI assignments are dropped; candidates
        for tags that are already manual are discarded.
    """
    manual, _stale_ai = partition(a for a in current if a.text_id == text_id)
    manual_tag_ids = {a.tag_id for a in manual}

    # Duplicate ids collapse to the most confident suggestion
    best: dict[str, TagCandidate] = {}
    for candidate in candidates:
        if candidate.id in manual_tag_ids:
            continue
        seen = best.get(candidate.id)
        if seen is None or candidate.confidence > seen.confidence:
            best[candidate.id] = candidate

    surviving = [
        Assignment(text_id, candidate.id, candidate.confidence, SOURCE_AI)
        for candidate in best.values()
    ]
    return manual + surviving


def convert_to_manual(existing: Assignment | None, text_id: str, tag_id: str) -> Assignment:
    """Upsert a manual assignment for (text_id, tag_id).

    An existing AI assignment for the pair is converted in place; an existing
    manual one is returned unchanged.
    """
    if existing is not None and existing.is_manual:
        return existing
    return Assignment.manual(text_id, tag_id)


def guard_ai_write(existing: Assignment | None, incoming: Assignment) -> None:
    """Refuse to write an AI assignment over a manual one for the same pair."""
    if existing is not None and existing.is_manual and not incoming.is_manual:
        raise ManualAssignmentConflict(
            "Tag is already assigned manually to this text",
            context={"text_id": incoming.text_id, "tag_id": incoming.tag_id},
        )
