"""Batch classification across a user's whole collection.

Runs directly against persistence, one text at a time. Failures are
collected per text and never abort the batch; the caller resynchronizes its
store afterwards.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from living_tags.config import Settings, get_settings
from living_tags.core.exceptions import AppError, EntityNotFound, ManualAssignmentConflict
from living_tags.services.protocols import ClassifierProtocol, PersistenceProtocol
from living_tags.services.tagging.models import SOURCE_AI, Assignment, TagRecord, TextRecord
from living_tags.services.tagging.reconciliation import reconcile

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BatchProgress:
    current: int  # 1-indexed position of the text being processed
    total: int
    success_count: int
    error_count: int


@dataclass(frozen=True, slots=True)
class BatchError:
    text_id: str
    error: str


@dataclass(slots=True)
class BatchResult:
    total_processed: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    errors: list[BatchError] = field(default_factory=list)

    def record_error(self, text_id: str, error: AppError) -> None:
        self.errors.append(BatchError(text_id, error.detail))
        self.error_count += 1


ProgressCallback = Callable[[BatchProgress], None]


class BatchTagger:
    """Applies the classifier to every text of one user."""

    def __init__(
        self,
        persistence: PersistenceProtocol,
        classifier: ClassifierProtocol,
        settings: Settings | None = None,
    ) -> None:
        self.persistence = persistence
        self.classifier = classifier
        self.settings = settings or get_settings()

    def _report(
        self, on_progress: ProgressCallback | None, current: int, total: int, result: BatchResult
    ) -> None:
        if on_progress is not None:
            on_progress(BatchProgress(current, total, result.success_count, result.error_count))

    async def apply_new_tag(
        self, tag_id: str, on_progress: ProgressCallback | None = None
    ) -> BatchResult:
        """Offer a newly created tag to every existing text.

        Each text is classified against the full glossary; when the new tag
        comes back above ``classifier_min_confidence`` it is stored as an AI
        assignment. Texts already carrying the tag are skipped.

        Raises:
            EntityNotFound: ``tag_id`` is not in the user's glossary.
        """
        glossary = await self.persistence.list_tags()
        if not any(tag.id == tag_id for tag in glossary):
            raise EntityNotFound("Tag not found", context={"id": tag_id})

        texts = await self.persistence.list_texts()
        tagged = {
            a.text_id for a in await self.persistence.list_assignments() if a.tag_id == tag_id
        }
        result = BatchResult(total_processed=len(texts))
        self._report(on_progress, 0, len(texts), result)

        for index, text in enumerate(texts, start=1):
            self._report(on_progress, index, len(texts), result)
            if text.id in tagged:
                result.skipped_count += 1
                continue
            try:
                candidates = await self.classifier.classify(text.content, glossary)
                match = max(
                    (c for c in candidates if c.id == tag_id),
                    key=lambda c: c.confidence,
                    default=None,
                )
                if match is None or match.confidence <= self.settings.classifier_min_confidence:
                    continue
                await self.persistence.upsert_assignment(
                    text.id, tag_id, match.confidence, SOURCE_AI
                )
                result.success_count += 1
            except ManualAssignmentConflict:
                # Assigned manually since the listing; counts as tagged
                result.success_count += 1
            except AppError as e:
                logger.warning("Batch tagging failed for text %s: %s", text.id, e.detail)
                result.record_error(text.id, e)

        self._report(on_progress, len(texts), len(texts), result)
        logger.info(
            "Batch tagging with %s done: %d tagged, %d errors",
            tag_id,
            result.success_count,
            result.error_count,
        )
        return result

    async def reclassify_text(
        self, text: TextRecord, glossary: Sequence[TagRecord] | None = None
    ) -> list[Assignment]:
        """Replace one text's AI assignments with fresh classifier output.

        The classifier runs first, so its failure leaves the text untouched.
        Manual assignments are always kept.
        """
        if glossary is None:
            glossary = await self.persistence.list_tags()
        known = {tag.id for tag in glossary}
        candidates = [
            c for c in await self.classifier.classify(text.content, glossary) if c.id in known
        ]
        current = await self.persistence.list_assignments(text.id)
        merged = reconcile(current, candidates, text.id)
        await self.persistence.delete_assignments_where(text.id, SOURCE_AI)
        for assignment in merged:
            if assignment.source == SOURCE_AI:
                await self.persistence.upsert_assignment(
                    text.id, assignment.tag_id, assignment.confidence, SOURCE_AI
                )
        return merged

    async def reclassify_all(self, on_progress: ProgressCallback | None = None) -> BatchResult:
        """Reclassify every text of the user."""
        glossary = await self.persistence.list_tags()
        texts = await self.persistence.list_texts()
        result = BatchResult(total_processed=len(texts))
        if not glossary:
            result.skipped_count = len(texts)
            return result

        self._report(on_progress, 0, len(texts), result)
        for index, text in enumerate(texts, start=1):
            self._report(on_progress, index, len(texts), result)
            try:
                await self.reclassify_text(text, glossary)
                result.success_count += 1
            except AppError as e:
                logger.warning("Reclassification failed for text %s: %s", text.id, e.detail)
                result.record_error(text.id, e)

        self._report(on_progress, len(texts), len(texts), result)
        return result
