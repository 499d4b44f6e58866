"""Optimistic mutations over the assignment store.

Each user action is applied to the store immediately, then sent to the
persistence collaborator (or classifier). The mutation is then committed,
followed by a resynchronization from the source of record, or rolled back.

Rollback policy: when no other write landed on the store after the mutation,
the snapshot is restored verbatim. Otherwise only the keys the mutation
changed, and that no later write changed again, are restored from the
snapshot; a resynchronization is then scheduled.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeVar

from living_tags.config import Settings, get_settings
from living_tags.core.exceptions import (
    AppError,
    ClassifierError,
    DuplicateTagNameError,
    EntityNotFound,
)
from living_tags.services.glossary import normalize_content, normalize_tag_name
from living_tags.services.protocols import ClassifierProtocol, PersistenceProtocol
from living_tags.services.tagging.models import (
    SOURCE_AI,
    SOURCE_MANUAL,
    Assignment,
    TagRecord,
    TextRecord,
)
from living_tags.services.tagging.reconciliation import convert_to_manual, reconcile
from living_tags.services.tagging.store import AssignmentStore, Collection, Mutator, TouchedKeys

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROVISIONAL_PREFIX = "provisional-"


class MutationKind(StrEnum):
    ADD_TEXT = "add-text"
    ADD_MANUAL_TAG = "add-manual-tag"
    REMOVE_TAG = "remove-tag"
    DELETE_TEXT = "delete-text"
    DELETE_TAG = "delete-tag"
    CREATE_TAG = "create-tag"
    RENAME_TAG = "rename-tag"
    RECLASSIFY_TEXT = "reclassify-text"


# --- Mutation states ---


@dataclass(frozen=True, slots=True)
class Pending:
    snapshot: Collection
    version: int  # Store version right after the optimistic write
    touched: TouchedKeys


@dataclass(frozen=True, slots=True)
class Committed:
    pass


@dataclass(frozen=True, slots=True)
class RolledBack:
    snapshot: Collection
    error: BaseException
    exact: bool  # True when the snapshot was restored verbatim


MutationState = Pending | Committed | RolledBack


@dataclass(slots=True)
class Mutation:
    kind: MutationKind
    params: dict[str, Any]
    state: MutationState | None = None

    def begin(self, snapshot: Collection, version: int, touched: TouchedKeys) -> None:
        self.state = Pending(snapshot, version, touched)

    def commit(self) -> None:
        if not isinstance(self.state, Pending):
            raise RuntimeError(f"Cannot commit mutation in state {self.state!r}")
        self.state = Committed()

    def roll_back(self, error: BaseException, exact: bool) -> None:
        if not isinstance(self.state, Pending):
            raise RuntimeError(f"Cannot roll back mutation in state {self.state!r}")
        self.state = RolledBack(self.state.snapshot, error, exact)

    def fail_before_apply(self, snapshot: Collection, error: BaseException) -> None:
        """Record a failure that happened before anything was written."""
        self.state = RolledBack(snapshot, error, exact=True)


@dataclass(frozen=True, slots=True)
class MutationFailure:
    """Failure signal delivered to the UI layer after a rollback."""

    mutation: Mutation
    error: BaseException
    message: str = ""


FailureListener = Callable[[MutationFailure], None]


def _provisional_id() -> str:
    return f"{PROVISIONAL_PREFIX}{uuid.uuid4()}"


class OptimisticMutationEngine:
    """Applies user actions optimistically and reconciles with the source of record."""

    def __init__(
        self,
        store: AssignmentStore,
        persistence: PersistenceProtocol,
        classifier: ClassifierProtocol | None = None,
        settings: Settings | None = None,
        on_failure: FailureListener | None = None,
    ) -> None:
        self.store = store
        self.persistence = persistence
        self.classifier = classifier
        self.settings = settings or get_settings()
        self.on_failure = on_failure
        self.history: list[Mutation] = []
        self._refresh_task: asyncio.Task | None = None
        self._in_flight = 0

    # --- Resynchronization ---

    async def refresh(self) -> bool:
        """Reload the collection from persistence.

        Returns:
            True if the result was installed; False if a newer write landed
            while loading, or a mutation is still in flight.
        """
        started_at = self.store.version
        texts = await self.persistence.list_texts()
        tags = await self.persistence.list_tags()
        assignments = await self.persistence.list_assignments()

        if self.store.version != started_at or self._in_flight:
            logger.debug("Discarding stale refresh (version %d)", started_at)
            return False
        self.store.replace(Collection.build(texts, tags, assignments))
        return True

    def schedule_refresh(self) -> asyncio.Task:
        """Start a background refresh, superseding any refresh in flight."""
        self._supersede_refresh()
        self._refresh_task = asyncio.create_task(self._background_refresh())
        return self._refresh_task

    async def wait_for_refresh(self) -> None:
        task = self._refresh_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def _background_refresh(self) -> None:
        try:
            await self.refresh()
        except AppError as e:
            logger.warning("Background refresh failed: %s", e.detail)

    def _supersede_refresh(self) -> None:
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
        self._refresh_task = None

    # --- Core protocol ---

    async def _run(
        self,
        mutation: Mutation,
        mutator: Mutator,
        remote: Callable[[], Awaitable[T]],
        on_commit: Callable[[T], Mutator] | None = None,
        notify: bool = True,
    ) -> T:
        self.history.append(mutation)
        self._supersede_refresh()

        try:
            previous = self.store.apply_delta(mutator)
        except Exception as e:
            mutation.fail_before_apply(self.store.collection, e)
            raise
        mutation.begin(previous, self.store.version, previous.diff(self.store.collection))

        self._in_flight += 1
        try:
            result = await remote()
        except (Exception, asyncio.CancelledError) as e:
            self._roll_back(mutation, e, notify)
            raise
        finally:
            self._in_flight -= 1

        if on_commit is not None:
            self.store.apply_delta(on_commit(result))
        mutation.commit()
        logger.debug("Mutation %s committed", mutation.kind)
        self.schedule_refresh()
        return result

    def _roll_back(self, mutation: Mutation, error: BaseException, notify: bool) -> None:
        state = mutation.state
        if not isinstance(state, Pending):
            raise RuntimeError(f"Cannot roll back mutation in state {state!r}")
        exact = self.store.version == state.version
        if exact:
            self.store.replace(state.snapshot)
        else:
            # Keys rewritten by later mutations keep their newer value
            touched = self.store.unchanged_since(state.touched, state.version)
            self.store.apply_delta(lambda c: c.restore(state.snapshot, touched))
        mutation.roll_back(error, exact)
        logger.warning(
            "Mutation %s rolled back (exact=%s): %s", mutation.kind, exact, error
        )
        if not exact:
            self.schedule_refresh()
        if notify:
            self._notify(mutation, error)

    def _notify(self, mutation: Mutation, error: BaseException) -> None:
        if self.on_failure is None:
            return
        message = error.detail if isinstance(error, AppError) else str(error)
        self.on_failure(MutationFailure(mutation, error, message))

    # --- Lookups ---

    def _require_text(self, text_id: str) -> TextRecord:
        text = self.store.collection.texts.get(text_id)
        if text is None:
            raise EntityNotFound("Text not found", context={"id": text_id})
        return text

    def _require_tag(self, tag_id: str) -> TagRecord:
        tag = self.store.collection.tags.get(tag_id)
        if tag is None:
            raise EntityNotFound("Tag not found", context={"id": tag_id})
        return tag

    # --- Texts ---

    async def add_text(self, content: str) -> TextRecord:
        """Add a text under a provisional id, then auto-tag it if enabled."""
        content = normalize_content(content)
        provisional = TextRecord(_provisional_id(), content, datetime.now(UTC))
        mutation = Mutation(MutationKind.ADD_TEXT, {"content": content})

        created = await self._run(
            mutation,
            lambda c: c.with_text(provisional),
            lambda: self.persistence.create_text(content),
            on_commit=lambda record: lambda c: c.with_text_id(provisional.id, record),
        )

        if self.settings.auto_tag_on_create and self.classifier and self.store.collection.tags:
            try:
                await self.reclassify_text(created.id)
            except AppError as e:
                # The text itself was saved; the listener has been told
                logger.warning("Text %s added but auto-tagging failed: %s", created.id, e.detail)
        return created

    async def delete_text(self, text_id: str) -> None:
        self._require_text(text_id)
        mutation = Mutation(MutationKind.DELETE_TEXT, {"text_id": text_id})
        await self._run(
            mutation,
            lambda c: c.without_text(text_id),
            lambda: self.persistence.delete_text(text_id),
        )

    # --- Tags ---

    async def create_tag(self, name: str) -> TagRecord:
        name = normalize_tag_name(name, self.settings.tag_name_max_length)
        if self.store.collection.find_tag_by_name(name) is not None:
            raise DuplicateTagNameError(f'Tag "{name}" already exists', context={"name": name})
        provisional = TagRecord(_provisional_id(), name, datetime.now(UTC))
        mutation = Mutation(MutationKind.CREATE_TAG, {"name": name})
        return await self._run(
            mutation,
            lambda c: c.with_tag(provisional),
            lambda: self.persistence.create_tag(name),
            on_commit=lambda record: lambda c: c.with_tag_id(provisional.id, record),
        )

    async def rename_tag(self, tag_id: str, name: str) -> TagRecord:
        tag = self._require_tag(tag_id)
        name = normalize_tag_name(name, self.settings.tag_name_max_length)
        existing = self.store.collection.find_tag_by_name(name)
        if existing is not None and existing.id != tag_id:
            raise DuplicateTagNameError(f'Tag "{name}" already exists', context={"name": name})
        mutation = Mutation(MutationKind.RENAME_TAG, {"tag_id": tag_id, "name": name})
        return await self._run(
            mutation,
            lambda c: c.with_tag(replace(tag, name=name)),
            lambda: self.persistence.rename_tag(tag_id, name),
        )

    async def delete_tag(self, tag_id: str) -> None:
        """Delete a tag; its assignments disappear from every view at once."""
        self._require_tag(tag_id)
        mutation = Mutation(MutationKind.DELETE_TAG, {"tag_id": tag_id})
        await self._run(
            mutation,
            lambda c: c.without_tag(tag_id),
            lambda: self.persistence.delete_tag(tag_id),
        )

    async def tag_usage_count(self, tag_id: str) -> int:
        """Number of assignments a tag deletion would remove."""
        return await self.persistence.count_assignments_by_tag(tag_id)

    # --- Assignments ---

    async def add_manual_tag(self, text_id: str, tag_id: str) -> Assignment:
        """Assign a tag manually; an existing AI assignment is converted."""
        self._require_text(text_id)
        self._require_tag(tag_id)
        mutation = Mutation(MutationKind.ADD_MANUAL_TAG, {"text_id": text_id, "tag_id": tag_id})

        def mutator(c: Collection) -> Collection:
            existing = c.assignments.get((text_id, tag_id))
            return c.with_assignment(convert_to_manual(existing, text_id, tag_id))

        return await self._run(
            mutation,
            mutator,
            lambda: self.persistence.upsert_assignment(text_id, tag_id, 1.0, SOURCE_MANUAL),
        )

    async def remove_tag(self, text_id: str, tag_id: str) -> None:
        """Remove an AI or manual assignment from a text."""
        self._require_text(text_id)
        mutation = Mutation(MutationKind.REMOVE_TAG, {"text_id": text_id, "tag_id": tag_id})
        await self._run(
            mutation,
            lambda c: c.without_assignment(text_id, tag_id),
            lambda: self.persistence.delete_assignment(text_id, tag_id),
        )

    async def reclassify_text(self, text_id: str, notify: bool = True) -> list[Assignment]:
        """Replace a text's AI assignments with fresh classifier output.

        The classifier is called before anything is written, so a classifier
        failure leaves every assignment, manual or AI, untouched.

        Returns:
            The text's resulting assignment set.
        """
        text = self._require_text(text_id)
        mutation = Mutation(MutationKind.RECLASSIFY_TEXT, {"text_id": text_id})

        try:
            if self.classifier is None:
                raise ClassifierError("No classifier configured")
            candidates = await self.classifier.classify(text.content, self.store.glossary())
        except AppError as e:
            self.history.append(mutation)
            mutation.fail_before_apply(self.store.collection, e)
            logger.warning("Classification of text %s failed: %s", text_id, e.detail)
            if notify:
                self._notify(mutation, e)
            raise

        # The text or some tags may have gone while the classifier was working
        self._require_text(text_id)
        glossary = self.store.collection.tags
        candidates = [c for c in candidates if c.id in glossary]
        result = reconcile(self.store.get_assignments(text_id), candidates, text_id)
        ai_assignments = [a for a in result if a.source == SOURCE_AI]
        stale_rows_deleted = False

        async def remote() -> list[Assignment]:
            nonlocal stale_rows_deleted
            await self.persistence.delete_assignments_where(text_id, SOURCE_AI)
            stale_rows_deleted = True
            for assignment in ai_assignments:
                await self.persistence.upsert_assignment(
                    text_id, assignment.tag_id, assignment.confidence, SOURCE_AI
                )
            return result

        try:
            return await self._run(
                mutation,
                lambda c: c.with_text_assignments(text_id, result),
                remote,
                notify=notify,
            )
        except (Exception, asyncio.CancelledError):
            if stale_rows_deleted:
                # The record may now differ from both the snapshot and the result
                self.schedule_refresh()
            raise
