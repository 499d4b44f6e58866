"""In-memory assignment store for the active user.

The store keeps one normalized table (texts, tags and assignments by key).
Scoped views, such as the unfiltered list and a search-filtered list, are
projections computed on read, so every mutation is visible in every scope.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from living_tags.services.tagging.models import (
    Assignment,
    TaggedView,
    TagRecord,
    TextRecord,
    TextView,
)
from living_tags.services.tagging.reconciliation import guard_ai_write
from living_tags.services.tagging.search import filter_texts

logger = logging.getLogger(__name__)

AssignmentKey = tuple[str, str]


def _frozen(mapping: Mapping | None = None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True, slots=True)
class TouchedKeys:
    """Keys whose value differs between two collections."""

    texts: frozenset[str] = frozenset()
    tags: frozenset[str] = frozenset()
    assignments: frozenset[AssignmentKey] = frozenset()

    def __bool__(self) -> bool:
        return bool(self.texts or self.tags or self.assignments)


def _changed_keys(before: Mapping, after: Mapping) -> frozenset:
    keys = set(before) | set(after)
    return frozenset(k for k in keys if before.get(k) != after.get(k))


@dataclass(frozen=True, slots=True)
class Collection:
    """Immutable snapshot of a user's texts, tags and assignments.

    Every transformation returns a new Collection; unchanged records are
    shared between the old and new instance.
    """

    texts: Mapping[str, TextRecord] = field(default_factory=_frozen)
    tags: Mapping[str, TagRecord] = field(default_factory=_frozen)
    assignments: Mapping[AssignmentKey, Assignment] = field(default_factory=_frozen)

    @classmethod
    def build(
        cls,
        texts: Iterable[TextRecord] = (),
        tags: Iterable[TagRecord] = (),
        assignments: Iterable[Assignment] = (),
    ) -> Collection:
        text_map = {t.id: t for t in texts}
        tag_map = {t.id: t for t in tags}
        # Orphans (e.g. rows for a tag deleted mid-listing) are dropped
        assignment_map = {
            a.key: a for a in assignments if a.text_id in text_map and a.tag_id in tag_map
        }
        return cls(_frozen(text_map), _frozen(tag_map), _frozen(assignment_map))

    def _with(self, texts=None, tags=None, assignments=None) -> Collection:
        return Collection(
            texts=self.texts if texts is None else _frozen(texts),
            tags=self.tags if tags is None else _frozen(tags),
            assignments=self.assignments if assignments is None else _frozen(assignments),
        )

    # --- Queries ---

    def assignments_for(self, text_id: str) -> list[Assignment]:
        return [a for a in self.assignments.values() if a.text_id == text_id]

    def find_tag_by_name(self, name: str, case_sensitive: bool = True) -> TagRecord | None:
        wanted = name if case_sensitive else name.lower()
        for tag in self.tags.values():
            if (tag.name if case_sensitive else tag.name.lower()) == wanted:
                return tag
        return None

    def diff(self, other: Collection) -> TouchedKeys:
        return TouchedKeys(
            texts=_changed_keys(self.texts, other.texts),
            tags=_changed_keys(self.tags, other.tags),
            assignments=_changed_keys(self.assignments, other.assignments),
        )

    # --- Transformations ---

    def with_text(self, record: TextRecord) -> Collection:
        return self._with(texts={**self.texts, record.id: record})

    def without_text(self, text_id: str) -> Collection:
        texts = {k: v for k, v in self.texts.items() if k != text_id}
        assignments = {k: v for k, v in self.assignments.items() if v.text_id != text_id}
        return self._with(texts=texts, assignments=assignments)

    def with_text_id(self, old_id: str, record: TextRecord) -> Collection:
        """Swap a provisional text id for the persisted record."""
        texts = {k: v for k, v in self.texts.items() if k != old_id}
        texts[record.id] = record
        assignments = {}
        for assignment in self.assignments.values():
            if assignment.text_id == old_id:
                assignment = replace(assignment, text_id=record.id)
            assignments[assignment.key] = assignment
        return self._with(texts=texts, assignments=assignments)

    def with_tag(self, record: TagRecord) -> Collection:
        return self._with(tags={**self.tags, record.id: record})

    def without_tag(self, tag_id: str) -> Collection:
        tags = {k: v for k, v in self.tags.items() if k != tag_id}
        assignments = {k: v for k, v in self.assignments.items() if v.tag_id != tag_id}
        return self._with(tags=tags, assignments=assignments)

    def with_tag_id(self, old_id: str, record: TagRecord) -> Collection:
        """Swap a provisional tag id for the persisted record."""
        tags = {k: v for k, v in self.tags.items() if k != old_id}
        tags[record.id] = record
        assignments = {}
        for assignment in self.assignments.values():
            if assignment.tag_id == old_id:
                assignment = replace(assignment, tag_id=record.id)
            assignments[assignment.key] = assignment
        return self._with(tags=tags, assignments=assignments)

    def with_assignment(self, assignment: Assignment) -> Collection:
        """Upsert one assignment by its (text, tag) key."""
        if assignment.text_id not in self.texts or assignment.tag_id not in self.tags:
            raise KeyError(f"Unknown text or tag for assignment {assignment.key}")
        guard_ai_write(self.assignments.get(assignment.key), assignment)
        return self._with(assignments={**self.assignments, assignment.key: assignment})

    def without_assignment(self, text_id: str, tag_id: str) -> Collection:
        assignments = {k: v for k, v in self.assignments.items() if k != (text_id, tag_id)}
        return self._with(assignments=assignments)

    def with_text_assignments(self, text_id: str, assignments: Iterable[Assignment]) -> Collection:
        """Replace every assignment of a text with the given set."""
        merged = {k: v for k, v in self.assignments.items() if v.text_id != text_id}
        for assignment in assignments:
            merged[assignment.key] = assignment
        return self._with(assignments=merged)

    def restore(self, snapshot: Collection, touched: TouchedKeys) -> Collection:
        """Revert only the touched keys to their snapshot values.

        Newer writes to other keys stay in place. Assignments whose text or
        tag no longer exists after the restore are not resurrected.
        """
        texts = dict(self.texts)
        tags = dict(self.tags)
        assignments = dict(self.assignments)
        for target, source, keys in (
            (texts, snapshot.texts, touched.texts),
            (tags, snapshot.tags, touched.tags),
            (assignments, snapshot.assignments, touched.assignments),
        ):
            for key in keys:
                if key in source:
                    target[key] = source[key]
                else:
                    target.pop(key, None)
        assignments = {
            k: v for k, v in assignments.items() if v.text_id in texts and v.tag_id in tags
        }
        return Collection(_frozen(texts), _frozen(tags), _frozen(assignments))


Mutator = Callable[[Collection], Collection]


@dataclass(frozen=True, slots=True)
class ScopeKey:
    """Identifies one projection: a user plus an optional search query."""

    user_id: str
    search: str | None = None


class ScopedView:
    """Handle held by a consumer for one projection of the store."""

    def __init__(self, store: AssignmentStore, key: ScopeKey) -> None:
        self.store = store
        self.key = key

    def texts(self) -> list[TextView]:
        return self.store.view(self.key)

    def close(self) -> None:
        self.store.close_view(self)


class AssignmentStore:
    """Sole mutable owner of the active user's in-memory tagging state.

    No network or classifier calls happen here; the store only replaces its
    collection with the result of pure transformations.
    """

    def __init__(self, user_id: str, collection: Collection | None = None) -> None:
        self.user_id = user_id
        self._collection = collection or Collection()
        self._version = 0
        self._written: dict[tuple[str, object], int] = {}
        self._scopes: Counter[ScopeKey] = Counter()

    @property
    def collection(self) -> Collection:
        return self._collection

    @property
    def version(self) -> int:
        """Incremented by every write; used to detect stale snapshots."""
        return self._version

    def get_assignments(self, text_id: str) -> list[Assignment]:
        return self._collection.assignments_for(text_id)

    def apply_delta(self, mutator: Mutator) -> Collection:
        """Replace the collection with ``mutator(current)``; return the previous one.

        The mutator is synchronous, so two deltas can never interleave.
        """
        previous = self._collection
        self._collection = mutator(previous)
        self._version += 1
        self._record_writes(previous.diff(self._collection))
        return previous

    def _record_writes(self, changed: TouchedKeys) -> None:
        for table in ("texts", "tags", "assignments"):
            for key in getattr(changed, table):
                self._written[(table, key)] = self._version

    def unchanged_since(self, touched: TouchedKeys, version: int) -> TouchedKeys:
        """Subset of ``touched`` that no write after ``version`` changed."""

        def keep(table: str, keys: frozenset) -> frozenset:
            return frozenset(k for k in keys if self._written.get((table, k), 0) <= version)

        return TouchedKeys(
            texts=keep("texts", touched.texts),
            tags=keep("tags", touched.tags),
            assignments=keep("assignments", touched.assignments),
        )

    def replace(self, collection: Collection) -> Collection:
        """Install a collection loaded from the source of record."""
        return self.apply_delta(lambda _current: collection)

    # --- Scoped views ---

    def open_view(self, search: str | None = None) -> ScopedView:
        normalized = search.strip() if search else None
        key = ScopeKey(self.user_id, normalized or None)
        self._scopes[key] += 1
        return ScopedView(self, key)

    def close_view(self, view: ScopedView) -> None:
        self._scopes[view.key] -= 1
        if self._scopes[view.key] <= 0:
            del self._scopes[view.key]

    def active_scopes(self) -> list[ScopeKey]:
        return list(self._scopes)

    def view(self, key: ScopeKey) -> list[TextView]:
        """Texts of the scope, newest first, with tags ordered by name."""
        if key.user_id != self.user_id:
            return []
        texts = [self._text_view(record) for record in self._collection.texts.values()]
        texts.sort(key=lambda t: t.created_at, reverse=True)
        return filter_texts(texts, key.search)

    def text(self, text_id: str) -> TextView | None:
        record = self._collection.texts.get(text_id)
        return self._text_view(record) if record else None

    def glossary(self) -> list[TagRecord]:
        return sorted(self._collection.tags.values(), key=lambda t: t.name)

    def _text_view(self, record: TextRecord) -> TextView:
        tags = self._collection.tags
        tagged = [
            TaggedView(a.tag_id, tags[a.tag_id].name, a.confidence, a.source)
            for a in self._collection.assignments_for(record.id)
            if a.tag_id in tags
        ]
        tagged.sort(key=lambda t: t.name)
        return TextView(record.id, record.content, record.created_at, tuple(tagged))
