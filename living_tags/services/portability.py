"""Export and import of a user's collection as a portable JSON document.

Tag ids are not portable across accounts, so the document refers to tags by
name. Import resolves names case-insensitively against the glossary and
creates missing tags on the fly. Every text entry is imported independently;
failures are collected in the result instead of aborting the run.
"""

import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from living_tags.config import Settings, get_settings
from living_tags.core.exceptions import AppError, ImportFormatError
from living_tags.services.glossary import normalize_content, normalize_tag_name
from living_tags.services.protocols import PersistenceProtocol
from living_tags.services.tagging.models import (
    MANUAL_CONFIDENCE,
    SOURCE_AI,
    SOURCE_MANUAL,
    Source,
    TagRecord,
)
from living_tags.services.tagging.store import Collection

logger = logging.getLogger(__name__)

FORMAT_ID = "living-tags-v1"
DEFAULT_AI_CONFIDENCE = 0.5


# --- Document models ---


class GlossaryEntry(BaseModel):
    name: str


class ExportedTag(BaseModel):
    name: str
    confidence: float
    source: Source


class ExportedText(BaseModel):
    content: str
    tags: list[ExportedTag] = Field(default_factory=list)
    created_at: datetime


class ExportDocument(BaseModel):
    format: str = FORMAT_ID
    exported_at: datetime
    account: str
    tag_glossary: list[GlossaryEntry] = Field(default_factory=list)
    texts: list[ExportedText] = Field(default_factory=list)


class ImportedTag(BaseModel):
    """Object form of a tag in an import entry."""

    model_config = ConfigDict(extra="ignore")

    name: str
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    source: Source | None = None


class ImportEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: str
    # Validated one by one so a bad tag only fails itself
    tags: list[Any] | None = None
    created_at: datetime | None = None


class ImportDocument(BaseModel):
    """Import payload. Entries stay raw until each is imported."""

    model_config = ConfigDict(extra="ignore")

    format: str | None = None
    account: str | None = Field(
        default=None, validation_alias=AliasChoices("account", "user_email")
    )
    texts: list[Any]


_TAG_SHAPE = TypeAdapter(str | ImportedTag)


@dataclass(slots=True)
class ImportResult:
    texts_imported: int = 0
    tags_created: int = 0
    ai_tags_assigned: int = 0
    manual_tags_assigned: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ImportProgress:
    processed: int
    total: int


ProgressCallback = Callable[[ImportProgress], None]


# --- Export ---


def export_document(
    collection: Collection, account: str, exported_at: datetime | None = None
) -> ExportDocument:
    """Build the export document for a collection.

    Texts are newest first; tags on a text and the glossary are by name.
    """
    tags = collection.tags
    texts = sorted(collection.texts.values(), key=lambda t: t.created_at, reverse=True)
    exported = []
    for text in texts:
        assigned = [
            ExportedTag(name=tags[a.tag_id].name, confidence=a.confidence, source=a.source)
            for a in collection.assignments_for(text.id)
        ]
        assigned.sort(key=lambda t: t.name)
        exported.append(
            ExportedText(content=text.content, tags=assigned, created_at=text.created_at)
        )

    return ExportDocument(
        format=FORMAT_ID,
        exported_at=exported_at or datetime.now(UTC),
        account=account,
        tag_glossary=[
            GlossaryEntry(name=t.name) for t in sorted(tags.values(), key=lambda t: t.name)
        ],
        texts=exported,
    )


async def export_from(persistence: PersistenceProtocol, account: str) -> ExportDocument:
    collection = Collection.build(
        await persistence.list_texts(),
        await persistence.list_tags(),
        await persistence.list_assignments(),
    )
    return export_document(collection, account)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def render_export(document: ExportDocument) -> str:
    """Serialize compactly: one block per text, a text's tags on one line."""
    data = document.model_dump(mode="json")
    glossary = ", ".join(_dumps(entry) for entry in data["tag_glossary"])
    lines = [
        "{",
        f'  "format": {_dumps(data["format"])},',
        f'  "exported_at": {_dumps(data["exported_at"])},',
        f'  "account": {_dumps(data["account"])},',
        f'  "tag_glossary": [{glossary}],',
        '  "texts": [',
    ]
    for index, text in enumerate(data["texts"]):
        tags = ", ".join(_dumps(tag) for tag in text["tags"])
        lines.append("    {")
        lines.append(f'      "content": {_dumps(text["content"])},')
        lines.append(f'      "tags": [{tags}],')
        lines.append(f'      "created_at": {_dumps(text["created_at"])}')
        lines.append("    }" if index == len(data["texts"]) - 1 else "    },")
    lines.append("  ]")
    lines.append("}")
    return "\n".join(lines)


def export_filename(day: date | None = None) -> str:
    day = day or datetime.now(UTC).date()
    return f"living-tags-export-{day.isoformat()}.json"


# --- Import ---


def coerce_import_payload(data: Any) -> ImportDocument:
    """Accept the export format or a bare array of strings / text objects."""
    if isinstance(data, list):
        return ImportDocument(
            texts=[{"content": item} if isinstance(item, str) else item for item in data]
        )
    if isinstance(data, dict):
        if not isinstance(data.get("texts"), list):
            raise ImportFormatError("Invalid import data: missing texts array")
        try:
            return ImportDocument.model_validate(data)
        except PydanticValidationError as e:
            raise ImportFormatError(f"Invalid import document: {e.error_count()} errors") from e
    raise ImportFormatError("Could not parse import format")


def parse_import_file(raw: str | bytes) -> ImportDocument:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ImportFormatError(f"Invalid JSON: {e.msg}") from e
    return coerce_import_payload(data)


def check_document(document: ImportDocument, expected_format: str = FORMAT_ID) -> None:
    """Reject a document before anything is written."""
    if document.format is not None and document.format != expected_format:
        raise ImportFormatError(
            f"Unsupported format: {document.format}. Expected: {expected_format}",
            context={"format": document.format},
        )
    if not document.texts:
        raise ImportFormatError("No texts to import")


def resolve_tag_shape(tag: str | ImportedTag) -> tuple[str, float, Source]:
    """Map one import tag to (name, confidence, source).

    A bare string is a manual tag. An object without ``source`` is an AI
    tag. A manual tag is always stored at full confidence.
    """
    if isinstance(tag, str):
        return tag, MANUAL_CONFIDENCE, SOURCE_MANUAL
    if tag.source == SOURCE_MANUAL:
        return tag.name, MANUAL_CONFIDENCE, SOURCE_MANUAL
    confidence = DEFAULT_AI_CONFIDENCE if tag.confidence is None else tag.confidence
    return tag.name, confidence, SOURCE_AI


def _preferred(current: tuple[float, Source] | None, incoming: tuple[float, Source]) -> bool:
    if current is None:
        return True
    if current[1] != incoming[1]:
        return incoming[1] == SOURCE_MANUAL
    return incoming[0] > current[0]


class _TagResolver:
    """Case-insensitive glossary lookup that creates missing tags."""

    def __init__(
        self, persistence: PersistenceProtocol, tags: Sequence[TagRecord], max_length: int
    ) -> None:
        self.persistence = persistence
        self.by_name = {tag.name.lower(): tag for tag in tags}
        self.max_length = max_length
        self.created = 0

    async def resolve(self, name: str) -> TagRecord:
        name = normalize_tag_name(name, self.max_length)
        existing = self.by_name.get(name.lower())
        if existing is not None:
            return existing
        tag = await self.persistence.create_tag(name)
        self.by_name[name.lower()] = tag
        self.created += 1
        return tag


async def import_document(
    document: ImportDocument,
    persistence: PersistenceProtocol,
    settings: Settings | None = None,
    on_progress: ProgressCallback | None = None,
) -> ImportResult:
    """Import every entry of a document into the user's collection.

    Raises:
        ImportFormatError: Unsupported format or no texts; nothing is written.
    """
    settings = settings or get_settings()
    check_document(document, settings.export_format)

    resolver = _TagResolver(
        persistence, await persistence.list_tags(), settings.tag_name_max_length
    )
    result = ImportResult()
    total = len(document.texts)
    batch_size = max(1, settings.import_batch_size)

    for start in range(0, total, batch_size):
        for index in range(start, min(start + batch_size, total)):
            await _import_entry(index, document.texts[index], persistence, resolver, result)
        if on_progress is not None:
            on_progress(ImportProgress(min(start + batch_size, total), total))

    result.tags_created = resolver.created
    logger.info(
        "Imported %d/%d texts (%d tags created, %d errors)",
        result.texts_imported,
        total,
        result.tags_created,
        len(result.errors),
    )
    return result


async def _import_entry(
    index: int,
    raw: Any,
    persistence: PersistenceProtocol,
    resolver: _TagResolver,
    result: ImportResult,
) -> None:
    prefix = f"Text at index {index}"
    try:
        entry = ImportEntry.model_validate(raw)
    except PydanticValidationError:
        result.errors.append(f"{prefix}: missing or invalid content")
        return

    try:
        content = normalize_content(entry.content)
        text = await persistence.create_text(content, created_at=entry.created_at)
    except AppError as e:
        result.errors.append(f"{prefix}: {e.detail}")
        return
    result.texts_imported += 1

    wanted: dict[str, tuple[float, Source]] = {}
    for raw_tag in entry.tags or ():
        try:
            name, confidence, source = resolve_tag_shape(_TAG_SHAPE.validate_python(raw_tag))
            tag = await resolver.resolve(name)
        except PydanticValidationError:
            result.errors.append(f"{prefix}, tag: invalid tag {raw_tag!r}")
            continue
        except AppError as e:
            result.errors.append(f"{prefix}, tag: {e.detail}")
            continue
        if _preferred(wanted.get(tag.id), (confidence, source)):
            wanted[tag.id] = (confidence, source)

    for tag_id, (confidence, source) in wanted.items():
        try:
            await persistence.upsert_assignment(text.id, tag_id, confidence, source)
        except AppError as e:
            result.errors.append(f"{prefix}: Failed to assign tag: {e.detail}")
            continue
        if source == SOURCE_MANUAL:
            result.manual_tags_assigned += 1
        else:
            result.ai_tags_assigned += 1
