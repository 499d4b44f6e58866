"""Tests for collection export and import."""

import json
from datetime import UTC, date, datetime

import pytest

from living_tags.core.exceptions import ImportFormatError
from living_tags.services.portability import (
    FORMAT_ID,
    ImportedTag,
    coerce_import_payload,
    export_document,
    export_filename,
    export_from,
    import_document,
    parse_import_file,
    render_export,
    resolve_tag_shape,
)
from living_tags.services.tagging.models import SOURCE_AI, SOURCE_MANUAL
from living_tags.services.tagging.store import Collection
from tests.conftest import MemoryPersistence, network_error


def by_content(memory: MemoryPersistence) -> dict[str, dict[str, tuple[float, str]]]:
    """{content: {tag name: (confidence, source)}} for easy comparison."""
    result = {}
    for text in memory.texts.values():
        result[text.content] = {
            memory.tags[a.tag_id].name: (a.confidence, a.source)
            for a in memory.assignments.values()
            if a.text_id == text.id
        }
    return result


@pytest.fixture
def populated(memory):
    older = memory.seed_text("Штирлиц шёл по коридору")
    newer = memory.seed_text("Вовочка в школе")
    vov = memory.seed_tag("Вовочка")
    school = memory.seed_tag("Школа")
    stirlitz = memory.seed_tag("Штирлиц")
    memory.seed_tag("Армия")
    memory.seed_assignment(newer.id, vov.id)
    memory.seed_assignment(newer.id, school.id, 0.8, SOURCE_AI)
    memory.seed_assignment(older.id, stirlitz.id, 0.0, SOURCE_AI)
    return memory


class TestTagShapes:
    def test_bare_string_is_manual(self):
        assert resolve_tag_shape("Семья") == ("Семья", 1.0, SOURCE_MANUAL)

    def test_object_without_source_is_ai(self):
        assert resolve_tag_shape(ImportedTag(name="Семья", confidence=0.7)) == (
            "Семья",
            0.7,
            SOURCE_AI,
        )

    def test_object_without_confidence_defaults(self):
        assert resolve_tag_shape(ImportedTag(name="Семья")) == ("Семья", 0.5, SOURCE_AI)

    def test_zero_confidence_is_kept(self):
        assert resolve_tag_shape(ImportedTag(name="Семья", confidence=0)) == (
            "Семья",
            0.0,
            SOURCE_AI,
        )

    def test_manual_object_gets_full_confidence(self):
        tag = ImportedTag(name="Семья", confidence=0.3, source="manual")
        assert resolve_tag_shape(tag) == ("Семья", 1.0, SOURCE_MANUAL)


class TestPayloadParsing:
    def test_bare_array_of_strings_and_objects(self):
        document = coerce_import_payload(["Первый", {"content": "Второй", "tags": ["A"]}])
        assert document.format is None
        assert document.texts == [{"content": "Первый"}, {"content": "Второй", "tags": ["A"]}]

    def test_user_email_alias(self):
        document = coerce_import_payload(
            {"format": FORMAT_ID, "user_email": "reader@test.com", "texts": ["x"]}
        )
        assert document.account == "reader@test.com"

    def test_missing_texts_rejected(self):
        with pytest.raises(ImportFormatError):
            coerce_import_payload({"format": FORMAT_ID})

    def test_scalar_rejected(self):
        with pytest.raises(ImportFormatError):
            coerce_import_payload("texts")

    def test_invalid_json(self):
        with pytest.raises(ImportFormatError) as exc_info:
            parse_import_file("{not json")
        assert exc_info.value.detail.startswith("Invalid JSON")


class TestImport:
    @pytest.mark.asyncio
    async def test_wrong_format_rejected_before_any_write(self, memory, settings):
        document = coerce_import_payload({"format": "other-v9", "texts": ["x"]})

        with pytest.raises(ImportFormatError):
            await import_document(document, memory, settings)

        assert memory.calls == []

    @pytest.mark.asyncio
    async def test_empty_texts_rejected(self, memory, settings):
        with pytest.raises(ImportFormatError):
            await import_document(coerce_import_payload([]), memory, settings)

    @pytest.mark.asyncio
    async def test_tags_resolved_case_insensitively_and_created(self, memory, settings):
        memory.seed_tag("Вовочка")
        tags = ["вовочка", {"name": "Школа", "confidence": 0.8}]
        document = coerce_import_payload([{"content": "Вовочка в школе", "tags": tags}])

        result = await import_document(document, memory, settings)

        assert result.texts_imported == 1
        assert result.tags_created == 1
        assert result.manual_tags_assigned == 1
        assert result.ai_tags_assigned == 1
        assert result.errors == []
        assert sorted(t.name for t in memory.tags.values()) == ["Вовочка", "Школа"]
        assert by_content(memory) == {
            "Вовочка в школе": {"Вовочка": (1.0, SOURCE_MANUAL), "Школа": (0.8, SOURCE_AI)}
        }

    @pytest.mark.asyncio
    async def test_partial_errors_collected(self, memory, settings):
        document = coerce_import_payload(
            {
                "format": FORMAT_ID,
                "texts": [
                    {"content": "Первый"},
                    {"content": "   "},
                    {"tags": ["Семья"]},
                    {"content": "Четвёртый", "tags": [42, "Семья"]},
                ],
            }
        )

        result = await import_document(document, memory, settings)

        assert result.texts_imported == 2
        assert result.errors == [
            "Text at index 1: Text content cannot be empty",
            "Text at index 2: missing or invalid content",
            "Text at index 3, tag: invalid tag 42",
        ]
        assert by_content(memory)["Четвёртый"] == {"Семья": (1.0, SOURCE_MANUAL)}

    @pytest.mark.asyncio
    async def test_null_tags_imports_untagged_text(self, memory, settings):
        document = coerce_import_payload([{"content": "Без тегов", "tags": None}])

        result = await import_document(document, memory, settings)

        assert result.texts_imported == 1
        assert result.errors == []
        assert by_content(memory) == {"Без тегов": {}}

    @pytest.mark.asyncio
    async def test_zero_confidence_preserved(self, memory, settings):
        document = coerce_import_payload(
            [{"content": "Текст", "tags": [{"name": "Абсурд", "confidence": 0}]}]
        )

        await import_document(document, memory, settings)

        assert by_content(memory) == {"Текст": {"Абсурд": (0.0, SOURCE_AI)}}

    @pytest.mark.asyncio
    async def test_tag_mentioned_twice_assigned_once(self, memory, settings):
        document = coerce_import_payload(
            [{"content": "Текст", "tags": [{"name": "абсурд", "confidence": 0.9}, "Абсурд"]}]
        )

        result = await import_document(document, memory, settings)

        assert result.manual_tags_assigned == 1
        assert result.ai_tags_assigned == 0
        assert by_content(memory) == {"Текст": {"абсурд": (1.0, SOURCE_MANUAL)}}

    @pytest.mark.asyncio
    async def test_assignment_failure_reported(self, memory, settings):
        memory.fail_on["upsert_assignment"] = network_error()
        document = coerce_import_payload([{"content": "Текст", "tags": ["Семья"]}])

        result = await import_document(document, memory, settings)

        assert result.texts_imported == 1
        assert result.errors == ["Text at index 0: Failed to assign tag: Network unreachable"]

    @pytest.mark.asyncio
    async def test_progress_reported_per_batch(self, memory, settings):
        document = coerce_import_payload([f"Текст {i}" for i in range(5)])
        progress = []

        await import_document(
            document,
            memory,
            settings.model_copy(update={"import_batch_size": 2}),
            on_progress=progress.append,
        )

        assert [(p.processed, p.total) for p in progress] == [(2, 5), (4, 5), (5, 5)]

    @pytest.mark.asyncio
    async def test_created_at_preserved(self, memory, settings):
        stamp = datetime(2020, 2, 2, 12, 0, tzinfo=UTC)
        document = coerce_import_payload([{"content": "Старый", "created_at": stamp.isoformat()}])

        await import_document(document, memory, settings)

        assert next(iter(memory.texts.values())).created_at == stamp

    @pytest.mark.asyncio
    async def test_offset_timestamp_keeps_its_instant(self, persistence, settings):
        document = coerce_import_payload(
            [{"content": "Тёща", "created_at": "2020-01-02T10:00:00+03:00"}]
        )

        await import_document(document, persistence, settings)

        [text] = await persistence.list_texts()
        assert text.created_at == datetime(2020, 1, 2, 7, 0, tzinfo=UTC)


class TestExport:
    def test_document_ordering(self, populated):
        collection = Collection.build(
            populated.texts.values(), populated.tags.values(), populated.assignments.values()
        )

        document = export_document(collection, "reader@test.com")

        assert document.format == FORMAT_ID
        assert document.account == "reader@test.com"
        assert [g.name for g in document.tag_glossary] == ["Армия", "Вовочка", "Школа", "Штирлиц"]
        assert [t.content for t in document.texts] == [
            "Вовочка в школе",
            "Штирлиц шёл по коридору",
        ]
        assert [(t.name, t.source) for t in document.texts[0].tags] == [
            ("Вовочка", SOURCE_MANUAL),
            ("Школа", SOURCE_AI),
        ]
        assert document.texts[1].tags[0].confidence == 0.0

    @pytest.mark.asyncio
    async def test_render_is_valid_json_with_one_line_per_tag_list(self, populated):
        document = await export_from(populated, "reader@test.com")

        rendered = render_export(document)

        assert json.loads(rendered) == document.model_dump(mode="json")
        tag_lines = [line for line in rendered.splitlines() if '"tags": [' in line]
        assert len(tag_lines) == 2
        assert "Вовочка" in rendered  # not ASCII-escaped

    def test_render_empty_collection(self):
        document = export_document(Collection(), "reader@test.com")
        assert json.loads(render_export(document))["texts"] == []

    def test_filename(self):
        assert export_filename(date(2024, 5, 1)) == "living-tags-export-2024-05-01.json"

    @pytest.mark.asyncio
    async def test_round_trip_into_empty_account(self, populated, settings):
        rendered = render_export(await export_from(populated, "reader@test.com"))
        target = MemoryPersistence()

        result = await import_document(parse_import_file(rendered), target, settings)

        assert result.errors == []
        assert result.texts_imported == 2
        assert by_content(target) == by_content(populated)
        assert sorted(t.created_at for t in target.texts.values()) == sorted(
            t.created_at for t in populated.texts.values()
        )
