"""Tag glossary rules: name validation and default tag seeding."""

import logging
from collections.abc import Sequence

from living_tags.config import get_settings
from living_tags.core.exceptions import DuplicateTagNameError, ValidationError
from living_tags.services.protocols import PersistenceProtocol
from living_tags.services.tagging.models import TagRecord

logger = logging.getLogger(__name__)


def normalize_tag_name(name: str, max_length: int | None = None) -> str:
    """Trim a tag name and check it is 1..max_length printable characters."""
    if max_length is None:
        max_length = get_settings().tag_name_max_length
    if not isinstance(name, str):
        raise ValidationError("Tag name must be a string")
    trimmed = name.strip()
    if not trimmed:
        raise ValidationError("Tag name cannot be empty")
    if len(trimmed) > max_length:
        raise ValidationError(
            f"Tag name exceeds {max_length} characters",
            context={"name": trimmed[:max_length]},
        )
    if not trimmed.isprintable():
        raise ValidationError("Tag name contains non-printable characters")
    return trimmed


def normalize_content(content: str) -> str:
    """Trim text content; empty content is rejected."""
    if not isinstance(content, str):
        raise ValidationError("Text content must be a string")
    trimmed = content.strip()
    if not trimmed:
        raise ValidationError("Text content cannot be empty")
    return trimmed


async def initialize_default_tags(
    persistence: PersistenceProtocol,
    names: Sequence[str] | None = None,
) -> list[TagRecord]:
    """Seed the default glossary when the user has no tags yet.

    Returns:
        The created tags; empty when the user already had a glossary.
    """
    existing = await persistence.list_tags()
    if existing:
        logger.debug("Glossary already initialized (%d tags)", len(existing))
        return []

    created: list[TagRecord] = []
    for name in names if names is not None else get_settings().default_tags:
        try:
            created.append(await persistence.create_tag(name))
        except DuplicateTagNameError:
            logger.info("Default tag %r already exists, skipping", name)
    logger.info("Seeded %d default tags", len(created))
    return created
