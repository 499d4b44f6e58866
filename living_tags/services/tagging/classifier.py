"""LLM-based text classification against a user's tag glossary.

Orchestrates the LLM call, JSON parsing with repair logic, and schema
validation of the candidate list. The gateway never retries; retry policy
belongs to the caller.
"""

import asyncio
import json
import logging
import re
from collections.abc import Sequence

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from living_tags.config import Settings
from living_tags.core.exceptions import (
    ClassifierError,
    ClassifierRateLimitError,
    ClassifierResponseError,
    ClassifierTimeoutError,
    ValidationError,
)
from living_tags.services.tagging.models import TagCandidate, TagRecord

logger = logging.getLogger(__name__)

_CANDIDATES = TypeAdapter(list[TagCandidate])

SYSTEM_PROMPT = (
    "You are an expert at analyzing Russian humor and assigning semantic tags. "
    "You understand the cultural context, references, and themes common in Russian "
    "jokes and anecdotes. Always respond with valid JSON only."
)

PROMPT_TEMPLATE = """Analyze the following text and assign relevant semantic tags
from the provided list.

TEXT TO ANALYZE:
\"\"\"
{text}
\"\"\"

AVAILABLE TAGS:
{tags}

INSTRUCTIONS:
1. FIRST, scan for EXPLICIT MENTIONS of names, places, or keywords in the text.
   If a tag name appears directly in the text, include it with confidence 0.95-1.0.
2. SECOND, identify thematic and semantic connections:
   - Strong thematic connection: 0.7-0.9
   - Moderate relevance: 0.5-0.6
   - Weak but present connection: 0.3-0.4
3. Only include tags with confidence > 0.3
4. Select a maximum of 5-7 most relevant tags
5. Return ONLY valid JSON (no markdown, no explanation)

RESPONSE FORMAT (JSON array):
[
  {{"id": "tag-id-here", "name": "Tag Name", "confidence": 0.95, "reasoning": "optional"}}
]

Return the JSON array now:"""


def build_prompt(text: str, glossary: Sequence[TagRecord]) -> str:
    tags = "\n".join(f"- ID: {tag.id}, Name: {tag.name}" for tag in glossary)
    return PROMPT_TEMPLATE.format(text=text, tags=tags)


class ClassifierGateway:
    """Classifier backed by the Anthropic Messages API."""

    def __init__(self, settings: Settings) -> None:
        self.base_url = settings.classifier_base_url.rstrip("/")
        self.api_key = settings.classifier_api_key
        self.api_version = settings.classifier_api_version
        self.model = settings.classifier_model
        self.max_tokens = settings.classifier_max_tokens
        self.timeout = settings.classifier_timeout_seconds

    async def classify(self, text: str, glossary: Sequence[TagRecord]) -> list[TagCandidate]:
        """Suggest glossary tags for a text.

        Args:
            text: Text content to analyze.
            glossary: The user's tags; only these ids may be returned.

        Returns:
            Validated candidates restricted to the glossary. May be empty.

        Raises:
            ValidationError: Empty text or empty glossary.
            ClassifierError: Transport failure, timeout, rate limit or bad response.
        """
        if not text or not text.strip():
            raise ValidationError("Text content cannot be empty")
        if not glossary:
            raise ValidationError("No tags available. Please add tags first.")

        try:
            async with asyncio.timeout(self.timeout):
                raw_text = await self._call_llm(build_prompt(text, glossary))
        except TimeoutError as e:
            raise ClassifierTimeoutError(
                f"Classifier did not respond within {self.timeout}s"
            ) from e

        parsed = self._parse_json_response(raw_text)
        if parsed is None:
            raise ClassifierResponseError(
                "Failed to parse classifier response as JSON",
                context={"raw_response": raw_text[:500]},
            )

        try:
            candidates = _CANDIDATES.validate_python(parsed)
        except PydanticValidationError as e:
            raise ClassifierResponseError(
                f"Invalid response structure from classifier: {e.error_count()} errors"
            ) from e

        known_ids = {tag.id for tag in glossary}
        unknown = [c.id for c in candidates if c.id not in known_ids]
        if unknown:
            logger.warning("Classifier returned unknown tag ids: %s", unknown)
            candidates = [c for c in candidates if c.id in known_ids]

        logger.info("Classification complete: %d candidates", len(candidates))
        return candidates

    async def _call_llm(self, prompt: str) -> str:
        """POST to /v1/messages and return the first text block."""
        headers = {
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }
        if self.api_key:
            headers["x-api-key"] = self.api_key
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/v1/messages", headers=headers, json=payload
                )
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            logger.error("Classifier call timed out: %s", e)
            raise ClassifierTimeoutError("Classifier request timed out") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429:
                raise ClassifierRateLimitError(
                    "Rate limit exceeded for classifier. Please try again in a moment."
                ) from e
            logger.error("Classifier HTTP error: %s", e)
            raise ClassifierError(f"Classifier API error ({status})") from e
        except httpx.HTTPError as e:
            logger.error("Classifier transport error: %s", e)
            raise ClassifierError(f"Classifier unreachable: {e}") from e

        for block in body.get("content") or []:
            if block.get("type") == "text":
                return block.get("text", "").strip()
        raise ClassifierResponseError("Classifier response contained no text block")

    def _parse_json_response(self, raw_text: str) -> list | None:
        """Parse a JSON array from the LLM response with repair attempts.

        Tries three strategies in order:
        1. Strict JSON parse
        2. Strip markdown code fences and parse
        3. Extract first [...] block and parse
        """
        # 1. Strict parse
        try:
            parsed = json.loads(raw_text)
            return parsed if isinstance(parsed, list) else None
        except json.JSONDecodeError:
            pass

        # 2. Strip markdown fences
        cleaned = re.sub(r"^```(?:json)?\s*", "", raw_text.strip(), flags=re.MULTILINE)
        cleaned = re.sub(r"\s*```$", "", cleaned.strip(), flags=re.MULTILINE)
        # Typographic quotes inside string values
        cleaned = cleaned.replace("“", '\\"').replace("”", '\\"')
        try:
            parsed = json.loads(cleaned)
            return parsed if isinstance(parsed, list) else None
        except json.JSONDecodeError:
            pass

        # 3. Extract first [...] block
        match = re.search(r"\[.*\]", cleaned, re.DOTALL)
        if match:
            try:
                parsed = json.loads(match.group())
                return parsed if isinstance(parsed, list) else None
            except json.JSONDecodeError:
                pass

        logger.error("Failed to parse classifier response as JSON after all repair attempts")
        return None
