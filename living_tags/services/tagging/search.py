"""Multi-term tag search.

A query is split on whitespace and commas; a text matches when every term is
a case-insensitive substring of at least one of its tag names.
"""

import re
from collections.abc import Iterable, Sequence

from living_tags.services.tagging.models import TextView

_TERM_SPLIT_RE = re.compile(r"[\s,]+")


def parse_terms(query: str | None) -> list[str]:
    """Split a query into non-empty lowercase terms."""
    if not query:
        return []
    return [term.lower() for term in _TERM_SPLIT_RE.split(query) if term]


def matches_names(tag_names: Iterable[str], query: str | None) -> bool:
    """AND over terms, OR over tag names per term."""
    terms = parse_terms(query)
    if not terms:
        return True
    lowered = [name.lower() for name in tag_names]
    return all(any(term in name for name in lowered) for term in terms)


def matches(text: TextView, query: str | None) -> bool:
    return matches_names(text.tag_names, query)


def filter_texts(texts: Sequence[TextView], query: str | None) -> list[TextView]:
    if not parse_terms(query):
        return list(texts)
    return [text for text in texts if matches(text, query)]
