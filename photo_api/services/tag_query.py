"""
Blob index tag filter expressions.

The store's filter grammar is a conjunction of equality clauses::

    "@container" = 'images' AND "collection" = 'c1' AND "collectionImage" = 'true'

Tag values are sanitised by the tag codec, so they never contain quotes.
"""

import re
from typing import Dict, Mapping, Optional, Tuple

from photo_api.core.errors import ValidationFailure

CONTAINER_KEY = "@container"

_CLAUSE = re.compile(r""""(?P<key>[^"]+)"\s*=\s*'(?P<value>[^']*)'""")


def _clause(key: str, value: str) -> str:
    if "'" in value or '"' in key:
        raise ValidationFailure(f"Quote characters are not allowed in tag filters: {key}")
    return f"\"{key}\" = '{value}'"


def build_filter(container: str, predicates: Mapping[str, str]) -> str:
    """Container-scoped conjunction of tag equality predicates."""
    clauses = [_clause(CONTAINER_KEY, container)]
    clauses.extend(_clause(k, v) for k, v in predicates.items())
    return " AND ".join(clauses)


def build_condition(tags: Mapping[str, str]) -> Optional[str]:
    """Condition for a conditional tag write: every tag must still hold its value."""
    if not tags:
        return None
    return " AND ".join(_clause(k, v) for k, v in sorted(tags.items()))


def parse_filter(expression: str) -> Tuple[Optional[str], Dict[str, str]]:
    """Split an expression into ``(container, {key: value})``."""
    container = None
    predicates: Dict[str, str] = {}
    pos = 0
    for m in _CLAUSE.finditer(expression):
        gap = expression[pos:m.start()].strip()
        if gap.lower() != ("and" if pos else ""):
            raise ValidationFailure(f"Unsupported tag filter expression: {expression!r}")
        key, value = m.group("key"), m.group("value")
        if key == CONTAINER_KEY:
            container = value
        else:
            predicates[key] = value
        pos = m.end()
    if pos == 0 or expression[pos:].strip():
        raise ValidationFailure(f"Unsupported tag filter expression: {expression!r}")
    return container, predicates


def matches(tags: Mapping[str, str], predicates: Mapping[str, str]) -> bool:
    # Unknown keys simply fail to match
    return all(k in tags and tags[k] == v for k, v in predicates.items())
