"""Text normalization for embedding inputs.

Catalog entries and legacy rows are free text typed by many people over many
years. Before anything is embedded, whitespace is collapsed and attribute
values that only say "no brand" or "not applicable" are dropped, so they do
not pull unrelated assets together in vector space.

Example usage:
    >>> normalize_text("  Bomba   centrifuga \\n 2HP ")
    'Bomba centrifuga 2HP'
    >>> is_meaningful_value("S/M")
    False
    >>> build_embedding_text({"name": "Bomba", "brand": "n/a", "model": "X-200"})
    'Bomba X-200'
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_WHITESPACE = re.compile(r"\s+")

# Placeholder values meaning "unknown" or "not applicable", compared after
# trimming and lowercasing
PLACEHOLDER_VALUES: frozenset[str] = frozenset(
    {
        "s/m",
        "s\\m",
        "s.m",
        "s/n",
        "s\\n",
        "s.n",
        "na",
        "n/a",
        "n.a.",
        "sin marca",
        "sin modelo",
        "no aplica",
        "no aplica.",
        "no aplica a",
        "sin dato",
        "sd",
        "-",
        "--",
        "---",
        "x",
    }
)

# Placeholders typed with stray spaces ("s / m"), compared with all
# whitespace removed
COMPACT_PLACEHOLDER_VALUES: frozenset[str] = frozenset({"s/m", "s/n", "sm", "sn"})

EMBEDDING_FIELDS: tuple[str, ...] = ("name", "brand", "model")


def normalize_text(value: Any) -> str:
    """Collapse runs of whitespace to single spaces and trim.

    Args:
        value: Any value; None becomes the empty string and non-strings are
            converted with str().

    Returns:
        Normalized string.
    """
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip()


def is_meaningful_value(value: Any) -> bool:
    """Whether a value carries information worth embedding.

    Args:
        value: Attribute value to check.

    Returns:
        False for None, blank strings and known placeholders, True otherwise.
    """
    if value is None:
        return False

    lowered = str(value).strip().lower()
    if not lowered:
        return False
    if lowered in PLACEHOLDER_VALUES:
        return False

    compact = _WHITESPACE.sub("", lowered)
    return compact not in COMPACT_PLACEHOLDER_VALUES


def _field(source: Mapping[str, Any] | object, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def build_embedding_text(asset: Mapping[str, Any] | object) -> str:
    """Build the text embedded for a catalog asset.

    Meaningful ``name``, ``brand`` and ``model`` values are normalized and
    joined with single spaces, in that order.

    Args:
        asset: A mapping or an object exposing the attributes.

    Returns:
        Embedding text, possibly empty.
    """
    parts = []
    for field in EMBEDDING_FIELDS:
        value = _field(asset, field)
        if is_meaningful_value(value):
            parts.append(normalize_text(value))
    return normalize_text(" ".join(parts))
