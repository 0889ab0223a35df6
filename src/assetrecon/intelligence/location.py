"""Hierarchical location filters.

Catalog locations are slash-delimited paths such as
``"Site A/Building 2/Floor 1"``. A filter on ``"Site A/Building 2"`` matches
that exact path and every path below it, but not a sibling that merely
shares the prefix (``"Site A/Building 20"``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import or_
from sqlalchemy.sql.elements import ColumnElement

PATH_DELIMITER = "/"


@dataclass(frozen=True)
class LocationFilter:
    """Subtree predicate over location paths.

    Attributes:
        path: Trimmed root path of the subtree.
    """

    path: str

    @property
    def prefix(self) -> str:
        """Prefix shared by every descendant path."""
        return self.path + PATH_DELIMITER

    def matches(self, location_path: str | None) -> bool:
        """Whether a location path equals the root or lies beneath it."""
        if location_path is None:
            return False
        return location_path == self.path or location_path.startswith(self.prefix)

    def as_clause(self, column: Any) -> ColumnElement[bool]:
        """Build the equivalent SQL predicate for a location column.

        LIKE wildcards in the path are escaped, so the path always matches
        literally.

        Args:
            column: Column (or column expression) holding location paths.

        Returns:
            SQLAlchemy boolean clause.
        """
        return or_(
            column == self.path,
            column.startswith(self.prefix, autoescape=True),
        )


def build_location_filter(value: str | None) -> LocationFilter | None:
    """Build a subtree filter from a user-supplied location path.

    Args:
        value: Location path, possibly blank or padded.

    Returns:
        LocationFilter for the trimmed path, or None when no filter applies.
    """
    if value is None:
        return None
    path = value.strip()
    if not path:
        return None
    return LocationFilter(path=path)
