"""Greedy automatic matching of legacy rows to catalog suggestions.

Rows are visited from the most to the least confident (by their best
suggestion's score). Each row takes its highest-ranked suggestion that
clears the threshold and has not been taken yet, so a catalog asset is never
assigned to two rows.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class RowCandidates:
    """A pending row with its stored suggestion documents, best first."""

    row_number: int
    suggestions: Sequence[Mapping[str, Any]]

    @property
    def best_score(self) -> float:
        """Score of the top suggestion, or 0.0 when there is none."""
        if not self.suggestions:
            return 0.0
        return float(self.suggestions[0].get("score", 0.0))


@dataclass(frozen=True)
class PlannedMatch:
    """An automatic match to record."""

    row_number: int
    asset_id: str
    score: float


def plan_auto_matches(
    rows: Iterable[RowCandidates],
    min_score: float,
    already_assigned: Iterable[str] = (),
) -> list[PlannedMatch]:
    """Plan automatic matches for pending rows.

    Args:
        rows: Pending rows with their suggestions.
        min_score: Minimum suggestion score accepted.
        already_assigned: Asset ids that may not be assigned again.

    Returns:
        Planned matches in the order they were chosen.
    """
    assigned = {str(asset_id) for asset_id in already_assigned}
    ordered = sorted(rows, key=lambda r: r.best_score, reverse=True)

    planned: list[PlannedMatch] = []
    for row in ordered:
        for suggestion in row.suggestions:
            score = float(suggestion.get("score", 0.0))
            asset_id = str(suggestion.get("assetId", ""))
            if score < min_score or not asset_id or asset_id in assigned:
                continue
            if suggestion.get("isReconciled"):
                continue
            assigned.add(asset_id)
            planned.append(PlannedMatch(row.row_number, asset_id, score))
            break

    return planned
