"""Toolkit gap analysis against reference catalogs.

Computes which reference controls a toolkit does not carry yet. The
analysis is a pure function of its inputs; persisting accepted
suggestions is the caller's job.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from ..models.control import GapAnalysis, StandardCatalog, Suggestion
from .loader import load_catalogs
from .mapping import get_catalogs_for_platform


def analyze(
    platform: str,
    current_control_ids: Iterable[str],
    catalogs: Optional[dict[str, StandardCatalog]] = None,
    overrides: Optional[dict[str, list[str]]] = None,
) -> GapAnalysis:
    """Compare a toolkit's controls with the catalogs for its platform.

    Args:
        platform: Toolkit platform label (e.g. "Linux").
        current_control_ids: Ids of every control attached to the toolkit.
        catalogs: Loaded catalogs keyed by id. Defaults to the bundled set.
        overrides: Extra platform -> standard ids entries.

    Returns:
        A GapAnalysis whose suggestions follow catalog declaration order.
        Unmapped platforms yield an empty analysis.
    """
    if catalogs is None:
        catalogs = load_catalogs()
    current = frozenset(current_control_ids)

    standards = get_catalogs_for_platform(platform, catalogs, overrides)

    seen: set[str] = set()
    suggestions: list[Suggestion] = []
    present = 0

    for standard in standards:
        for control in standard.controls:
            # First declaration wins when standards share a control id
            if control.id in seen:
                continue
            seen.add(control.id)

            if control.id in current:
                present += 1
            else:
                suggestions.append(Suggestion.from_control(control, standard.id))

    total = len(seen)
    coverage = round((present / total) * 100, 1) if total > 0 else 0.0

    return GapAnalysis(
        platform=platform,
        standards_used=[s.ref() for s in standards],
        total_reference_controls=total,
        present_controls=present,
        coverage_percent=coverage,
        suggestions=suggestions,
    )


def select_suggestions(analysis: GapAnalysis, control_ids: Iterable[str]) -> list[Suggestion]:
    """Pick the suggestions an administrator accepted.

    Raises:
        ValueError: if any id is not among the analysis suggestions.
    """
    wanted = list(dict.fromkeys(control_ids))
    by_id = {s.id: s for s in analysis.suggestions}

    unknown = [cid for cid in wanted if cid not in by_id]
    if unknown:
        raise ValueError(f"Not suggested for this toolkit: {', '.join(unknown)}")

    return [by_id[cid] for cid in wanted]
