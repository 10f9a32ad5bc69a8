"""Markdown and JSON renderings of a gap analysis."""

from __future__ import annotations

import json
from typing import Optional

from ..models.control import GapAnalysis
from ..models.toolkit import Toolkit


def format_analysis_markdown(analysis: GapAnalysis, toolkit: Optional[Toolkit] = None) -> str:
    title = toolkit.name if toolkit else analysis.platform
    lines = [
        f"# Compliance Gap Analysis: {title}",
        "",
        f"**Platform:** {analysis.platform}",
    ]
    if analysis.standards_used:
        standards = ", ".join(f"{s.name} ({s.version})" for s in analysis.standards_used)
        lines.append(f"**Standards:** {standards}")
    else:
        lines.append("**Standards:** none mapped for this platform")
    lines += [
        f"**Coverage:** {analysis.coverage_percent}% "
        f"({analysis.present_controls}/{analysis.total_reference_controls} controls)",
        f"**Missing:** {len(analysis.suggestions)} ({len(analysis.recommended)} recommended)",
        "",
    ]

    if not analysis.suggestions:
        lines.append("No missing controls.")
        return "\n".join(lines) + "\n"

    for category, suggestions in analysis.by_category().items():
        lines.append(f"## {category or 'General'}")
        lines.append("")
        lines.append("| Control | Severity | Reference | Recommended |")
        lines.append("|---------|----------|-----------|-------------|")
        for s in suggestions:
            mark = "yes" if s.recommended else ""
            lines.append(f"| {s.id}: {s.name} | {s.severity.value} | {s.reference} | {mark} |")
        lines.append("")

    return "\n".join(lines)


def format_analysis_json(analysis: GapAnalysis, toolkit: Optional[Toolkit] = None) -> str:
    data = analysis.model_dump(mode="json")
    data["recommended_count"] = len(analysis.recommended)
    if toolkit:
        data["toolkit"] = {"id": toolkit.id, "name": toolkit.name}
    return json.dumps(data, indent=2, ensure_ascii=False)
