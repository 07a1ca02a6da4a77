"""Report contract for ranked pairings.

Turns engine output into flat table rows for a renderer: one row per
alternative, with the original library's name and link only on the first
row of its group, and alternatives numbered in rank order.
"""

import json
from typing import Any

from slimdeps.models import Pairing

HEADINGS: list[dict[str, str]] = [
    {"key": "name", "itemType": "url", "text": "Library Name"},
    {"key": "suggestion", "itemType": "url", "text": "Smaller Alternative"},
    {"key": "savings", "itemType": "bytes", "text": "Potential Savings"},
]


def table_rows(pairings: list[Pairing]) -> list[dict[str, Any]]:
    """Flatten pairings into table rows, in ranked order."""
    rows: list[dict[str, Any]] = []
    for pairing in pairings:
        original = pairing.original
        for rank, alt in enumerate(pairing.alternatives, start=1):
            first = rank == 1
            rows.append(
                {
                    "name": original.name if first else "",
                    "name_url": original.repository if first else "",
                    "version": original.version if first else "",
                    "suggestion": f"{rank}. {alt.record.name}",
                    "suggestion_url": alt.record.repository,
                    "savings": alt.savings,
                    "original_url": original.repository,
                    "description": alt.record.description or "",
                }
            )
    return rows


def total_savings(pairings: list[Pairing]) -> int:
    """Bytes saved by taking the best alternative for every pairing."""
    return sum(p.best.savings for p in pairings)


def build_report(pairings: list[Pairing]) -> dict[str, Any]:
    """Report dict: score (1 = nothing to replace), headings and rows."""
    return {
        "score": 0 if pairings else 1,
        "total_savings": total_savings(pairings),
        "headings": HEADINGS,
        "items": table_rows(pairings),
        "pairings": [p.to_dict() for p in pairings],
    }


def render_json(pairings: list[Pairing]) -> str:
    return json.dumps(build_report(pairings), ensure_ascii=False, indent=2)
