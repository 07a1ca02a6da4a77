"""Matching and ranking engine.

Pure function from detected libraries, the suggestion map and a catalog
snapshot to ranked pairings. No I/O, no shared state, and nothing is
mutated, so any number of callers may share one catalog.

Missing data is never an error here: a library (or a single alternative)
without catalog records is just left out of the result.
"""

from collections.abc import Collection, Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from slimdeps.catalog import Catalog
from slimdeps.models import Alternative, DetectedLibrary, Pairing
from slimdeps.suggestions import SuggestionMap


def _as_detected(item: Any) -> DetectedLibrary | None:
    if isinstance(item, DetectedLibrary):
        return item
    if not isinstance(item, Mapping):
        return None
    try:
        return DetectedLibrary.model_validate(dict(item))
    except ValidationError:
        return None


def match(
    detected: Iterable[DetectedLibrary | Mapping[str, Any]],
    suggestions: SuggestionMap,
    catalog: Catalog,
    *,
    detectors: Collection[str] | None = None,
) -> list[Pairing]:
    """Pair each oversized detected library with its smaller alternatives.

    Pairings come out in the order their library first appears in
    *detected*. Within a pairing, alternatives are sorted by gzip size,
    smallest first (largest savings first); equal sizes keep curator order.

    Args:
        detected: Detection feed, ``DetectedLibrary`` or plain mappings.
        suggestions: Oversized name -> alternatives.
        catalog: Catalog snapshot, read only.
        detectors: If given, only detections from these detectors count.
    """
    pairings: list[Pairing] = []
    seen: set[str] = set()

    for item in detected:
        library = _as_detected(item)
        if library is None:
            continue
        name = library.name
        if detectors is not None and library.detector not in detectors:
            continue
        if not name or name not in suggestions or name in seen:
            continue
        seen.add(name)

        original = catalog.resolve(name, library.version)
        if original is None:
            continue

        kept: list[Alternative] = []
        for alt_name in suggestions.alternatives_for(name):
            alt = catalog.latest(alt_name)
            if alt is None or alt.gzip >= original.gzip:
                continue
            kept.append(Alternative(record=alt, savings=original.gzip - alt.gzip))

        if not kept:
            continue

        kept.sort(key=lambda a: a.record.gzip)
        pairings.append(Pairing(original=original, alternatives=tuple(kept)))

    return pairings
