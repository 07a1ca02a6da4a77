"""Curated suggestion map: oversized package -> smaller alternatives.

The map is configuration, not data: it is loaded once at startup, frozen,
and passed explicitly to the catalog builder and the matching engine.
Alternatives keep the curator's order; ranking by size happens later in
the engine.

Two on-disk shapes are accepted:

- a mapping ``{"moment": ["dayjs", "luxon"], ...}``
- a list of equivalence groups ``[["moment", "dayjs", "luxon"], ...]``
  where every member is suggested the other members of its group
"""

import json
from collections.abc import Iterable, Iterator, Mapping
from importlib.resources import files
from pathlib import Path
from types import MappingProxyType
from typing import Any

from loguru import logger

from slimdeps.models import SuggestionMapError

_BUNDLED_MAP = "suggestions.json"


def _check_name(value: Any, where: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise SuggestionMapError(f"{where}: expected a package name, got {value!r}")
    return value.strip()


class SuggestionMap(Mapping[str, tuple[str, ...]]):
    """Immutable oversized-name -> ordered alternatives mapping."""

    def __init__(self, mapping: Mapping[str, Iterable[str]]):
        if not isinstance(mapping, Mapping):
            raise SuggestionMapError(
                f"suggestion map must be a mapping, got {type(mapping).__name__}"
            )

        frozen: dict[str, tuple[str, ...]] = {}
        for raw_key, raw_alts in mapping.items():
            key = _check_name(raw_key, "suggestion map key")
            if isinstance(raw_alts, (str, bytes)) or not isinstance(
                raw_alts, Iterable
            ):
                raise SuggestionMapError(
                    f"alternatives for '{key}' must be a list of names"
                )
            alts: list[str] = []
            for raw_alt in raw_alts:
                alt = _check_name(raw_alt, f"alternative of '{key}'")
                if alt == key:
                    logger.warning(f"Ignoring self-suggestion for '{key}'")
                    continue
                if alt not in alts:
                    alts.append(alt)
            frozen[key] = tuple(alts)

        self._map = MappingProxyType(frozen)

    @classmethod
    def from_groups(cls, groups: Iterable[Iterable[str]]) -> "SuggestionMap":
        """Build a map from equivalence groups.

        Each member of a group maps to the other members, in group order.
        A name appearing in several groups collects alternatives from all
        of them.
        """
        if isinstance(groups, (str, bytes, Mapping)) or not isinstance(
            groups, Iterable
        ):
            raise SuggestionMapError("suggestion groups must be a list of lists")

        mapping: dict[str, list[str]] = {}
        for group in groups:
            if isinstance(group, (str, bytes)) or not isinstance(group, Iterable):
                raise SuggestionMapError(f"suggestion group must be a list, got {group!r}")
            members = [_check_name(m, "suggestion group member") for m in group]
            for member in members:
                alts = mapping.setdefault(member, [])
                for other in members:
                    if other != member and other not in alts:
                        alts.append(other)
        return cls(mapping)

    # --- Mapping protocol ---

    def __getitem__(self, name: str) -> tuple[str, ...]:
        return self._map[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._map)

    def __len__(self) -> int:
        return len(self._map)

    def __repr__(self) -> str:
        return f"SuggestionMap({dict(self._map)!r})"

    # --- Queries ---

    def alternatives_for(self, name: str) -> tuple[str, ...]:
        """Alternatives in curator order, empty if *name* is not oversized."""
        return self._map.get(name, ())

    @property
    def originals(self) -> tuple[str, ...]:
        return tuple(self._map)

    def scrape_set(self) -> list[str]:
        """Every package the catalog must cover, deduplicated.

        Keys come first in map order, then alternatives in order of first
        appearance.
        """
        names: dict[str, None] = dict.fromkeys(self._map)
        for alts in self._map.values():
            for alt in alts:
                names.setdefault(alt, None)
        return list(names)

    def to_dict(self) -> dict[str, list[str]]:
        return {key: list(alts) for key, alts in self._map.items()}


def parse_suggestion_map(data: Any) -> SuggestionMap:
    """Build a SuggestionMap from decoded JSON (mapping or group list)."""
    if isinstance(data, Mapping):
        return SuggestionMap(data)
    if isinstance(data, list):
        return SuggestionMap.from_groups(data)
    raise SuggestionMapError(
        f"suggestion map must be an object or a list of groups, got {type(data).__name__}"
    )


def load_suggestion_map(path: Path | None = None) -> SuggestionMap:
    """Load the suggestion map from *path*, or the packaged default.

    Raises:
        SuggestionMapError: if the file is unreadable or structurally invalid.
    """
    try:
        if path is None:
            raw = files("slimdeps").joinpath(_BUNDLED_MAP).read_text(encoding="utf-8")
            source = f"bundled {_BUNDLED_MAP}"
        else:
            raw = Path(path).read_text(encoding="utf-8")
            source = str(path)
    except OSError as e:
        raise SuggestionMapError(f"cannot read suggestion map {path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SuggestionMapError(f"invalid JSON in suggestion map {source}: {e}") from e

    suggestions = parse_suggestion_map(data)
    logger.debug(
        f"Loaded suggestion map from {source}: {len(suggestions)} oversized, "
        f"{len(suggestions.scrape_set())} tracked packages"
    )
    return suggestions
