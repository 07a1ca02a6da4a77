"""In-memory size catalog.

``Catalog`` maps a package name to its scraped versions (plus a ``latest``
alias) and keeps per-package scrape metadata. Ownership is explicit: the
builder merges into its own ``copy()`` and hands the result back, while the
engine only ever reads a snapshot. Nothing here performs I/O; persistence
lives in ``slimdeps.store``.

JSON shape (compatible with the historical bundle size database)::

    {
      "moment": {
        "2.29.1": {"name": "moment", "version": "2.29.1", "gzip": 18000, ...},
        "latest": {"name": "moment", "version": "2.29.1", "gzip": 18000, ...},
        "lastScraped": 1601391291000
      },
      "left-pad": {"lastScraped": "Error"}
    }
"""

from collections.abc import Iterator, Mapping, Sequence
from types import MappingProxyType
from typing import Any

from loguru import logger

from slimdeps.models import (
    LATEST,
    PackageMeta,
    PackageSizeRecord,
    RecordValidationError,
)

_META_KEY = "lastScraped"


class Catalog:
    """Package name -> version (or ``latest``) -> PackageSizeRecord."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, PackageSizeRecord]] = {}
        self._meta: dict[str, PackageMeta] = {}

    # --- Read side ---

    def __contains__(self, name: object) -> bool:
        return name in self._records or name in self._meta

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self.names())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Catalog):
            return NotImplemented
        return self._records == other._records and self._meta == other._meta

    def __repr__(self) -> str:
        return f"Catalog({len(self)} packages)"

    def names(self) -> list[str]:
        """All package names with records or metadata, in insertion order."""
        return list(dict.fromkeys([*self._records, *self._meta]))

    def versions(self, name: str) -> Mapping[str, PackageSizeRecord]:
        """Read-only view of a package's records, ``latest`` included."""
        return MappingProxyType(self._records.get(name, {}))

    def get(self, name: str, version: str) -> PackageSizeRecord | None:
        return self._records.get(name, {}).get(version)

    def latest(self, name: str) -> PackageSizeRecord | None:
        return self.get(name, LATEST)

    def resolve(self, name: str, version: str | None = None) -> PackageSizeRecord | None:
        """Record for *version* if catalogued, else the ``latest`` record."""
        if version:
            record = self.get(name, version)
            if record is not None:
                return record
        return self.latest(name)

    def meta(self, name: str) -> PackageMeta:
        return self._meta.get(name, PackageMeta())

    def has_meta(self, name: str) -> bool:
        return name in self._meta

    def is_fresh(self, name: str, now: float, window_seconds: float) -> bool:
        return self.meta(name).is_fresh(now, window_seconds)

    # --- Write side (builder / store only) ---

    def copy(self) -> "Catalog":
        """Independent copy; records are immutable and shared."""
        clone = Catalog()
        clone._records = {name: dict(recs) for name, recs in self._records.items()}
        clone._meta = dict(self._meta)
        return clone

    def put(self, name: str, record: PackageSizeRecord, latest: bool = False) -> None:
        """Store *record* under its version, optionally as ``latest`` too."""
        versions = self._records.setdefault(name, {})
        versions[record.version] = record
        if latest:
            versions[LATEST] = record

    def set_meta(self, name: str, meta: PackageMeta) -> None:
        self._meta[name] = meta

    def merge(
        self, name: str, records: Sequence[PackageSizeRecord], scraped_at: float
    ) -> int:
        """Merge freshly scraped *records* for *name*.

        Each record overwrites its own version; the first one becomes the new
        ``latest``. Versions not present in *records* are left untouched.
        Returns the number of records written.
        """
        for index, record in enumerate(records):
            self.put(name, record, latest=index == 0)
        if records:
            self._meta[name] = PackageMeta(last_scraped=scraped_at)
        return len(records)

    def mark_error(self, name: str) -> None:
        """Flag the last scrape of *name* as failed; records are kept."""
        self._meta[name] = PackageMeta(
            last_scraped=self.meta(name).last_scraped, error=True
        )

    # --- JSON ---

    def to_json(self) -> dict[str, dict[str, Any]]:
        data: dict[str, dict[str, Any]] = {}
        for name in self.names():
            entry: dict[str, Any] = {
                version: record.to_dict()
                for version, record in self._records.get(name, {}).items()
            }
            if name in self._meta:
                entry[_META_KEY] = self._meta[name].to_json_value()
            data[name] = entry
        return data

    @classmethod
    def from_json(cls, data: Any) -> "Catalog":
        """Build a catalog from its JSON form.

        Malformed records are skipped with a warning; a non-object top level
        raises ``ValueError``.
        """
        if not isinstance(data, dict):
            raise ValueError(f"catalog JSON must be an object, got {type(data).__name__}")

        catalog = cls()
        for name, entry in data.items():
            if not isinstance(entry, dict):
                logger.warning(f"Skipping catalog entry '{name}': not an object")
                continue
            meta = PackageMeta.from_json_value(entry.get(_META_KEY))
            default_ts = meta.last_scraped or 0.0
            for version, raw in entry.items():
                if version == _META_KEY:
                    continue
                try:
                    raw_ts = raw.get("scraped_at") if isinstance(raw, dict) else None
                    record = PackageSizeRecord.from_raw(
                        raw, scraped_at=default_ts if raw_ts is None else None
                    )
                except RecordValidationError as e:
                    logger.warning(f"Skipping catalog record {name}@{version}: {e}")
                    continue
                versions = catalog._records.setdefault(name, {})
                versions[version] = record
            if _META_KEY in entry:
                catalog._meta[name] = meta
        return catalog
