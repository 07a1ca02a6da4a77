"""Shared data model for the size catalog and the matching engine.

Records scraped from the size-lookup service are validated into
``PackageSizeRecord`` instances before they ever reach the catalog. The
registry occasionally reports a version string such as ``"12 packages"``
(a metadata artefact, not a release); such records are rejected here so
neither the builder nor the engine has to care about them.
"""

import re
from typing import Any, NamedTuple

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic import field_validator

# Catalog key aliasing the most recently published version of a package.
LATEST = "latest"

# Serialised form of a failed scrape in the JSON catalog format.
ERROR_SENTINEL = "Error"

# Registry-metadata false positive: "<N> packages" is not a version.
_FALSE_POSITIVE_VERSION_RE = re.compile(r"^([0-9]+) packages$")


class SlimdepsError(Exception):
    """Base class for slimdeps errors."""


class FetchError(SlimdepsError):
    """The size-lookup service failed for one package."""

    def __init__(self, package: str, reason: str):
        super().__init__(f"{package}: {reason}")
        self.package = package
        self.reason = reason


class RecordValidationError(SlimdepsError, ValueError):
    """A scraped record is malformed or carries a false-positive version."""


class SuggestionMapError(SlimdepsError, ValueError):
    """The suggestion map is not a name -> list-of-names mapping."""


def is_false_positive_version(version: str) -> bool:
    """Return True if *version* is a registry-metadata artefact."""
    return bool(_FALSE_POSITIVE_VERSION_RE.match(version.strip()))


class PackageSizeRecord(BaseModel):
    """One scraped size measurement for a package version."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    gzip: int = Field(..., ge=0, description="Compressed size in bytes")
    size: int | None = Field(None, ge=0, description="Uncompressed size in bytes")
    description: str | None = None
    repository: str = Field(..., description="Source repository URL, may be empty")
    scraped_at: float = 0.0

    @field_validator("version")
    @classmethod
    def _reject_false_positive(cls, value: str) -> str:
        if is_false_positive_version(value):
            raise ValueError(f"'{value}' is registry metadata, not a version")
        return value

    @field_validator("repository", mode="before")
    @classmethod
    def _repository_url(cls, value: Any) -> Any:
        # npm-style {"type": "git", "url": "..."} objects
        if isinstance(value, dict):
            return value.get("url") or ""
        if value is None:
            return ""
        return value

    @classmethod
    def from_raw(
        cls, raw: Any, scraped_at: float | None = None
    ) -> "PackageSizeRecord":
        """Validate a raw service payload into a record.

        Raises:
            RecordValidationError: if the payload is not a mapping, misses a
                required field, or carries a false-positive version.
        """
        if not isinstance(raw, dict):
            raise RecordValidationError(f"expected a mapping, got {type(raw).__name__}")
        data = dict(raw)
        if scraped_at is not None:
            data["scraped_at"] = scraped_at
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise RecordValidationError(str(e)) from e

    def to_dict(self) -> dict[str, Any]:
        """Plain-JSON form used by the catalog export and the report."""
        return self.model_dump(mode="json")


def validate_record(raw: Any, scraped_at: float | None = None) -> PackageSizeRecord | None:
    """Return a validated record, or None if *raw* must be discarded."""
    try:
        return PackageSizeRecord.from_raw(raw, scraped_at=scraped_at)
    except RecordValidationError as e:
        name = raw.get("name", "?") if isinstance(raw, dict) else "?"
        logger.debug(f"Discarding invalid record for {name}: {e}")
        return None


class PackageMeta(BaseModel):
    """Per-package scrape bookkeeping."""

    model_config = ConfigDict(frozen=True)

    last_scraped: float | None = None
    error: bool = False

    def is_fresh(self, now: float, window_seconds: float) -> bool:
        """True if the last successful scrape is inside the window.

        An error-marked package is never fresh, whatever its age.
        """
        if self.error or self.last_scraped is None:
            return False
        return (now - self.last_scraped) < window_seconds

    def to_json_value(self) -> int | str | None:
        """``lastScraped`` value in the JSON catalog format (JS milliseconds)."""
        if self.error:
            return ERROR_SENTINEL
        if self.last_scraped is None:
            return None
        return round(self.last_scraped * 1000)

    @classmethod
    def from_json_value(cls, value: Any) -> "PackageMeta":
        if value == ERROR_SENTINEL:
            return cls(error=True)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return cls(last_scraped=value / 1000.0)
        return cls()


class DetectedLibrary(BaseModel):
    """One observation from the page-analysis feed.

    Untrusted input: only ``name`` is needed before lookup, and a record
    without it is kept (and later skipped) rather than rejected.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str | None = Field(None, validation_alias=AliasChoices("name", "npm"))
    version: str | None = None
    detector: str = "js"

    @field_validator("name", "version", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Alternative(NamedTuple):
    """A smaller replacement and the bytes saved by switching to it."""

    record: PackageSizeRecord
    savings: int


class Pairing(BaseModel):
    """An oversized library found on the page and its ranked alternatives."""

    model_config = ConfigDict(frozen=True)

    original: PackageSizeRecord
    alternatives: tuple[Alternative, ...]

    @property
    def best(self) -> Alternative:
        return self.alternatives[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "original": self.original.to_dict(),
            "alternatives": [
                {**alt.record.to_dict(), "savings": alt.savings}
                for alt in self.alternatives
            ],
        }
