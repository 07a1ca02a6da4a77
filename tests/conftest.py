"""Pytest configuration and fixtures."""

import pytest

from slimdeps.catalog import Catalog
from slimdeps.models import PackageSizeRecord
from slimdeps.suggestions import SuggestionMap


def make_record(
    name: str, version: str = "1.0.0", gzip: int = 1000, **extra
) -> PackageSizeRecord:
    """Build a valid size record with sensible defaults."""
    return PackageSizeRecord(
        name=name,
        version=version,
        gzip=gzip,
        size=extra.pop("size", gzip * 3),
        description=extra.pop("description", f"{name} description"),
        repository=extra.pop("repository", f"https://github.com/example/{name}"),
        **extra,
    )


def raw_payload(name: str, version: str = "1.0.0", gzip: int = 1000) -> dict:
    """Raw size-service payload, as returned by /api/size."""
    return {
        "name": name,
        "version": version,
        "gzip": gzip,
        "size": gzip * 3,
        "description": f"{name} description",
        "repository": f"https://github.com/example/{name}",
        "dependencyCount": 0,
    }


@pytest.fixture
def moment_catalog():
    """Catalog with moment (two versions), dayjs and luxon."""
    catalog = Catalog()
    catalog.put("moment", make_record("moment", "2.29.1", 20000), latest=True)
    catalog.put("moment", make_record("moment", "2.29.0", 21000))
    catalog.put("dayjs", make_record("dayjs", "1.10.4", 3000), latest=True)
    catalog.put("luxon", make_record("luxon", "1.26.0", 8000), latest=True)
    return catalog


@pytest.fixture
def moment_suggestions():
    return SuggestionMap({"moment": ["dayjs", "luxon"]})
