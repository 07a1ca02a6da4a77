"""Tests for src/slimdeps/server.py."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from conftest import make_record, raw_payload

from slimdeps import server
from slimdeps.catalog import Catalog
from slimdeps.config import settings
from slimdeps.models import SuggestionMapError
from slimdeps.server import audit, catalog
from slimdeps.store import CatalogStore
from slimdeps.suggestions import SuggestionMap


@pytest.fixture(autouse=True)
def server_state(tmp_path, moment_catalog, moment_suggestions):
    """Point the server at a temporary store seeded with the moment catalog."""
    db_path = tmp_path / "catalog.db"
    store = CatalogStore(db_path)
    store.save(moment_catalog)
    with (
        patch.object(settings, "catalog_db_path", str(db_path)),
        patch.object(server, "_store", store),
        patch.object(server, "_suggestions", moment_suggestions),
        patch.object(server, "_catalog", None),
    ):
        yield store
    store.close()


# -----------------------------------------------------------------------
# audit
# -----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_audit_ranked_alternatives():
    """Audit returns ranked alternatives for a pinned version."""
    result = json.loads(await audit(libraries=[{"name": "moment", "version": "2.29.0"}]))
    assert result["score"] == 0
    assert [row["suggestion"] for row in result["items"]] == ["1. dayjs", "2. luxon"]
    assert result["total_savings"] == 18000


@pytest.mark.asyncio
async def test_audit_nothing_to_replace():
    result = json.loads(await audit(libraries=[{"name": "react"}]))
    assert result["score"] == 1
    assert result["items"] == []


@pytest.mark.asyncio
async def test_audit_detector_filter():
    result = json.loads(
        await audit(libraries=[{"name": "moment", "detector": "css"}], detectors=["js"])
    )
    assert result["items"] == []


@pytest.mark.asyncio
async def test_audit_invalid_suggestion_map(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("[1, 2]")
    with (
        patch.object(server, "_suggestions", None),
        patch.object(settings, "suggestions_path", str(bad)),
    ):
        result = await audit(libraries=[{"name": "moment"}])
    assert result.startswith("Error:")


# -----------------------------------------------------------------------
# catalog
# -----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_catalog_status():
    result = json.loads(await catalog(action="status"))
    assert result["stats"]["packages"] == 3
    assert result["tracked"] == 3
    assert result["suggestions"] == {"moment": ["dayjs", "luxon"]}
    assert result["missing"] == []
    # Seeded packages carry no scrape timestamp
    assert set(result["stale"]) == {"moment", "dayjs", "luxon"}


@pytest.mark.asyncio
async def test_catalog_lookup():
    result = json.loads(await catalog(action="lookup", package="moment"))
    assert set(result["versions"]) == {"2.29.1", "2.29.0", "latest"}
    assert result["alternatives"] == ["dayjs", "luxon"]


@pytest.mark.asyncio
async def test_catalog_lookup_missing_package():
    assert "Error: package is required" in await catalog(action="lookup")
    assert "not in the catalog" in await catalog(action="lookup", package="react")


@pytest.mark.asyncio
async def test_catalog_unknown_action():
    result = await catalog(action="purge")
    assert "Error: Unknown action 'purge'" in result


@pytest.mark.asyncio
async def test_catalog_export_import(tmp_path, server_state):
    out = tmp_path / "export.json"
    result = json.loads(await catalog(action="export", path=str(out)))
    assert result["packages"] == 3

    server_state.save(Catalog())
    result = json.loads(await catalog(action="import", path=str(out)))
    assert result["packages"] == 3
    assert server._catalog.latest("dayjs").gzip == 3000


@pytest.mark.asyncio
async def test_catalog_export_requires_path():
    assert "Error: path is required" in await catalog(action="export")
    assert "Error: path is required" in await catalog(action="import")


@pytest.mark.asyncio
async def test_catalog_import_invalid_file(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("not json")
    result = await catalog(action="import", path=str(bad))
    assert result.startswith("Error: import failed")


@pytest.mark.asyncio
async def test_catalog_build_swaps_snapshot(server_state):
    """A build replaces the in-memory snapshot used by later audits."""
    rebuilt = Catalog()
    rebuilt.put("moment", make_record("moment", "2.30.0", 19000), latest=True)
    rebuilt.put("dayjs", make_record("dayjs", "1.11.0", 2000), latest=True)

    with patch("slimdeps.server.refresh_store", new_callable=AsyncMock) as mock_refresh:
        mock_refresh.return_value = rebuilt
        result = json.loads(await catalog(action="build"))

    assert result["status"] == "built"
    assert mock_refresh.call_args.kwargs["freshness_days"] is None
    audited = json.loads(await audit(libraries=[{"name": "moment"}]))
    assert audited["total_savings"] == 17000


@pytest.mark.asyncio
async def test_catalog_build_force():
    with patch("slimdeps.server.refresh_store", new_callable=AsyncMock) as mock_refresh:
        mock_refresh.return_value = Catalog()
        await catalog(action="build", force=True)
    assert mock_refresh.call_args.kwargs["freshness_days"] == 0


@pytest.mark.asyncio
async def test_catalog_build_timeout():
    async def _stall(*args, **kwargs):
        await asyncio.sleep(30)

    with (
        patch("slimdeps.server.refresh_store", side_effect=_stall),
        patch.object(settings, "tool_timeout", 0.05),
    ):
        result = await catalog(action="build")
    assert "timed out" in result


@pytest.mark.asyncio
async def test_catalog_build_timeout_keeps_finished_packages(server_state):
    """Packages scraped before the tool deadline are saved and served."""

    async def _scrape(client, name, history=0):
        if name == "luxon":
            await asyncio.sleep(30)
        return [raw_payload(name, "9.0.0", 100)]

    with (
        patch("slimdeps.builder.scrape_package", side_effect=_scrape),
        patch.object(settings, "tool_timeout", 0.2),
        patch.object(settings, "package_timeout", 0),
    ):
        result = await catalog(action="build")

    assert "timed out" in result
    assert "saved" in result
    stored = server_state.load()
    assert stored.latest("moment").version == "9.0.0"
    assert stored.meta("dayjs").last_scraped is not None
    assert stored.latest("luxon").version == "1.26.0"
    assert stored.meta("luxon").error is False
    assert server._catalog == stored


# -----------------------------------------------------------------------
# Lifespan
# -----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_lifespan_fails_fast_on_invalid_map(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"moment": "dayjs"}))
    with (
        patch.object(server, "_suggestions", None),
        patch.object(settings, "suggestions_path", str(bad)),
    ):
        with pytest.raises(SuggestionMapError):
            async with server._lifespan(server.mcp):
                pass


@pytest.mark.asyncio
async def test_lifespan_loads_state(tmp_path):
    db_path = tmp_path / "other.db"
    with (
        patch.object(server, "_store", None),
        patch.object(server, "_suggestions", SuggestionMap({"qs": ["querystringify"]})),
        patch.object(settings, "catalog_db_path", str(db_path)),
    ):
        async with server._lifespan(server.mcp):
            assert server._store is not None
            assert len(server._catalog) == 0
        assert server._store is None
