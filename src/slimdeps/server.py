"""slimdeps MCP Server - Main server definition."""

import asyncio
import json
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from slimdeps.builder import refresh_store, with_timeout
from slimdeps.catalog import Catalog
from slimdeps.config import settings
from slimdeps.engine import match
from slimdeps.models import SlimdepsError
from slimdeps.report import render_json
from slimdeps.store import CatalogStore
from slimdeps.suggestions import SuggestionMap, load_suggestion_map

# Configure logging
logger.remove()
logger.add(sys.stderr, level=settings.log_level)

# Module-level state (set during lifespan, or lazily on first use)
_store: CatalogStore | None = None
_suggestions: SuggestionMap | None = None
_catalog: Catalog | None = None

# Only one builder run at a time; audits keep reading the old snapshot.
_build_lock = asyncio.Lock()


def _ensure_state() -> tuple[CatalogStore, SuggestionMap, Catalog]:
    """Open the store and load the suggestion map on first use.

    Raises:
        SuggestionMapError: if the configured suggestion map is invalid.
    """
    global _store, _suggestions, _catalog

    if _suggestions is None:
        _suggestions = load_suggestion_map(settings.get_suggestions_path())
    if _store is None:
        _store = CatalogStore(settings.get_catalog_db_path())
    if _catalog is None:
        _catalog = _store.load()
    return _store, _suggestions, _catalog


@asynccontextmanager
async def _lifespan(_server: FastMCP):
    """Server lifespan: load suggestion map and catalog, close store on shutdown."""
    global _store, _suggestions, _catalog

    logger.info("Starting slimdeps MCP Server...")

    # Structurally invalid configuration fails fast here
    _, suggestions, catalog = _ensure_state()
    logger.info(
        f"Tracking {len(suggestions.scrape_set())} packages, "
        f"{len(catalog)} in catalog"
    )

    yield

    logger.info("Shutting down slimdeps MCP Server...")
    if _store:
        _store.close()
    _store = None
    _catalog = None
    _suggestions = None


# Initialize MCP server
mcp = FastMCP(
    name="slimdeps",
    instructions=(
        "Smaller-alternative advisor for JavaScript libraries. "
        "Use `audit` with the libraries detected on a page to get ranked, "
        "smaller replacements and their byte savings. "
        "Use `catalog` to build or inspect the package size catalog."
    ),
    lifespan=_lifespan,
)


async def _with_timeout(coro, action: str) -> str:
    """Run a tool coroutine under TOOL_TIMEOUT, returning an error on expiry."""
    timeout = settings.tool_timeout

    def _timed_out() -> str:
        logger.error(f"Tool '{action}' timed out after {timeout}s")
        return (
            f"Error: '{action}' timed out after {timeout}s. "
            "Packages finished before the deadline were saved; rerun to continue, "
            "or run `slimdeps build-catalog` without the tool deadline."
        )

    return await with_timeout(coro, timeout, f"tool {action}", _timed_out)


async def _do_build(force: bool) -> str:
    global _catalog

    store, suggestions, _ = _ensure_state()
    async with _build_lock:
        try:
            catalog = await refresh_store(
                store, suggestions, freshness_days=0 if force else None
            )
        except asyncio.CancelledError:
            # refresh_store saved the finished packages
            _catalog = store.load()
            raise
    _catalog = catalog
    return json.dumps({"status": "built", **store.stats()}, indent=2)


def _catalog_status(store: CatalogStore, suggestions: SuggestionMap, catalog: Catalog) -> dict:
    now = time.time()
    window = settings.freshness_seconds()
    tracked = suggestions.scrape_set()
    return {
        "database": str(settings.get_catalog_db_path()),
        "stats": store.stats(),
        "tracked": len(tracked),
        "suggestions": suggestions.to_dict(),
        "missing": [n for n in tracked if catalog.latest(n) is None],
        "stale": [n for n in tracked if not catalog.is_fresh(n, now, window)],
        "errors": [n for n in tracked if catalog.meta(n).error],
        "settings": {
            "freshness_days": settings.freshness_days,
            "history_limit": settings.history_limit,
            "scrape_concurrency": settings.scrape_concurrency,
            "package_timeout": settings.package_timeout,
        },
    }


@mcp.tool(
    description=(
        "Package size catalog. Actions: build|status|lookup|export|import. "
        "build scrapes stale packages (force=true rescrapes all)."
    ),
    annotations=ToolAnnotations(
        title="Catalog",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    ),
)
async def catalog(
    action: str,
    package: str | None = None,
    path: str | None = None,
    force: bool = False,
) -> str:
    """Build and inspect the package size catalog.

    Actions:
    - build: Scrape stale packages and save the catalog
    - status: Catalog statistics, stale / failed / missing packages
    - lookup: All catalogued versions of a package (package required)
    - export: Write the catalog as JSON (path required)
    - import: Replace the catalog with a JSON file (path required)
    """
    global _catalog

    try:
        store, suggestions, snapshot = _ensure_state()
    except (SlimdepsError, OSError) as e:
        return f"Error: {e}"

    match action:
        case "build":
            return await _with_timeout(_do_build(force), "catalog.build")

        case "status":
            return json.dumps(
                _catalog_status(store, suggestions, snapshot), indent=2, default=str
            )

        case "lookup":
            if not package:
                return "Error: package is required for lookup action"
            if package not in snapshot:
                return f"Error: '{package}' is not in the catalog"
            return json.dumps(
                {
                    "package": package,
                    "meta": snapshot.meta(package).model_dump(),
                    "versions": {
                        v: r.to_dict() for v, r in snapshot.versions(package).items()
                    },
                    "alternatives": list(suggestions.alternatives_for(package)),
                },
                indent=2,
                ensure_ascii=False,
            )

        case "export":
            if not path:
                return "Error: path is required for export action"
            count = store.export_json(Path(path).expanduser())
            return json.dumps({"status": "exported", "packages": count, "path": path})

        case "import":
            if not path:
                return "Error: path is required for import action"
            try:
                count = store.import_json(Path(path).expanduser())
            except (OSError, ValueError) as e:
                return f"Error: import failed: {e}"
            _catalog = store.load()
            return json.dumps({"status": "imported", "packages": count})

        case _:
            return (
                f"Error: Unknown action '{action}'. "
                "Valid actions: build, status, lookup, export, import"
            )


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
async def audit(
    libraries: list[dict[str, Any]],
    detectors: list[str] | None = None,
) -> str:
    """Suggest smaller alternatives for libraries detected on a page.

    libraries: [{"name": "moment", "version": "2.29.1", "detector": "js"}, ...]
    detectors: only consider detections from these detectors (default: all)
    Returns ranked alternatives with gzip byte savings, largest savings first.
    """
    try:
        _, suggestions, snapshot = _ensure_state()
    except (SlimdepsError, OSError) as e:
        return f"Error: {e}"

    pairings = match(libraries, suggestions, snapshot, detectors=detectors)
    logger.info(f"Audit: {len(libraries)} detected, {len(pairings)} replaceable")
    return render_json(pairings)


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
