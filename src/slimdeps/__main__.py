"""slimdeps entry point."""

import sys
from pathlib import Path


def _configure_logging() -> None:
    from loguru import logger

    from slimdeps.config import settings

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)


def _build_catalog(force: bool = False) -> None:
    """Scrape stale packages and save the catalog.

    Run this periodically (e.g. from cron):
        slimdeps build-catalog
        slimdeps build-catalog --force   # ignore the freshness window
    """
    import asyncio

    from slimdeps.builder import refresh_store
    from slimdeps.config import settings
    from slimdeps.store import CatalogStore
    from slimdeps.suggestions import load_suggestion_map

    suggestions = load_suggestion_map(settings.get_suggestions_path())
    store = CatalogStore(settings.get_catalog_db_path())
    try:
        asyncio.run(
            refresh_store(store, suggestions, freshness_days=0 if force else None)
        )
        stats = store.stats()
        print(
            f"Catalog saved to {settings.get_catalog_db_path()}: "
            f"{stats['packages']} packages, {stats['records']} records, "
            f"{stats['errors']} failed"
        )
    finally:
        store.close()


def _transfer(direction: str, path: str) -> None:
    """Export the catalog to, or import it from, a JSON file."""
    from slimdeps.config import settings
    from slimdeps.store import CatalogStore

    store = CatalogStore(settings.get_catalog_db_path())
    try:
        if direction == "export":
            count = store.export_json(Path(path).expanduser())
            print(f"Exported {count} packages to {path}")
        else:
            count = store.import_json(Path(path).expanduser())
            print(f"Imported {count} packages from {path}")
    finally:
        store.close()


def _audit(path: str) -> None:
    """Print the report for a JSON list of detected libraries."""
    import json

    from slimdeps.config import settings
    from slimdeps.engine import match
    from slimdeps.report import render_json
    from slimdeps.store import CatalogStore
    from slimdeps.suggestions import load_suggestion_map

    detected = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
    suggestions = load_suggestion_map(settings.get_suggestions_path())
    store = CatalogStore(settings.get_catalog_db_path())
    try:
        snapshot = store.load()
    finally:
        store.close()
    print(render_json(match(detected, suggestions, snapshot)))


def _cli() -> None:
    """CLI dispatcher: server (default), build-catalog, export, import, audit."""
    command = sys.argv[1] if len(sys.argv) >= 2 else ""

    if command == "build-catalog":
        _configure_logging()
        _build_catalog(force="--force" in sys.argv[2:])
    elif command in ("export", "import", "audit"):
        if len(sys.argv) < 3:
            print(f"Usage: slimdeps {command} PATH", file=sys.stderr)
            sys.exit(2)
        _configure_logging()
        if command == "audit":
            _audit(sys.argv[2])
        else:
            _transfer(command, sys.argv[2])
    else:
        from slimdeps.server import main

        main()


if __name__ == "__main__":
    _cli()
