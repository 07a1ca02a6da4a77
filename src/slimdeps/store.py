"""SQLite persistence for the size catalog.

The catalog is small (a few hundred records), so it is always read and
written whole: ``load`` returns a fresh ``Catalog`` snapshot, ``save``
replaces the stored catalog inside a single transaction. A builder run
that dies before ``save`` leaves the previous snapshot intact.

JSON export/import uses the same shape as ``Catalog.to_json`` so existing
bundle size databases can be imported as a starting point.
"""

import json
import sqlite3
from pathlib import Path

from loguru import logger

from slimdeps.catalog import Catalog
from slimdeps.models import LATEST, PackageMeta, PackageSizeRecord


class CatalogStore:
    """SQLite-backed catalog storage."""

    def __init__(self, db_path: Path):
        self._db_path = db_path

        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 5000")

        self._create_tables()
        logger.debug(f"CatalogStore initialized at {db_path}")

    def _create_tables(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS packages (
                name TEXT PRIMARY KEY,
                latest_version TEXT,
                last_scraped REAL,
                error INTEGER NOT NULL DEFAULT 0,
                has_meta INTEGER NOT NULL DEFAULT 1
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS records (
                name TEXT NOT NULL,
                version TEXT NOT NULL,
                gzip INTEGER NOT NULL,
                size INTEGER,
                description TEXT,
                repository TEXT NOT NULL DEFAULT '',
                scraped_at REAL NOT NULL,
                PRIMARY KEY (name, version)
            )
        """)
        self._conn.commit()

    def load(self) -> Catalog:
        """Read the stored catalog as a new snapshot."""
        catalog = Catalog()
        packages = self._conn.execute(
            "SELECT name, latest_version, last_scraped, error, has_meta "
            "FROM packages ORDER BY rowid"
        ).fetchall()
        latest_of = {row["name"]: row["latest_version"] for row in packages}

        for row in self._conn.execute(
            "SELECT * FROM records ORDER BY rowid"
        ).fetchall():
            record = PackageSizeRecord(
                name=row["name"],
                version=row["version"],
                gzip=row["gzip"],
                size=row["size"],
                description=row["description"],
                repository=row["repository"],
                scraped_at=row["scraped_at"],
            )
            name = row["name"]
            catalog.put(name, record, latest=latest_of.get(name) == row["version"])

        for row in packages:
            if row["has_meta"]:
                catalog.set_meta(
                    row["name"],
                    PackageMeta(last_scraped=row["last_scraped"], error=bool(row["error"])),
                )
        return catalog

    def save(self, catalog: Catalog) -> None:
        """Replace the stored catalog with *catalog* atomically."""
        package_rows = []
        record_rows = []
        for name in catalog.names():
            versions = catalog.versions(name)
            latest = versions.get(LATEST)
            meta = catalog.meta(name)
            package_rows.append(
                (
                    name,
                    latest.version if latest else None,
                    meta.last_scraped,
                    int(meta.error),
                    int(catalog.has_meta(name)),
                )
            )
            for version, record in versions.items():
                if version == LATEST:
                    continue
                record_rows.append(
                    (
                        name,
                        version,
                        record.gzip,
                        record.size,
                        record.description,
                        record.repository,
                        record.scraped_at,
                    )
                )
            # A latest record whose version key is missing still has to persist
            if latest is not None and latest.version not in versions:
                record_rows.append(
                    (
                        name,
                        latest.version,
                        latest.gzip,
                        latest.size,
                        latest.description,
                        latest.repository,
                        latest.scraped_at,
                    )
                )

        with self._conn:
            self._conn.execute("DELETE FROM records")
            self._conn.execute("DELETE FROM packages")
            self._conn.executemany(
                """INSERT INTO packages
                   (name, latest_version, last_scraped, error, has_meta)
                   VALUES (?, ?, ?, ?, ?)""",
                package_rows,
            )
            self._conn.executemany(
                """INSERT INTO records
                   (name, version, gzip, size, description, repository, scraped_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                record_rows,
            )
        logger.debug(
            f"Saved catalog: {len(package_rows)} packages, {len(record_rows)} records"
        )

    def export_json(self, path: Path) -> int:
        """Write the stored catalog to *path* as JSON. Returns package count."""
        data = self.load().to_json()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info(f"Exported {len(data)} packages to {path}")
        return len(data)

    def import_json(self, path: Path) -> int:
        """Replace the stored catalog with the JSON catalog at *path*."""
        catalog = Catalog.from_json(json.loads(path.read_text(encoding="utf-8")))
        self.save(catalog)
        logger.info(f"Imported {len(catalog)} packages from {path}")
        return len(catalog)

    def stats(self) -> dict:
        """Get catalog statistics."""
        row = self._conn.execute(
            """
            SELECT COUNT(*) AS packages,
                   SUM(CASE WHEN error = 1 THEN 1 ELSE 0 END) AS errors,
                   MAX(last_scraped) AS last_scraped
            FROM packages
        """
        ).fetchone()
        records = self._conn.execute("SELECT COUNT(*) FROM records").fetchone()[0]
        return {
            "packages": row["packages"],
            "records": records,
            "errors": row["errors"] or 0,
            "last_scraped": row["last_scraped"],
        }

    def close(self) -> None:
        """Close database connection."""
        try:
            self._conn.close()
        except Exception:
            pass
