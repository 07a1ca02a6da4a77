"""Size catalog builder.

Keeps the catalog's size data fresh for every package the suggestion map
references. Packages are pulled from a bounded work queue (one at a time
by default, to stay within the size service's rate limits) and each
scrape runs under a hard timeout, so a single unresponsive package is
cancelled and error-marked instead of stalling the whole batch.

The input catalog is never mutated: the builder merges into a copy and
returns it. Persisting the result is the caller's job; a cancelled run
hands its finished packages to an optional ``on_cancel`` hook first.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from slimdeps.catalog import Catalog
from slimdeps.config import settings
from slimdeps.models import FetchError, PackageSizeRecord, validate_record
from slimdeps.sources.bundlephobia import new_client, scrape_package
from slimdeps.suggestions import SuggestionMap

if TYPE_CHECKING:
    from slimdeps.store import CatalogStore

# Grace period (seconds) given to a cancelled task to clean up resources
# before we abandon it entirely.
_CANCEL_GRACE_PERIOD = 5.0


async def with_timeout(
    coro, timeout: float, label: str, on_timeout: Callable[[], Any]
) -> Any:
    """Await *coro* with a hard timeout.

    Uses ``asyncio.wait`` rather than ``asyncio.wait_for`` so the deadline
    holds even if the inner task is slow to honour cancellation. On expiry
    the task is cancelled, given a short grace period, and the value of
    ``on_timeout()`` is returned (the hook may raise instead). A *timeout*
    of 0 or less disables the deadline.
    """
    if timeout <= 0:
        return await coro

    task = asyncio.create_task(coro)
    try:
        done, _pending = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if done:
        return task.result()

    task.cancel()
    logger.warning(f"'{label}' timed out after {timeout}s, cancelling...")
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=_CANCEL_GRACE_PERIOD)
    except (asyncio.CancelledError, TimeoutError, Exception):
        pass

    return on_timeout()


def _validate_all(
    name: str, payloads: list[dict[str, Any]], scraped_at: float
) -> list[PackageSizeRecord]:
    """Validated records in scrape order; invalid payloads are dropped."""
    records = []
    for raw in payloads:
        record = validate_record(raw, scraped_at=scraped_at)
        if record is not None:
            records.append(record)
    rejected = len(payloads) - len(records)
    if rejected:
        logger.debug(f"{name}: discarded {rejected} invalid record(s)")
    return records


def _apply_outcomes(
    catalog: Catalog,
    names: list[str],
    outcomes: dict[str, list[dict[str, Any]] | FetchError],
    now: float,
) -> tuple[int, int]:
    """Merge finished scrapes into *catalog* in scrape order.

    Names without an outcome (still in flight, or never started) are left
    untouched. Returns ``(scraped, failed)``.
    """
    scraped = failed = 0
    for name in names:
        if name not in outcomes:
            continue
        outcome = outcomes[name]
        if isinstance(outcome, FetchError):
            logger.error(f"Failed to scrape {name}: {outcome.reason}")
            catalog.mark_error(name)
            failed += 1
            continue

        records = _validate_all(name, outcome, now)
        if not records:
            logger.error(f"No valid size records for {name}")
            catalog.mark_error(name)
            failed += 1
            continue

        catalog.merge(name, records, scraped_at=now)
        scraped += 1
        for position, record in enumerate(records):
            suffix = " (latest)" if position == 0 else ""
            logger.debug(f"{name}: {record.version}{suffix} gzip={record.gzip}")
    return scraped, failed


async def build_catalog(
    suggestions: SuggestionMap,
    existing: Catalog | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    now: float | None = None,
    freshness_days: float | None = None,
    history_limit: int | None = None,
    concurrency: int | None = None,
    package_timeout: float | None = None,
    on_cancel: Callable[[Catalog], None] | None = None,
) -> Catalog:
    """Scrape stale packages and merge their sizes into a new catalog.

    Args:
        suggestions: Map whose keys and alternatives define the scrape set.
        existing: Previous catalog snapshot (not modified).
        client: Shared HTTP client; one is created for the run if omitted.
        now: Run timestamp (unix seconds), used for freshness and stamping.
        freshness_days: Skip packages scraped more recently than this.
        history_limit: Versions fetched for oversized packages.
        concurrency: Packages scraped in parallel (1 = sequential).
        package_timeout: Hard timeout per package, 0 disables it.
        on_cancel: Called with the partially updated catalog if the run is
            cancelled, before the cancellation propagates. Only packages
            that finished are merged into it.

    Returns:
        The updated catalog.
    """
    now = time.time() if now is None else now
    window = (
        settings.freshness_seconds()
        if freshness_days is None
        else freshness_days * 86400
    )
    history = settings.history_limit if history_limit is None else history_limit
    workers = max(1, settings.scrape_concurrency if concurrency is None else concurrency)
    timeout = settings.package_timeout if package_timeout is None else package_timeout

    catalog = existing.copy() if existing is not None else Catalog()
    originals = set(suggestions.originals)
    scrape_set = suggestions.scrape_set()
    total = len(scrape_set)
    start = time.monotonic()

    logger.info(f"Collecting {total} libraries...")

    queue: asyncio.Queue[tuple[int, str]] = asyncio.Queue()
    pending: list[str] = []
    skipped = 0
    for index, name in enumerate(scrape_set, start=1):
        if catalog.is_fresh(name, now, window):
            logger.info(f"({index}/{total}) {name}: skipping, scraped too recently")
            skipped += 1
            continue
        queue.put_nowait((index, name))
        pending.append(name)

    outcomes: dict[str, list[dict[str, Any]] | FetchError] = {}

    async def _worker(http: httpx.AsyncClient) -> None:
        while True:
            try:
                index, name = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            depth = history if name in originals else 0
            logger.info(f"({index}/{total}) {name}")

            def _timed_out() -> list[dict[str, Any]]:
                raise FetchError(name, f"timed out after {timeout}s")

            try:
                outcomes[name] = await with_timeout(
                    scrape_package(http, name, history=depth),
                    timeout,
                    f"scrape {name}",
                    _timed_out,
                )
            except FetchError as e:
                outcomes[name] = e
            except Exception as e:
                outcomes[name] = FetchError(name, f"unexpected error: {e!r}")
            finally:
                queue.task_done()

    try:
        if pending:
            if client is None:
                async with new_client() as http:
                    await asyncio.gather(
                        *(_worker(http) for _ in range(min(workers, len(pending))))
                    )
            else:
                await asyncio.gather(
                    *(_worker(client) for _ in range(min(workers, len(pending))))
                )
    except asyncio.CancelledError:
        scraped, failed = _apply_outcomes(catalog, pending, outcomes, now)
        logger.warning(
            f"Catalog build cancelled: {scraped} scraped, {failed} failed, "
            f"{len(pending) - scraped - failed} not finished"
        )
        if on_cancel is not None:
            on_cancel(catalog)
        raise

    scraped, failed = _apply_outcomes(catalog, pending, outcomes, now)

    elapsed = time.monotonic() - start
    logger.info(
        f"Catalog build done in {elapsed:.1f}s: {scraped} scraped, "
        f"{skipped} fresh, {failed} failed"
    )
    return catalog


async def refresh_store(
    store: CatalogStore, suggestions: SuggestionMap, **kwargs: Any
) -> Catalog:
    """Load the stored snapshot, rebuild it, and save the result.

    A cancelled run (timeout, Ctrl-C) still saves the packages it finished,
    in one transaction, so a rerun only scrapes what is left.
    """
    previous = store.load()
    catalog = await build_catalog(
        suggestions, previous, on_cancel=store.save, **kwargs
    )
    store.save(catalog)
    return catalog
