"""BundlePhobia size lookups with retry logic.

Version lists come from the npm registry (``time`` map, newest first);
sizes come from the BundlePhobia ``/api/size`` endpoint, one request per
version. Every request carries an explicit timeout, and transient failures
(5xx, connection errors) are retried with exponential backoff. Anything
else surfaces as ``FetchError`` for the builder to isolate.
"""

import asyncio
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from slimdeps.config import settings
from slimdeps.models import FetchError

_BASE_DELAY = 1.0  # seconds
_HEADERS = {"User-Agent": "slimdeps/1.0", "Accept": "application/json"}

# npm "time" keys that are not versions
_TIME_META_KEYS = frozenset({"created", "modified", "unpublished"})


def new_client() -> httpx.AsyncClient:
    """HTTP client shared by all lookups of one builder run."""
    return httpx.AsyncClient(
        timeout=settings.request_timeout,
        headers=_HEADERS,
        follow_redirects=True,
    )


async def _get_json(
    client: httpx.AsyncClient,
    url: str,
    package: str,
    params: dict[str, str] | None = None,
) -> Any:
    """GET *url* and decode JSON, retrying transient failures.

    Raises:
        FetchError: on a 4xx response, undecodable body, or once all
            retries are exhausted.
    """
    max_retries = max(1, settings.max_retries)
    last_error: str | None = None

    for attempt in range(1, max_retries + 1):
        try:
            response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            last_error = f"HTTP error: {status}"
            logger.warning(f"{url} HTTP {status} on attempt {attempt}/{max_retries}")

            # Only retry on server errors (5xx), not client errors (4xx)
            if status < 500:
                raise FetchError(package, last_error) from e

        except httpx.RequestError as e:
            last_error = f"Request error: {e!r}"
            logger.warning(
                f"{url} request error on attempt {attempt}/{max_retries}: {e!r}"
            )

        except ValueError as e:
            raise FetchError(package, f"invalid JSON from {url}: {e}") from e

        if attempt < max_retries:
            delay = _BASE_DELAY * (2 ** (attempt - 1))
            logger.debug(f"Retrying in {delay:.1f}s...")
            await asyncio.sleep(delay)

    raise FetchError(package, last_error or "All retry attempts failed")


async def fetch_recent_versions(
    client: httpx.AsyncClient, name: str, limit: int
) -> list[str]:
    """Return up to *limit* published versions of *name*, newest first.

    The ``latest`` dist-tag always comes first; pre-releases are skipped.
    """
    url = f"{settings.npm_registry_url.rstrip('/')}/{quote(name, safe='@')}"
    data = await _get_json(client, url, name)
    if not isinstance(data, dict):
        raise FetchError(name, "unexpected npm registry response")

    latest = (data.get("dist-tags") or {}).get("latest")
    published = data.get("versions")
    times = data.get("time") or {}

    candidates = [
        (stamp, version)
        for version, stamp in times.items()
        if version not in _TIME_META_KEYS
        and isinstance(stamp, str)
        and "-" not in version
        and (not isinstance(published, dict) or version in published)
    ]
    candidates.sort(reverse=True)

    versions: list[str] = [latest] if latest else []
    for _stamp, version in candidates:
        if version not in versions:
            versions.append(version)
    if not versions:
        raise FetchError(name, "npm registry lists no versions")
    return versions[: max(1, limit)]


async def fetch_size(
    client: httpx.AsyncClient, name: str, version: str | None = None
) -> dict[str, Any]:
    """Size stats for ``name@version`` (latest if *version* is None)."""
    package = f"{name}@{version}" if version else name
    data = await _get_json(
        client,
        f"{settings.bundlephobia_url.rstrip('/')}/api/size",
        name,
        params={"package": package},
    )
    if not isinstance(data, dict):
        raise FetchError(name, f"unexpected size response for {package}")
    if "error" in data:
        error = data["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise FetchError(name, f"{package}: {message}")
    return data


async def scrape_package(
    client: httpx.AsyncClient, name: str, history: int = 0
) -> list[dict[str, Any]]:
    """Fetch raw size payloads for *name*, most recent first.

    With ``history == 0`` only the latest version is sized. Otherwise up to
    *history* recent versions are sized; a version that fails is skipped as
    long as at least one succeeds.

    Raises:
        FetchError: if nothing at all could be fetched for *name*.
    """
    if history <= 0:
        return [await fetch_size(client, name)]

    versions = await fetch_recent_versions(client, name, history)
    logger.debug(f"{name}: sizing {len(versions)} versions")

    payloads: list[dict[str, Any]] = []
    last_error: FetchError | None = None
    for version in versions:
        try:
            payloads.append(await fetch_size(client, name, version))
        except FetchError as e:
            last_error = e
            logger.warning(f"Skipping {name}@{version}: {e.reason}")

    if not payloads:
        raise FetchError(
            name, last_error.reason if last_error else "no version could be sized"
        )
    return payloads
