"""Best of JS static API download with retry logic."""

import asyncio

import httpx
from loguru import logger

from bestofjs_mcp.config import settings

_BASE_DELAY = 1.0  # seconds


class DataUnavailableError(RuntimeError):
    """The projects dataset could not be downloaded or parsed."""


def _check_payload(data) -> dict:
    """Validate the document shape: an object with `projects` and `tags` lists."""
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    for key in ("projects", "tags"):
        if not isinstance(data.get(key), list):
            raise ValueError(f"missing or invalid '{key}' list")
    return data


async def fetch_project_data(url: str | None = None) -> dict:
    """Download the JSON document holding every project and tag.

    Retries up to FETCH_RETRIES times with exponential backoff on
    transient failures (connection errors, timeouts, 5xx responses).
    Client errors (4xx) and malformed documents are not retried.

    Args:
        url: Document URL (defaults to DATA_URL)

    Returns:
        Parsed document: ``{"projects": [...], "tags": [...]}``

    Raises:
        DataUnavailableError: If every attempt failed.
    """
    url = url or settings.data_url
    max_retries = settings.resolve_fetch_retries()
    logger.info(f"Fetching JSON data from {url}")

    last_error: str | None = None

    async with httpx.AsyncClient(
        timeout=settings.fetch_timeout, follow_redirects=True
    ) as client:
        for attempt in range(1, max_retries + 1):
            try:
                response = await client.get(url, headers={"Accept": "application/json"})
                response.raise_for_status()
                data = _check_payload(response.json())
                logger.info(
                    f"Fetched {len(data['projects'])} projects "
                    f"and {len(data['tags'])} tags"
                )
                return data

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                last_error = f"HTTP error: {status}"
                logger.warning(
                    f"Data fetch HTTP {status} on attempt {attempt}/{max_retries}"
                )

                # Only retry on server errors (5xx), not client errors (4xx)
                if status < 500:
                    break

            except httpx.RequestError as e:
                last_error = f"Request error: {e!r}"
                logger.warning(
                    f"Data fetch request error on attempt {attempt}/{max_retries}: {e!r}"
                )

            except ValueError as e:
                # JSON decode errors are ValueErrors too
                last_error = f"Invalid JSON document: {e}"
                logger.error(f"Data fetch returned an invalid document: {e}")
                break

            # Exponential backoff before retry (skip on last attempt)
            if attempt < max_retries:
                delay = _BASE_DELAY * (2 ** (attempt - 1))
                logger.debug(f"Retrying in {delay:.1f}s...")
                await asyncio.sleep(delay)

    error_msg = last_error or "All retry attempts failed"
    logger.error(f"Data fetch from {url} failed: {error_msg}")
    raise DataUnavailableError(error_msg)
