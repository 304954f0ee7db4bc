"""
Data source handlers for the helpdesk tenant pipeline.

Responsible for retrieving data from the Freshdesk v2 API:
- Ticket search (paginated, rate limited)
- Contact lookup for requester enrichment
"""

import logging
from datetime import date
from typing import Iterator, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
)

from .config import FreshdeskConfig
from .models import RequesterRecord


logger = logging.getLogger(__name__)


class DataSourceError(Exception):
    """Base exception for data source errors."""
    pass


class FreshdeskAPIError(DataSourceError):
    """Error when communicating with the Freshdesk API."""
    pass


class RateLimitedError(FreshdeskAPIError):
    """The API answered 429; ``retry_after`` says how long to back off."""

    def __init__(self, retry_after: float):
        super().__init__(f"Rate limited, retry after {retry_after}s")
        self.retry_after = retry_after


def wait_retry_after(retry_state) -> float:
    """Tenacity wait strategy honoring the server's Retry-After."""
    exc = retry_state.outcome.exception()
    if isinstance(exc, RateLimitedError):
        return exc.retry_after
    return 0.0


def _parse_retry_after(value: Optional[str], default: float) -> float:
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return default


class FreshdeskClient:
    """
    Client for the Freshdesk v2 REST API.

    Authenticates with the API key as the basic-auth user.
    """

    DEFAULT_RETRY_AFTER = 2.0

    def __init__(self, config: FreshdeskConfig):
        """
        Initialize the Freshdesk client.

        Args:
            config: Freshdesk configuration with domain and credentials.
        """
        self._config = config
        self._client: Optional[httpx.Client] = None

    def __enter__(self) -> "FreshdeskClient":
        """Context manager entry."""
        self._client = httpx.Client(
            base_url=self._config.base_url,
            auth=(self._config.api_key, "x"),
            timeout=self._config.request_timeout,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        if self._client:
            self._client.close()
            self._client = None

    def _get(self, path: str, params: Optional[dict] = None) -> httpx.Response:
        if not self._client:
            raise RuntimeError("Client must be used within a context manager")

        try:
            response = self._client.get(path, params=params)
        except httpx.RequestError as e:
            logger.error(f"Request error calling {path}: {e}")
            raise FreshdeskAPIError(f"Request failed: {str(e)}") from e

        if response.status_code == 429:
            retry_after = _parse_retry_after(
                response.headers.get("Retry-After"), self.DEFAULT_RETRY_AFTER
            )
            raise RateLimitedError(retry_after)
        return response

    def search_tickets(self, query: str, page: int = 1) -> list[dict]:
        """
        Run one page of a ticket search.

        Args:
            query: Freshdesk search query, e.g. ``updated_at:>'2025-01-01'``.
            page: 1-based page number.

        Returns:
            The tickets of that page (empty when past the last page).

        Raises:
            FreshdeskAPIError: If the request fails after retries.
        """
        retrying = retry(
            stop=stop_after_attempt(self._config.max_retries),
            wait=wait_retry_after,
            retry=retry_if_exception_type(RateLimitedError),
            before_sleep=lambda retry_state: logger.warning(
                f"Rate limited on search page {page}, "
                f"waiting {retry_state.outcome.exception().retry_after}s"
            ),
            reraise=True,
        )
        response = retrying(self._get)(
            "/search/tickets", params={"query": f'"{query}"', "page": page}
        )

        if response.is_error:
            logger.error(f"HTTP {response.status_code} on search page {page}: {response.text}")
            if response.status_code == 400:
                logger.error(f"Query sent: {query}")
            raise FreshdeskAPIError(f"HTTP error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise FreshdeskAPIError(f"Invalid JSON on search page {page}") from e
        return data.get("results") or []

    def get_contact(self, requester_id) -> Optional[RequesterRecord]:
        """
        Look up a requester's name and email.

        Returns:
            RequesterRecord, or None if the contact could not be fetched.
        """
        retrying = retry(
            stop=stop_after_attempt(self._config.max_retries),
            wait=wait_retry_after,
            retry=retry_if_exception_type(RateLimitedError),
            reraise=True,
        )
        try:
            response = retrying(self._get)(f"/contacts/{requester_id}")
        except FreshdeskAPIError as e:
            logger.warning(f"Failed to fetch requester {requester_id}: {e}")
            return None

        if response.is_error:
            logger.warning(f"Failed to fetch requester {requester_id}: {response.status_code}")
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"Failed to fetch requester {requester_id}: invalid JSON")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Failed to fetch requester {requester_id}: unexpected payload")
            return None
        return RequesterRecord(name=data.get("name"), email=data.get("email"))


def minus_one_month(day: date) -> date:
    """First day of the month before ``day``'s month."""
    if day.month == 1:
        return date(day.year - 1, 12, 1)
    return date(day.year, day.month - 1, 1)


def iter_month_windows(
    start: date,
    stop: date,
    max_months: int,
) -> Iterator[tuple[date, date]]:
    """
    Walk backwards from ``start`` to ``stop`` a calendar month at a time.

    Yields:
        ``(upper, lower)`` pairs, newest window first. The last window is
        clipped at ``stop``.
    """
    upper = start
    months = 0
    while upper > stop and months < max_months:
        lower = max(minus_one_month(upper), stop)
        yield upper, lower
        upper = lower
        months += 1
