"""Engine errors and retry/backoff decisions for page fetching."""
import logging
import random
import requests
from typing import Dict, Optional
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Base class for errors raised by the fetch engine."""


class EngineUnavailableError(EngineError):
    """The browser could not be launched.

    Usually a missing browser binary or system library; it is not retried.
    """


class SessionNotFoundError(EngineError, KeyError):
    """A session id is not tracked by the registry."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id

    def __str__(self) -> str:
        return self.args[0]


class PersistenceError(EngineError):
    """A session snapshot could not be read or written."""


class ErrorHandler:
    """Classifies fetch errors and decides on retries and backoff."""

    def __init__(self, notification_threshold: int = 5):
        """Initialize the error handler.

        Args:
            notification_threshold: Error count per site that triggers a critical log
        """
        self.error_counts: Dict[str, int] = {}
        self.notification_threshold = notification_threshold
        self.testing_mode = False  # Set to True to disable jitter in tests

    def classify(self, error: BaseException) -> str:
        """Return a short error type used for metrics and logs.

        Args:
            error: The exception that occurred

        Returns:
            One of "timeout", "navigation", "network", "http", "unknown"
        """
        if isinstance(error, (PlaywrightTimeoutError, requests.exceptions.Timeout)):
            return "timeout"
        if isinstance(error, PlaywrightError):
            message = str(error).lower()
            if "timeout" in message:
                return "timeout"
            return "navigation"
        if isinstance(error, requests.exceptions.HTTPError):
            return "http"
        if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.TooManyRedirects)):
            return "network"
        if isinstance(error, requests.exceptions.RequestException):
            return "network"
        return "unknown"

    def record_error(self, site_name: str) -> int:
        self.error_counts[site_name] = self.error_counts.get(site_name, 0) + 1
        return self.error_counts[site_name]

    def handle_error(self, error: BaseException, site_name: str,
                     retry_count: int = 0, max_retries: int = 3) -> bool:
        """Handle errors and determine if retry is needed.

        Args:
            error: The exception that occurred
            site_name: Name of the site
            retry_count: Current retry count
            max_retries: Maximum retry attempts

        Returns:
            True if retry should be attempted, False otherwise
        """
        self.record_error(site_name)

        if retry_count >= max_retries:
            logger.error(f"Max retries ({max_retries}) exceeded for {site_name}")
            return False

        if isinstance(error, requests.exceptions.HTTPError) and error.response is not None:
            return self.handle_http_status(error.response.status_code, site_name, count=False)

        if isinstance(error, requests.exceptions.TooManyRedirects):
            logger.error(f"Redirect loop for {site_name}: {error}")
            return False

        error_type = self.classify(error)
        if error_type in ("timeout", "network"):
            logger.warning(f"{error_type.capitalize()} error for {site_name}: {error}")
            return True
        if error_type == "navigation":
            message = str(error).lower()
            if "navigation" in message or "net::" in message:
                logger.warning(f"Playwright error for {site_name}: {error}")
                return True
            logger.error(f"Unhandled Playwright error for {site_name}: {error}")
            return False

        logger.error(f"Unhandled error for {site_name}: {type(error).__name__}: {error}")
        return False

    def handle_http_status(self, status_code: int, site_name: str, count: bool = True) -> bool:
        """Decide whether an HTTP status is worth retrying.

        Args:
            status_code: Response status
            site_name: Name of the site
            count: Whether to add the failure to the site's error count

        Returns:
            True if retry should be attempted, False otherwise
        """
        if count:
            self.record_error(site_name)

        if status_code == 429:
            logger.warning(f"Rate limit exceeded (429) for {site_name}")
            return True
        if status_code >= 500:
            logger.warning(f"Server error ({status_code}) for {site_name}")
            return True
        if status_code == 403:
            logger.error(f"Access forbidden (403) for {site_name}")
            return False
        if status_code == 404:
            logger.error(f"Resource not found (404) for {site_name}")
            return False
        logger.error(f"HTTP error ({status_code}) for {site_name}")
        return False

    def backoff_ms(self, base_delay: float, attempt: int, rate_limited: bool = False,
                   rng: Optional[random.Random] = None) -> float:
        """Exponential backoff for the given 1-based attempt.

        Args:
            base_delay: Base delay in milliseconds
            attempt: Attempt that just failed, starting at 1
            rate_limited: Use the longer branch reserved for 429 responses
            rng: Random source for jitter

        Returns:
            Delay in milliseconds
        """
        exponent = attempt if rate_limited else attempt - 1
        delay = base_delay * (2 ** max(exponent, 0))
        if self.testing_mode:
            return delay
        jitter = (rng or random).uniform(0, 0.1 * delay)
        return delay + jitter

    def check_notification_threshold(self, site_name: str) -> bool:
        """Log a critical message once a site reaches the error threshold.

        Args:
            site_name: Name of the site

        Returns:
            True if the threshold was reached
        """
        error_count = self.error_counts.get(site_name, 0)
        if error_count >= self.notification_threshold:
            logger.critical(f"High error rate detected for {site_name}: {error_count} errors")
            return True
        return False

    def reset(self, site_name: Optional[str] = None) -> None:
        if site_name is None:
            self.error_counts.clear()
        else:
            self.error_counts.pop(site_name, None)
