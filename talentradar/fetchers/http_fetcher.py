"""Lightweight HTTP fetching for pages that need no rendering.

This module provides the HttpFetcher class which performs plain requests with
realistic headers and exponential backoff. Its results tell the caller when
to fall back to the browser.
"""

from typing import Awaitable, Callable, Dict, Optional
import asyncio
import logging
import random
import time
import requests
from requests.exceptions import RequestException

from ..error_handling import ErrorHandler
from ..metrics import MetricsCollector
from ..models import Cookie, FetchResult, ProxySettings, SessionConfig
from ..stealth.fingerprint import FingerprintProfile, plain_fingerprint, realistic_headers

logger = logging.getLogger(__name__)


class HttpFetcher:
    """Plain HTTP GET with retries.

    Features:
    - Headers matching a browser fingerprint
    - Up to max_retries attempts with exponential backoff
    - Longer backoff for 429 responses
    - No retry on 403
    - Failures returned as FetchResult values
    """

    def __init__(self, error_handler: Optional[ErrorHandler] = None, max_retries: int = 3,
                 timeout: int = 30000, metrics: Optional[MetricsCollector] = None,
                 rng: Optional[random.Random] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        """Initialize the HTTP fetcher.

        Args:
            error_handler: Retry and backoff decisions
            max_retries: Maximum number of attempts per fetch
            timeout: Request timeout in milliseconds
            metrics: Collector updated once per fetch
            rng: Random source for backoff jitter
            sleep: Async sleep taking seconds
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.error_handler = error_handler or ErrorHandler()
        self.max_retries = max_retries
        self.timeout = timeout
        self.metrics = metrics
        self.rng = rng or random.Random()
        self.sleep = sleep

    def _get(self, url: str, headers: Dict[str, str],
             proxies: Optional[Dict[str, str]]) -> requests.Response:
        return requests.get(url, headers=headers, proxies=proxies, timeout=self.timeout / 1000.0)

    async def _backoff(self, base_delay: float, attempt: int, rate_limited: bool = False) -> None:
        delay = self.error_handler.backoff_ms(base_delay, attempt, rate_limited=rate_limited, rng=self.rng)
        logger.debug(f"Backing off {delay:.0f}ms after attempt {attempt}")
        await self.sleep(delay / 1000.0)

    async def fetch(self, url: str, site_name: str, base_delay: float = 1000,
                    profile: Optional[FingerprintProfile] = None,
                    proxy: Optional[ProxySettings] = None) -> FetchResult:
        """Fetch a URL with plain HTTP.

        Args:
            url: URL to fetch
            site_name: Site the URL belongs to, for logs and error counts
            base_delay: Backoff base in milliseconds
            profile: Identity whose headers to send; the plain identity when omitted
            proxy: Proxy to route the request through

        Returns:
            FetchResult with source "http". A 403 or 429 status is kept on
            the failed result so the caller can fall back to the browser.
        """
        profile = profile or plain_fingerprint(SessionConfig(site_name=site_name))
        headers = realistic_headers(profile)
        proxies = proxy.as_requests() if proxy else None
        start = time.monotonic()
        result = None

        for attempt in range(1, self.max_retries + 1):
            logger.debug(f"HTTP request to {url} (attempt {attempt}/{self.max_retries})")
            try:
                response = await asyncio.to_thread(self._get, url, headers, proxies)
            except RequestException as e:
                result = self._failure(url, f"{type(e).__name__}: {e}", start)
                logger.warning(f"HTTP attempt {attempt} failed for {url}: {e}")
                if not self.error_handler.handle_error(e, site_name, retry_count=attempt - 1,
                                                       max_retries=self.max_retries):
                    break
                if attempt < self.max_retries:
                    await self._backoff(base_delay, attempt)
                continue

            status = response.status_code
            if status < 400:
                result = self._success(response, start)
                break

            result = self._failure(url, f"HTTP {status}", start, status=status)
            if not self.error_handler.handle_http_status(status, site_name):
                break
            if status == 429:
                # Rate limited: always take the longer wait, even after the last attempt
                await self._backoff(base_delay, attempt, rate_limited=True)
            elif attempt < self.max_retries:
                await self._backoff(base_delay, attempt)

        if self.metrics is not None:
            self.metrics.record_attempt(
                result.load_time, result.success, site=site_name,
                error_type=None if result.success else ("blocked" if result.blocked else "http"),
            )
            if result.blocked:
                self.metrics.record_blocked(site_name)

        if result.success:
            logger.info(f"HTTP fetch succeeded for {url} ({result.status})")
        else:
            logger.warning(f"HTTP fetch failed for {url}: {result.error}")
            self.error_handler.check_notification_threshold(site_name)
        return result

    @staticmethod
    def _elapsed(start: float) -> float:
        return (time.monotonic() - start) * 1000

    def _failure(self, url: str, error: str, start: float, status: int = 0) -> FetchResult:
        return FetchResult.failure(url, error, self._elapsed(start), status=status, source="http")

    def _success(self, response: requests.Response, start: float) -> FetchResult:
        cookies = [
            Cookie(
                name=cookie.name,
                value=cookie.value or "",
                domain=cookie.domain,
                path=cookie.path,
                expires=cookie.expires,
                http_only=cookie.has_nonstandard_attr("HttpOnly"),
                secure=bool(cookie.secure),
            )
            for cookie in response.cookies
        ]
        return FetchResult(
            html=response.text,
            final_url=response.url,
            status=response.status_code,
            headers=dict(response.headers),
            success=True,
            load_time=self._elapsed(start),
            cookies=cookies,
            source="http",
        )
