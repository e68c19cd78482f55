"""Headless browser page fetching with evasion behaviour.

This module provides the FetchOrchestrator class which drives one navigation
through a live session: policy delay, page settle, human-like behaviour,
optional infinite scroll and the final page snapshot.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional
import asyncio
import logging
import random
import time
from urllib.parse import urlparse

from ..error_handling import ErrorHandler
from ..metrics import MetricsCollector
from ..models import Cookie, FetchOptions, FetchResult, Session
from ..stealth.evasion import (
    EvasionPolicy,
    generate_mouse_movements,
    get_evasion_policy,
    random_delay,
)
from ..stealth.fingerprint import DEFAULT_VIEWPORT

logger = logging.getLogger(__name__)

NO_RESPONSE_ERROR = "No response received from page navigation"

SCROLL_HEIGHT_JS = "document.body.scrollHeight"


def home_page(url: str) -> str:
    """Root of the site a URL belongs to, e.g. "https://www.jobs.bg/x?y" -> "https://www.jobs.bg/"."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}/"


class FetchOrchestrator:
    """Runs page fetches through browser sessions.

    Features:
    - Randomized pre-navigation delay from the site's evasion policy
    - Bounded network-idle wait after the document is ready
    - Scroll and mouse simulation, never fatal
    - Attempt-capped infinite scroll
    - Failures returned as FetchResult values, never raised
    """

    def __init__(self, metrics: MetricsCollector,
                 rng: Optional[random.Random] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 error_handler: Optional[ErrorHandler] = None,
                 policy_provider: Callable[[str], EvasionPolicy] = get_evasion_policy,
                 network_idle_timeout: int = 2000,
                 save_every: int = 5,
                 snapshot_saver: Optional[Callable[[Session], Awaitable[None]]] = None,
                 clock: Optional[Callable[[], datetime]] = None) -> None:
        """Initialize the orchestrator.

        Args:
            metrics: Collector updated after every fetch
            rng: Random source for delays and behaviour
            sleep: Async sleep taking seconds
            error_handler: Classifies failures for metrics
            policy_provider: Maps a site name to its evasion policy
            network_idle_timeout: Upper bound of the network-idle wait in milliseconds
            save_every: Snapshot the session every this many requests
            snapshot_saver: Coroutine persisting a session; failures must not raise
            clock: Source of the current time; datetime.now when omitted
        """
        self.metrics = metrics
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.error_handler = error_handler or ErrorHandler()
        self.policy_provider = policy_provider
        self.network_idle_timeout = network_idle_timeout
        self.save_every = save_every
        self.snapshot_saver = snapshot_saver
        self.clock = clock or (lambda: datetime.now())

    async def _pause(self, milliseconds: float) -> None:
        await self.sleep(milliseconds / 1000.0)

    async def fetch_page(self, url: str, session: Session,
                         options: Optional[FetchOptions] = None) -> FetchResult:
        """Navigate a session's page to a URL and snapshot the result.

        The session's request count and activity time are updated first,
        whatever the outcome.

        Args:
            url: Page to load
            session: Live session to load it in
            options: Per-call options such as infinite scroll

        Returns:
            FetchResult; on failure html is empty, status is 0 and error is set
        """
        options = options or FetchOptions()
        site = session.config.site_name
        session.mark_active(self.clock())
        start = time.monotonic()

        try:
            snapshot = await self._navigate(url, session, options)
        except Exception as e:
            load_time = (time.monotonic() - start) * 1000
            error_type = self.error_handler.classify(e)
            self.error_handler.record_error(site)
            self.metrics.record_attempt(load_time, False, site=site, error_type=error_type)
            logger.error(f"Failed to fetch {url} ({error_type}): {e}")
            return FetchResult.failure(url, str(e) or type(e).__name__, load_time)

        load_time = (time.monotonic() - start) * 1000
        result = FetchResult(
            html=snapshot.html,
            final_url=snapshot.final_url,
            status=snapshot.status,
            headers=snapshot.headers,
            success=True,
            load_time=load_time,
            cookies=snapshot.cookies,
        )
        self.metrics.record_attempt(load_time, True, site=site)
        if result.blocked:
            self.metrics.record_blocked(site)
            logger.warning(f"Blocked-looking status {result.status} from {url} (session {session.id})")
        else:
            logger.debug(f"Fetched {url} in {load_time:.0f}ms with session {session.id}")

        if self.snapshot_saver is not None and self.save_every > 0 \
                and session.request_count % self.save_every == 0:
            await self.snapshot_saver(session)

        return result

    async def _navigate(self, url: str, session: Session, options: FetchOptions) -> FetchResult:
        page = session.page
        policy = self.policy_provider(session.config.site_name)

        if options.warmup and self.rng.random() < options.warmup_probability:
            await self._warmup(session, policy, options.warmup_url or home_page(url))

        delay = random_delay(policy, self.rng)
        logger.debug(f"Waiting {delay}ms before navigating to {url}")
        await self._pause(delay)

        response = await page.goto(url, wait_until="domcontentloaded", timeout=session.config.timeout)
        if response is None:
            raise RuntimeError(NO_RESPONSE_ERROR)

        await self._wait_for_network_idle(page)

        if policy.scroll_page or policy.mouse_movements:
            await self._simulate_human_behavior(session, policy)

        if options.infinite_scroll:
            attempts = await self._infinite_scroll(page, options.max_scroll_attempts)
            logger.debug(f"Infinite scroll finished after {attempts} attempts on {url}")

        html = await page.content()
        cookies = await session.context.cookies()
        return FetchResult(
            html=html,
            final_url=page.url,
            status=response.status,
            headers=dict(response.headers or {}),
            cookies=[Cookie.from_playwright(cookie) for cookie in cookies],
        )

    async def _warmup(self, session: Session, policy: EvasionPolicy, warmup_url: str) -> None:
        """Visit a page first and linger on it, as a reader arriving from the home page would.

        Failures are logged and never fail the fetch.
        """
        page = session.page
        try:
            logger.debug(f"Warm-up navigation to {warmup_url} for session {session.id}")
            await page.goto(warmup_url, wait_until="domcontentloaded", timeout=session.config.timeout)
            await self._pause(self.rng.randint(3000, 7000))
            await self._simulate_human_behavior(session, policy)
            await self._pause(self.rng.randint(2000, 5000))
        except Exception as e:
            logger.warning(f"Warm-up navigation to {warmup_url} failed: {e}")

    async def _wait_for_network_idle(self, page) -> None:
        # Pages with long-polling never go idle; the bound is enough
        try:
            await page.wait_for_load_state("networkidle", timeout=self.network_idle_timeout)
        except Exception as e:
            logger.debug(f"Network did not go idle within {self.network_idle_timeout}ms: {e}")

    async def _simulate_human_behavior(self, session: Session, policy: EvasionPolicy) -> None:
        """Scroll and move the mouse a little, as a reader would.

        Args:
            session: Session whose page to act on
            policy: Evasion policy deciding which behaviours run
        """
        page = session.page
        try:
            if policy.mouse_movements:
                viewport = session.fingerprint.viewport if session.fingerprint else DEFAULT_VIEWPORT
                for x, y in generate_mouse_movements(viewport, self.rng):
                    await page.mouse.move(x, y)
                    await self._pause(self.rng.randint(100, 300))

            if policy.scroll_page:
                distance = self.rng.randint(100, 600)
                await page.evaluate(f"window.scrollBy(0, {distance})")
                await self._pause(self.rng.randint(500, 1500))
                await page.evaluate(f"window.scrollBy(0, -{self.rng.randint(50, 250)})")
        except Exception as e:
            logger.debug(f"Could not simulate human behavior: {e}")

    async def _infinite_scroll(self, page, max_attempts: int) -> int:
        """Scroll until the page height settles or the attempt cap is hit.

        Args:
            page: Playwright page
            max_attempts: Maximum number of scroll rounds

        Returns:
            Number of scroll rounds performed
        """
        previous_height = await page.evaluate(SCROLL_HEIGHT_JS)
        attempts = 0
        while attempts < max_attempts:
            attempts += 1
            await page.evaluate(f"window.scrollTo(0, {int(previous_height * 0.8)})")
            await self._pause(self.rng.randint(800, 1500))
            await page.evaluate(f"window.scrollTo(0, {SCROLL_HEIGHT_JS})")
            await self._pause(self.rng.randint(1000, 2000))

            height = await page.evaluate(SCROLL_HEIGHT_JS)
            if height == previous_height:
                break
            previous_height = height

        await page.evaluate("window.scrollTo({top: 0, behavior: 'smooth'})")
        await self._pause(500)
        return attempts
