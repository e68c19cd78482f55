"""Lifecycle of the single shared browser process.

This module provides the BrowserProcessManager class which lazily launches
one Chromium process for an engine and tears it down on shutdown.
"""

from typing import Any, Callable, List, Optional
import asyncio
import logging
from playwright.async_api import async_playwright, Browser, Playwright

from ..error_handling import EngineUnavailableError

logger = logging.getLogger(__name__)

# Flags for headless Chromium inside containers: no sandbox (no user
# namespaces), no GPU, single process, small /dev/shm.
LAUNCH_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-accelerated-2d-canvas',
    '--disable-gpu',
    '--disable-software-rasterizer',
    '--single-process',
    '--no-zygote',
    '--no-first-run',
    '--no-default-browser-check',
    '--disable-extensions',
    '--disable-default-apps',
    '--disable-sync',
    '--disable-translate',
    '--disable-background-networking',
    '--disable-background-timer-throttling',
    '--disable-backgrounding-occluded-windows',
    '--disable-renderer-backgrounding',
    '--disable-ipc-flooding-protection',
    '--disable-blink-features=AutomationControlled',
    '--hide-scrollbars',
    '--mute-audio',
]

IGNORED_DEFAULT_ARGS = ['--enable-automation']


class BrowserProcessManager:
    """Owns the one browser process of an engine.

    Features:
    - Lazy launch on first use
    - Single launch under concurrent first callers
    - Launch failures reported as EngineUnavailableError and not retried
    - Idempotent shutdown
    """

    def __init__(self, headless: bool = True, executable_path: Optional[str] = None,
                 extra_args: Optional[List[str]] = None,
                 playwright_factory: Optional[Callable[[], Any]] = None) -> None:
        """Initialize the process manager.

        Args:
            headless: Launch without a window
            executable_path: Browser binary to use instead of the bundled one
            extra_args: Flags appended to LAUNCH_ARGS
            playwright_factory: Returns an object with an async start(); defaults to async_playwright
        """
        self.headless = headless
        self.executable_path = executable_path
        self.extra_args = list(extra_args or [])
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self._playwright_factory = playwright_factory or async_playwright
        self._launch_lock = asyncio.Lock()
        self._launch_error: Optional[EngineUnavailableError] = None
        self.launch_count = 0

    @property
    def running(self) -> bool:
        return self.browser is not None

    def launch_options(self) -> dict:
        options = {
            'headless': self.headless,
            'args': LAUNCH_ARGS + self.extra_args,
            'ignore_default_args': IGNORED_DEFAULT_ARGS,
        }
        if self.executable_path:
            options['executable_path'] = self.executable_path
        return options

    async def ensure_process(self) -> Browser:
        """Return the live browser, launching it on first call.

        Returns:
            Playwright Browser

        Raises:
            EngineUnavailableError: If the browser cannot be launched
        """
        if self.browser is not None:
            return self.browser

        async with self._launch_lock:
            # Another caller may have finished launching while we waited
            if self.browser is not None:
                return self.browser
            if self._launch_error is not None:
                raise self._launch_error

            self.launch_count += 1
            try:
                self.playwright = await self._playwright_factory().start()
                self.browser = await self.playwright.chromium.launch(**self.launch_options())
            except Exception as e:
                logger.error(f"Failed to launch browser: {e}")
                await self._stop_playwright()
                self._launch_error = EngineUnavailableError(
                    f"Browser initialization failed: {e}. "
                    "Browser automation is unavailable in this environment."
                )
                raise self._launch_error from e

            logger.info("Browser process launched")
            return self.browser

    async def _stop_playwright(self) -> None:
        if self.playwright is None:
            return
        try:
            await self.playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping Playwright: {e}")
        finally:
            self.playwright = None

    async def shutdown(self) -> None:
        """Close the browser and stop Playwright. Safe to call repeatedly."""
        async with self._launch_lock:
            browser, self.browser = self.browser, None
            if browser is not None:
                try:
                    await browser.close()
                    logger.info("Browser process closed")
                except Exception as e:
                    logger.warning(f"Error closing browser: {e}")
            await self._stop_playwright()
            self._launch_error = None
