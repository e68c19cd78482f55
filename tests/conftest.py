"""Shared fixtures: fake Playwright objects and engines wired to them."""
import asyncio
import random
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from talentradar.config import Config
from talentradar.fetchers.engine import BrowserEngine
from talentradar.fetchers.proxy import ProxyRotator

SAMPLE_HTML = "<html><body><div class='job'>Python Developer</div></body></html>"
SAMPLE_COOKIES = [
    {"name": "sid", "value": "abc123", "domain": ".jobs.bg", "path": "/",
     "expires": -1, "httpOnly": True, "secure": True},
]


def make_response(status: int = 200, headers: Optional[dict] = None):
    response = MagicMock()
    response.status = status
    response.headers = headers or {"content-type": "text/html; charset=utf-8"}
    return response


def make_page(html: str = SAMPLE_HTML, status: int = 200, heights: Optional[List[int]] = None):
    """Fake page whose goto() records the URL and returns a response.

    Args:
        html: Markup returned by content()
        status: Status of the navigation response
        heights: Successive scrollHeight values; the last one repeats
    """
    page = MagicMock()
    page.url = "about:blank"
    page.response = make_response(status)

    async def goto(url, **kwargs):
        page.url = url
        return page.response

    page.goto = AsyncMock(side_effect=goto)
    page.wait_for_load_state = AsyncMock()
    page.content = AsyncMock(return_value=html)
    page.route = AsyncMock()
    page.mouse.move = AsyncMock()

    remaining = list(heights or [1000])

    async def evaluate(script, *args):
        if script == "document.body.scrollHeight":
            if len(remaining) > 1:
                return remaining.pop(0)
            return remaining[0]
        return None

    page.evaluate = AsyncMock(side_effect=evaluate)
    return page


def make_context(options: dict, page=None):
    context = MagicMock()
    context.options = options
    context.page = page or make_page()
    context.add_init_script = AsyncMock()
    context.new_page = AsyncMock(return_value=context.page)
    context.cookies = AsyncMock(return_value=list(SAMPLE_COOKIES))
    context.storage_state = AsyncMock(return_value={
        "cookies": list(SAMPLE_COOKIES),
        "origins": [{"origin": "https://www.jobs.bg",
                     "localStorage": [{"name": "consent", "value": "yes"}]}],
    })
    context.add_cookies = AsyncMock()
    context.close = AsyncMock()
    return context


class FakeBrowser:
    """Browser whose contexts are recorded for inspection."""

    def __init__(self):
        self.contexts = []
        self.new_context = AsyncMock(side_effect=self._new_context)
        self.close = AsyncMock()

    async def _new_context(self, **options):
        context = make_context(options)
        self.contexts.append(context)
        return context


class FakePlaywright:
    """Stands in for both async_playwright() and the started driver."""

    def __init__(self, browser: Optional[FakeBrowser] = None, launch_error: Optional[Exception] = None,
                 launch_delay: float = 0):
        self.browser = browser or FakeBrowser()
        self.launch_error = launch_error
        self.launch_delay = launch_delay
        self.chromium = MagicMock()
        self.chromium.launch = AsyncMock(side_effect=self._launch)
        self.stop = AsyncMock()
        self.start_calls = 0

    def __call__(self):
        return self

    async def start(self):
        self.start_calls += 1
        return self

    async def _launch(self, **options):
        if self.launch_delay:
            await asyncio.sleep(self.launch_delay)
        if self.launch_error is not None:
            raise self.launch_error
        return self.browser


@pytest.fixture
def fake_playwright():
    return FakePlaywright()


@pytest.fixture
def fake_sleep():
    """Async sleep that returns at once and records the requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def config(monkeypatch):
    """Configuration free of developer environment overrides."""
    for key in ("BROWSER_HEADLESS", "BROWSER_EXECUTABLE_PATH", "PROXY_LIST", "PROXY_LIST_PATH",
                "SCRAPER_SESSION_DIR", "SCRAPER_NETWORK_IDLE_TIMEOUT", "SCRAPER_SESSION_SAVE_EVERY",
                "SCRAPER_BLOCK_IMAGES", "SCRAPER_MAX_LOAD_TIMEOUT", "SCRAPER_MAX_SCROLL_ATTEMPTS"):
        monkeypatch.delenv(key, raising=False)
    return Config()


@pytest.fixture
def engine(config, fake_playwright, fake_sleep):
    """Engine on a fake browser with a seeded random source."""
    return BrowserEngine(
        config=config,
        rng=random.Random(1234),
        sleep=fake_sleep,
        playwright_factory=fake_playwright,
        proxy_rotator=ProxyRotator([]),
    )


@pytest.fixture
def make_playwright():
    """Factory for fake drivers with custom launch behaviour."""
    return FakePlaywright


@pytest.fixture
def page_factory():
    """Factory for fake pages, see make_page."""
    return make_page
