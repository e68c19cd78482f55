"""Browser session management and page fetching.

The module is organized into:
- browser_pool: Lifecycle of the shared browser process
- session_registry: Pool of browser sessions keyed by configuration
- headless: Page fetching through a session
- http_fetcher: Plain HTTP fetching with backoff
- engine: BrowserEngine facade owning all of the above
- base_fetcher: Site-level Fetcher with HTTP-first and rotate-and-retry
- persistence: Optional cookie snapshots on disk
- proxy: Proxy rotation for new sessions
"""

from .base_fetcher import Fetcher
from .browser_pool import BrowserProcessManager
from .engine import BrowserEngine
from .headless import FetchOrchestrator
from .http_fetcher import HttpFetcher
from .session_registry import SessionRegistry

__all__ = [
    'Fetcher',
    'BrowserEngine',
    'BrowserProcessManager',
    'FetchOrchestrator',
    'HttpFetcher',
    'SessionRegistry',
]
