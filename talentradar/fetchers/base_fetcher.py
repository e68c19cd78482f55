"""Site-level page fetching.

This module contains the Fetcher class which picks the fetch path for a
configured site (plain HTTP first, or browser) and handles blocked or failed
browser fetches by rotating the site's session once.
"""

from dataclasses import replace
from typing import Dict, Optional
import logging

from ..config import Config
from ..error_handling import SessionNotFoundError
from ..models import FetchOptions, FetchResult, Session, SessionConfig, SiteConfig
from ..stealth.fingerprint import resolve_fingerprint
from .engine import BrowserEngine
from .http_fetcher import HttpFetcher

logger = logging.getLogger(__name__)


class Fetcher:
    """Fetches pages for configured sites.

    Features:
    - HTTP-first fetching with browser fallback on 403/429 or errors
    - One browser session per site, reused across fetches
    - Rotate-and-retry once on a failed or blocked browser fetch
    """

    def __init__(self, engine: Optional[BrowserEngine] = None,
                 http_fetcher: Optional[HttpFetcher] = None,
                 config: Optional[Config] = None) -> None:
        """Initialize the fetcher.

        Args:
            engine: Browser engine; None disables the browser path
            http_fetcher: Plain HTTP fetcher; built from config when omitted
            config: Engine configuration
        """
        self.config = config or (engine.config if engine else Config())
        self.engine = engine
        if http_fetcher is None:
            http_config = self.config.get_http_config()
            http_fetcher = HttpFetcher(
                error_handler=engine.error_handler if engine else None,
                max_retries=http_config['max_retries'],
                timeout=http_config['request_timeout'],
                metrics=engine.metrics if engine else None,
                rng=engine.rng if engine else None,
            )
        self.http_fetcher = http_fetcher
        self.sessions: Dict[str, Session] = {}

    async def fetch(self, url: str, site: SiteConfig) -> FetchResult:
        """Fetch a page using the site's configured method.

        Args:
            url: URL to fetch
            site: Site configuration

        Returns:
            FetchResult from whichever path produced the final answer
        """
        logger.info(f"Fetching {url} for {site.name} with method {site.fetch_method}")
        if self.engine is not None and site.evasion:
            self.engine.set_site_overrides(site.name, site.evasion)

        if site.fetch_method == "http" or site.http_first:
            result = await self._fetch_http(url, site)
            if result.success:
                return result
            if self.engine is None or not site.http_first:
                return result
            logger.warning(f"HTTP request failed ({result.error}), falling back to browser automation")

        return await self.fetch_with_browser(url, site)

    async def _fetch_http(self, url: str, site: SiteConfig) -> FetchResult:
        if self.engine is None:
            return await self.http_fetcher.fetch(url, site.name, base_delay=1000)

        # Same identity and proxy pool as the site's browser sessions
        policy = self.engine.evasion_policy(site.name)
        profile = resolve_fingerprint(site.to_session_config(), self.engine.rng)
        rotator = self.engine.registry.proxy_rotator
        proxy = rotator.next_proxy() if rotator is not None else None
        return await self.http_fetcher.fetch(url, site.name, base_delay=policy.min_delay,
                                             profile=profile, proxy=proxy)

    def _session_config(self, site: SiteConfig) -> SessionConfig:
        session_config = site.to_session_config()
        performance_config = self.config.get_performance_config()
        changes = {}
        if session_config.session_dir is None:
            session_dir = self.config.get_session_config()['session_dir']
            if session_dir:
                changes['session_dir'] = session_dir
        if not performance_config['block_images']:
            changes['load_images'] = True
        if session_config.timeout > performance_config['max_load_timeout']:
            changes['timeout'] = performance_config['max_load_timeout']
        return replace(session_config, **changes) if changes else session_config

    async def fetch_with_browser(self, url: str, site: SiteConfig) -> FetchResult:
        """Fetch a page through the site's browser session.

        A failed or blocked result rotates the session and retries once.

        Raises:
            RuntimeError: If no browser engine is configured
            EngineUnavailableError: If the browser cannot be launched
        """
        if self.engine is None:
            raise RuntimeError("Browser engine not available for browser-based fetching")

        options = FetchOptions(
            infinite_scroll=site.infinite_scroll,
            max_scroll_attempts=self.config.get_performance_config()['max_scroll_attempts'],
            warmup=site.warmup,
        )
        session = await self.engine.get_session(self._session_config(site))
        self.sessions[site.name] = session

        result = await self.engine.fetch_page(url, session, options)
        if result.success and not result.blocked:
            return result

        reason = f"status {result.status}" if result.blocked else result.error
        logger.warning(f"Browser fetch of {url} failed ({reason}), rotating session {session.id}")
        try:
            session = await self.engine.rotate_session(session.id)
        except SessionNotFoundError:
            # Already rotated or closed by another caller
            session = await self.engine.get_session(self._session_config(site))
        self.sessions[site.name] = session
        return await self.engine.fetch_page(url, session, options)

    async def close(self) -> None:
        """Close the sessions this fetcher opened."""
        if self.engine is None:
            return
        for site_name, session in list(self.sessions.items()):
            await self.engine.close_session(session.id)
            del self.sessions[site_name]
