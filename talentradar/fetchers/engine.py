"""Browser engine facade.

This module provides the BrowserEngine class which owns one browser process,
one session registry, one fetch orchestrator and one metrics collector, and
exposes the session and fetch operations used by site scrapers.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional
import asyncio
import logging
import random

from ..config import Config
from ..error_handling import ErrorHandler
from ..metrics import MetricsCollector
from ..models import EngineStats, FetchOptions, FetchResult, Session, SessionConfig
from ..stealth.evasion import EvasionPolicy, get_evasion_policy
from .browser_pool import BrowserProcessManager
from .headless import FetchOrchestrator
from .persistence import SessionStore
from .proxy import ProxyRotator
from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class BrowserEngine:
    """Session pool and page fetching over one shared browser.

    Several engines may coexist; each has its own browser, sessions and
    metrics. Use as an async context manager to shut the browser down on
    exit.
    """

    def __init__(self, config: Optional[Config] = None,
                 rng: Optional[random.Random] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 clock: Optional[Callable[[], datetime]] = None,
                 playwright_factory: Optional[Callable[[], Any]] = None,
                 metrics: Optional[MetricsCollector] = None,
                 proxy_rotator: Optional[ProxyRotator] = None) -> None:
        """Initialize the engine. Nothing is launched until the first session.

        Args:
            config: Engine configuration; a fresh Config when omitted
            rng: Random source for fingerprints, delays and behaviour
            sleep: Async sleep taking seconds
            clock: Source of the current time; datetime.now when omitted
            playwright_factory: Replacement for async_playwright
            metrics: Collector to update; a new one when omitted
            proxy_rotator: Proxies for sessions without their own; read from config when omitted
        """
        self.config = config or Config()
        self.rng = rng or random.Random()
        self.metrics = metrics or MetricsCollector()
        self.error_handler = ErrorHandler()
        self.site_overrides: Dict[str, Dict[str, Any]] = {}

        browser_config = self.config.get_browser_config()
        performance_config = self.config.get_performance_config()
        session_config = self.config.get_session_config()

        self.process = BrowserProcessManager(
            headless=browser_config['headless'],
            executable_path=browser_config['executable_path'],
            extra_args=browser_config['extra_args'],
            playwright_factory=playwright_factory,
        )
        self.store = SessionStore(max_age_hours=session_config['max_age_hours'])
        self.registry = SessionRegistry(
            self.process,
            rng=self.rng,
            store=self.store,
            proxy_rotator=proxy_rotator or ProxyRotator.from_config(self.config),
            policy_provider=self.evasion_policy,
            clock=clock,
        )
        self.orchestrator = FetchOrchestrator(
            self.metrics,
            rng=self.rng,
            sleep=sleep,
            error_handler=self.error_handler,
            policy_provider=self.evasion_policy,
            network_idle_timeout=performance_config['network_idle_timeout'],
            save_every=session_config['save_every'],
            snapshot_saver=self.registry.save_snapshot,
            clock=clock,
        )

    async def __aenter__(self) -> "BrowserEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    def set_site_overrides(self, site_name: str, overrides: Dict[str, Any]) -> None:
        """Register evasion overrides from a site definition."""
        self.site_overrides[site_name] = dict(overrides)

    def evasion_policy(self, site_name: str) -> EvasionPolicy:
        """Evasion policy for a site.

        Environment overrides take precedence over site definition overrides;
        both only apply to sites without built-in policies.
        """
        overrides = dict(self.site_overrides.get(site_name, {}))
        overrides.update(self.config.get_evasion_overrides(site_name))
        return get_evasion_policy(site_name, overrides)

    async def get_session(self, config: SessionConfig) -> Session:
        """Get a live session for a configuration.

        Raises:
            EngineUnavailableError: If the browser cannot be launched
        """
        return await self.registry.get_session(config)

    async def fetch_page(self, url: str, session: Session,
                         options: Optional[FetchOptions] = None) -> FetchResult:
        """Fetch a page through a session. Never raises for navigation failures."""
        return await self.orchestrator.fetch_page(url, session, options)

    async def close_session(self, session_id: str) -> bool:
        return await self.registry.close_session(session_id)

    async def close_all_sessions(self) -> int:
        return await self.registry.close_all()

    async def rotate_session(self, session_id: str) -> Session:
        """Replace a session with a fresh one for the same configuration.

        Raises:
            SessionNotFoundError: If the id is unknown
        """
        return await self.registry.rotate_session(session_id)

    def stats(self) -> EngineStats:
        return EngineStats(
            active_sessions=len(self.registry),
            total_requests=self.metrics.total_requests,
            average_load_time=self.metrics.average_load_time(),
            success_rate=self.metrics.success_rate(),
        )

    async def shutdown(self) -> None:
        """Close every session, then the browser process."""
        await self.close_all_sessions()
        await self.process.shutdown()
        logger.info("Browser engine shut down")
