"""Pool of live browser sessions keyed by their configuration.

This module provides the SessionRegistry class which creates, reuses,
rotates and closes browser sessions for an engine.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional
import asyncio
import logging
import random
import uuid

from ..error_handling import PersistenceError, SessionNotFoundError
from ..models import Session, SessionConfig
from ..stealth.evasion import EvasionPolicy, get_evasion_policy, should_rotate
from ..stealth.fingerprint import (
    DEFAULT_GEOLOCATION,
    StealthStrategy,
    build_overrides,
    realistic_headers,
    render_init_script,
    resolve_fingerprint,
)
from .browser_pool import BrowserProcessManager
from .persistence import SessionStore
from .proxy import ProxyRotator

logger = logging.getLogger(__name__)

BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media"})


async def block_heavy_resources(route) -> None:
    """Route handler aborting images, stylesheets, fonts and media."""
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class SessionRegistry:
    """Creates and pools browser sessions.

    At most one session is registered per session key. A session past its
    evasion policy's request or age limit is closed and replaced on lookup.
    All registry mutations happen under one asyncio lock.
    """

    def __init__(self, process: BrowserProcessManager,
                 rng: Optional[random.Random] = None,
                 store: Optional[SessionStore] = None,
                 proxy_rotator: Optional[ProxyRotator] = None,
                 policy_provider: Callable[[str], EvasionPolicy] = get_evasion_policy,
                 clock: Optional[Callable[[], datetime]] = None) -> None:
        """Initialize the registry.

        Args:
            process: Manager of the shared browser process
            rng: Random source for fingerprints and ids
            store: Snapshot store for sessions with a session_dir
            proxy_rotator: Proxies for configurations without their own
            policy_provider: Maps a site name to its evasion policy
            clock: Source of the current time; datetime.now when omitted
        """
        self.process = process
        self.rng = rng or random.Random()
        self.store = store or SessionStore()
        self.proxy_rotator = proxy_rotator
        self.policy_provider = policy_provider
        self.clock = clock or (lambda: datetime.now())
        self._sessions: Dict[str, Session] = {}  # key -> session
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def get(self, session_id: str) -> Optional[Session]:
        for session in self._sessions.values():
            if session.id == session_id:
                return session
        return None

    async def get_session(self, config: SessionConfig) -> Session:
        """Get a live session for a configuration, creating one if needed.

        Args:
            config: Session configuration

        Returns:
            Live session

        Raises:
            EngineUnavailableError: If the browser cannot be launched
        """
        key = config.session_key()
        async with self._lock:
            session = self._sessions.get(key)
            if session is not None:
                now = self.clock()
                policy = self.policy_provider(config.site_name)
                if not should_rotate(session, policy, now):
                    session.touch(now)
                    return session
                logger.info(
                    f"Rotating session {session.id} for {config.site_name} "
                    f"after {session.request_count} requests, {session.age_minutes(now):.1f} min"
                )
                await self._close_locked(session)
            return await self._create_locked(config)

    async def close_session(self, session_id: str) -> bool:
        """Close a session and drop it from the registry.

        Args:
            session_id: Session identifier

        Returns:
            True if the session was closed, False if the id is unknown
        """
        async with self._lock:
            session = self.get(session_id)
            if session is None:
                logger.debug(f"Session {session_id} not found, nothing to close")
                return False
            await self._close_locked(session)
            return True

    async def rotate_session(self, session_id: str) -> Session:
        """Replace a session with a new one built from the same configuration.

        Args:
            session_id: Session to replace

        Returns:
            The new session, which has a different id

        Raises:
            SessionNotFoundError: If the id is unknown
        """
        async with self._lock:
            session = self.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            await self._close_locked(session)
            replacement = await self._create_locked(session.config)
            logger.info(f"Rotated session {session_id} -> {replacement.id}")
            return replacement

    async def close_all(self) -> int:
        """Close every tracked session.

        Returns:
            Number of sessions closed
        """
        async with self._lock:
            sessions = list(self._sessions.values())
            for session in sessions:
                await self._close_locked(session)
        logger.info(f"Closed {len(sessions)} sessions")
        return len(sessions)

    async def save_snapshot(self, session: Session) -> None:
        """Persist a session's cookies; failures are logged only."""
        try:
            await self.store.save(session)
        except PersistenceError as e:
            logger.warning(f"Failed to save session {session.id}: {e}")

    async def _close_locked(self, session: Session) -> None:
        # Unregister first so nobody can pick up a half-closed session
        if self._sessions.get(session.key) is session:
            del self._sessions[session.key]

        await self.save_snapshot(session)
        try:
            await session.context.close()
            logger.debug(f"Session {session.id} closed")
        except Exception as e:
            logger.warning(f"Error closing session {session.id}: {e}")

    def _new_session_id(self, key: str) -> str:
        suffix = uuid.UUID(int=self.rng.getrandbits(128), version=4).hex[:8]
        return f"{key}-{suffix}"

    async def _create_locked(self, config: SessionConfig) -> Session:
        browser = await self.process.ensure_process()

        strategy = StealthStrategy.for_config(config)
        profile = resolve_fingerprint(config, self.rng)
        proxy = config.proxy
        if proxy is None and self.proxy_rotator is not None:
            proxy = self.proxy_rotator.next_proxy()

        context_options = {
            'user_agent': profile.user_agent,
            'viewport': profile.viewport.as_dict(),
            'locale': profile.locale,
            'timezone_id': profile.timezone,
            'permissions': ['geolocation'],
            'geolocation': DEFAULT_GEOLOCATION,
            'extra_http_headers': realistic_headers(profile),
            'color_scheme': 'light',
        }
        if proxy is not None:
            context_options['proxy'] = proxy.as_playwright()

        context = await browser.new_context(**context_options)
        try:
            await context.add_init_script(script=render_init_script(build_overrides(profile, strategy)))
            page = await context.new_page()
            if not config.load_images:
                await page.route("**/*", block_heavy_resources)
        except Exception:
            try:
                await context.close()
            except Exception as close_error:
                logger.warning(f"Error closing half-built context: {close_error}")
            raise

        now = self.clock()
        session = Session(
            id=self._new_session_id(config.session_key()),
            key=config.session_key(),
            config=config,
            context=context,
            page=page,
            created_at=now,
            last_activity=now,
            fingerprint=profile,
        )

        # A bad snapshot costs the cookies, never the session
        try:
            await self.store.restore(session)
        except Exception as e:
            logger.warning(f"Could not restore session snapshot for {config.site_name}: {e}")

        self._sessions[session.key] = session
        logger.info(
            f"Created {strategy.value} session {session.id} for {config.site_name} "
            f"({profile.viewport.width}x{profile.viewport.height}, {profile.timezone})"
        )
        return session
