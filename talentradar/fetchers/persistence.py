"""Best-effort on-disk snapshots of session cookies and local storage."""

from typing import Any, Dict, List, Optional
import asyncio
import json
import logging
import pathlib
import time

from ..error_handling import PersistenceError
from ..models import Cookie, Session, SessionConfig

logger = logging.getLogger(__name__)


class SessionStore:
    """Reads and writes session snapshots as JSON files.

    One file per site and session key, so a restarted engine picks up the
    cookies of the previous run for the same configuration. Every failure is
    raised as PersistenceError; callers log it and carry on.
    """

    def __init__(self, max_age_hours: float = 24.0) -> None:
        """Initialize the store.

        Args:
            max_age_hours: Snapshots unused for longer than this are ignored
        """
        self.max_age_hours = max_age_hours

    @staticmethod
    def snapshot_path(config: SessionConfig) -> Optional[pathlib.Path]:
        if not config.session_dir:
            return None
        site = "".join(ch if ch.isalnum() or ch in ".-" else "_" for ch in config.site_name)
        return pathlib.Path(config.session_dir) / f"{site}-{config.session_key()}.json"

    async def save(self, session: Session) -> Optional[pathlib.Path]:
        """Write the session's cookies and local storage to disk.

        Returns:
            Path written, or None when persistence is disabled

        Raises:
            PersistenceError: If the snapshot cannot be captured or written
        """
        path = self.snapshot_path(session.config)
        if path is None:
            return None

        try:
            cookies = await session.context.cookies()
            storage_state = await session.context.storage_state()
        except Exception as e:
            raise PersistenceError(f"Could not capture session {session.id}: {e}") from e

        local_storage: Dict[str, str] = {}
        for origin in storage_state.get("origins", []):
            for item in origin.get("localStorage", []):
                local_storage[item["name"]] = item["value"]

        data = {
            "cookies": [Cookie.from_playwright(cookie).as_playwright() for cookie in cookies],
            "localStorage": local_storage,
            "createdAt": session.created_at.timestamp(),
            "lastUsed": time.time(),
            "siteName": session.config.site_name,
            "userAgent": session.config.user_agent or "",
        }

        try:
            await asyncio.to_thread(self._write, path, data)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write {path}: {e}") from e

        logger.debug(f"Session saved: {path}")
        return path

    async def load(self, config: SessionConfig) -> List[Cookie]:
        """Read the cookies of a fresh enough snapshot.

        Returns:
            Stored cookies; empty when there is no usable snapshot

        Raises:
            PersistenceError: If a snapshot exists but cannot be read or is malformed
        """
        path = self.snapshot_path(config)
        if path is None or not path.exists():
            return []

        try:
            data = await asyncio.to_thread(self._read, path)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"Malformed snapshot {path}: expected an object, got {type(data).__name__}")

        try:
            last_used = float(data.get("lastUsed", 0))
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed snapshot {path}: bad lastUsed {data.get('lastUsed')!r}") from e
        age_hours = (time.time() - last_used) / 3600
        if age_hours > self.max_age_hours:
            logger.debug(f"Snapshot {path} is {age_hours:.1f}h old, ignoring it")
            return []

        items = data.get("cookies", [])
        if not isinstance(items, list):
            raise PersistenceError(f"Malformed snapshot {path}: cookies is not a list")

        cookies = []
        for item in items:
            if isinstance(item, dict) and item.get("name") and item.get("domain"):
                cookies.append(Cookie.from_playwright(item))
            else:
                logger.debug(f"Skipping malformed cookie entry in {path}: {item!r}")
        return cookies

    @staticmethod
    def _read(path: pathlib.Path) -> Any:
        with open(path, "r") as f:
            return json.load(f)

    @staticmethod
    def _write(path: pathlib.Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(data, f, indent=2)

    async def restore(self, session: Session) -> int:
        """Add stored cookies to a new session's context.

        Returns:
            Number of cookies restored

        Raises:
            PersistenceError: If the snapshot cannot be read or applied
        """
        cookies = await self.load(session.config)
        if not cookies:
            return 0
        try:
            await session.context.add_cookies([cookie.as_playwright() for cookie in cookies])
        except Exception as e:
            raise PersistenceError(f"Could not restore cookies for {session.id}: {e}") from e
        logger.debug(f"Restored {len(cookies)} cookies for session {session.id}")
        return len(cookies)
