"""Round-robin proxy rotation for new sessions."""
import logging
import pathlib
import threading
from typing import List, Optional

from ..config import Config
from ..models import ProxySettings

logger = logging.getLogger(__name__)


class ProxyRotator:
    """Hands out proxies in rotation.

    Proxies come from an explicit list, the PROXY_LIST environment variable
    (comma separated) or the file named by PROXY_LIST_PATH (one per line).
    """

    def __init__(self, proxies: Optional[List[str]] = None, username: Optional[str] = None,
                 password: Optional[str] = None) -> None:
        self.username = username
        self.password = password
        self.proxies: List[str] = list(proxies or [])
        self.current_index = 0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config) -> "ProxyRotator":
        """Build a rotator from environment configuration."""
        proxy_config = config.get_proxy_config()
        proxies = list(proxy_config['proxy_list'])

        # If no proxies in env, try to load from file
        path = proxy_config['proxy_list_path']
        if not proxies and path:
            proxy_file = pathlib.Path(path)
            if proxy_file.exists():
                try:
                    with open(proxy_file, "r") as f:
                        proxies = [line.strip() for line in f if line.strip() and not line.startswith("#")]
                except OSError as e:
                    logger.warning(f"Failed to load proxies from {proxy_file}: {e}")
            else:
                logger.warning(f"Proxy list file not found: {proxy_file}")

        logger.info(f"Loaded {len(proxies)} proxies")
        return cls(proxies, username=proxy_config['username'], password=proxy_config['password'])

    @property
    def enabled(self) -> bool:
        return bool(self.proxies)

    def next_proxy(self) -> Optional[ProxySettings]:
        """Get the next proxy in rotation.

        Returns:
            Next proxy or None if no proxies are configured
        """
        if not self.proxies:
            return None

        with self._lock:
            raw = self.proxies[self.current_index]
            self.current_index = (self.current_index + 1) % len(self.proxies)

        proxy = ProxySettings.from_url(raw)
        if not proxy.username and self.username:
            proxy = ProxySettings(proxy.server, self.username, self.password)
        return proxy
