"""Configuration loader for sites and engine settings."""
from pathlib import Path
from typing import List, Optional, Dict, Any
import yaml
from .models import SiteConfig, VALID_FETCH_METHODS
from .stealth.evasion import site_config_key
import os
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_SITES_FILES = ["sites.yml", "sites.yaml"]

SITE_FIELDS = {
    "base_url", "fetch_method", "http_first", "infinite_scroll", "headless",
    "stealth", "load_images", "timeout", "user_agent", "session_dir", "evasion", "warmup",
}


def load_sites(path: Optional[Path] = None) -> List[SiteConfig]:
    """Load and validate site definitions from a YAML file.

    Args:
        path: Path to sites.yml
    Returns:
        List of SiteConfig objects
    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If a site has an invalid fetch method or no name
    """
    if path is None:
        for fname in DEFAULT_SITES_FILES:
            if Path(fname).exists():
                path = Path(fname)
                break
        else:
            raise FileNotFoundError("No sites config file found (sites.yml)")
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sites file not found: {path}")
    with open(path, "r") as f:
        data = yaml.safe_load(f) or []
    # Support both top-level list and sites key
    if isinstance(data, dict) and 'sites' in data:
        sites_data = data['sites'] or []
    else:
        sites_data = data
    sites = []
    for item in sites_data:
        fetch_method = item.get("fetch_method", "browser")
        if fetch_method not in VALID_FETCH_METHODS:
            raise ValueError(f"Invalid fetch method for {item.get('name')}: {fetch_method}")
        unknown = set(item) - SITE_FIELDS - {"name"}
        if unknown:
            logger.warning(f"Ignoring unknown keys for site {item.get('name')}: {sorted(unknown)}")
        sites.append(SiteConfig(
            name=item.get("name", ""),
            **{key: value for key, value in item.items() if key in SITE_FIELDS}
        ))
    return sites


class Config:
    """Configuration manager with environment variable and .env file support."""

    def __init__(self, env_file: Optional[str] = None):
        """Initialize configuration.

        Args:
            env_file: Optional path to .env file
        """
        # Load .env file if it exists (fallback for local development)
        if env_file and os.path.exists(env_file):
            load_dotenv(env_file)
            logger.info(f"Loaded configuration from {env_file}")
        elif os.path.exists(".env"):
            load_dotenv(".env")
            logger.info("Loaded configuration from .env file")
        else:
            logger.debug("No .env file found, using environment variables only")

    def get(self, key: str, default: Any = None, required: bool = False) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found
            required: Whether the key is required

        Returns:
            Configuration value

        Raises:
            ValueError: If required key is missing
        """
        value = os.getenv(key, default)

        if required and value is None:
            raise ValueError(f"Required configuration key '{key}' is missing")

        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, str(default).lower())
        return str(value).lower() in ('true', '1', 'yes', 'on')

    def get_int(self, key: str, default: int = 0) -> int:
        """Get integer configuration value.

        Args:
            key: Configuration key
            default: Default integer value

        Returns:
            Integer value
        """
        value = self.get(key, str(default))
        try:
            return int(value)
        except (ValueError, TypeError):
            logger.warning(f"Invalid integer value for {key}: {value}, using default {default}")
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self.get(key, str(default))
        try:
            return float(value)
        except (ValueError, TypeError):
            logger.warning(f"Invalid float value for {key}: {value}, using default {default}")
            return default

    def get_list(self, key: str, default: Optional[list] = None, separator: str = ",") -> list:
        """Get list configuration value.

        Args:
            key: Configuration key
            default: Default list value
            separator: List item separator

        Returns:
            List value
        """
        if default is None:
            default = []

        value = self.get(key)
        if not value:
            return default

        return [item.strip() for item in str(value).split(separator) if item.strip()]

    def get_browser_config(self) -> Dict[str, Any]:
        """Get browser launch configuration.

        Returns:
            Browser configuration dictionary
        """
        return {
            'headless': self.get_bool('BROWSER_HEADLESS', True),
            'executable_path': self.get('BROWSER_EXECUTABLE_PATH'),
            'extra_args': self.get_list('BROWSER_EXTRA_ARGS'),
        }

    def get_performance_config(self) -> Dict[str, Any]:
        """Get page load limits.

        Returns:
            Performance configuration dictionary (timeouts in milliseconds)
        """
        return {
            'block_images': self.get_bool('SCRAPER_BLOCK_IMAGES', True),
            'network_idle_timeout': self.get_int('SCRAPER_NETWORK_IDLE_TIMEOUT', 2000),
            'max_load_timeout': self.get_int('SCRAPER_MAX_LOAD_TIMEOUT', 60000),
            'max_scroll_attempts': self.get_int('SCRAPER_MAX_SCROLL_ATTEMPTS', 15),
        }

    def get_http_config(self) -> Dict[str, Any]:
        """Get plain HTTP request configuration.

        Returns:
            HTTP configuration dictionary
        """
        return {
            'max_retries': self.get_int('SCRAPER_RETRY_ATTEMPTS', 3),
            'request_timeout': self.get_int('SCRAPER_REQUEST_TIMEOUT', 30000),
        }

    def get_session_config(self) -> Dict[str, Any]:
        """Get session persistence configuration.

        Returns:
            Session configuration dictionary
        """
        return {
            'session_dir': self.get('SCRAPER_SESSION_DIR'),
            'max_age_hours': self.get_float('SCRAPER_SESSION_MAX_AGE_HOURS', 24.0),
            'save_every': self.get_int('SCRAPER_SESSION_SAVE_EVERY', 5),
        }

    def get_proxy_config(self) -> Dict[str, Any]:
        """Get proxy configuration.

        Returns:
            Proxy configuration dictionary
        """
        return {
            'proxy_list': self.get_list('PROXY_LIST'),
            'proxy_list_path': self.get('PROXY_LIST_PATH'),
            'username': self.get('PROXY_USERNAME'),
            'password': self.get('PROXY_PASSWORD'),
        }

    def get_evasion_overrides(self, site_name: str) -> Dict[str, Any]:
        """Get evasion policy overrides for a site without dedicated constants.

        Reads SCRAPER_<SITEKEY>_MIN_DELAY, _MAX_DELAY, _SCROLL_PAGE,
        _MOUSE_MOVEMENTS, _MAX_SESSION_REQUESTS and _ROTATION_INTERVAL.

        Args:
            site_name: Site identifier

        Returns:
            Dictionary of the overrides that are set
        """
        prefix = f"SCRAPER_{site_config_key(site_name)}_"
        overrides: Dict[str, Any] = {}
        for name in ("min_delay", "max_delay", "max_session_requests"):
            if self.get(prefix + name.upper()) is not None:
                overrides[name] = self.get_int(prefix + name.upper())
        for name in ("scroll_page", "mouse_movements"):
            if self.get(prefix + name.upper()) is not None:
                overrides[name] = self.get_bool(prefix + name.upper())
        if self.get(prefix + "ROTATION_INTERVAL") is not None:
            overrides["rotation_interval"] = self.get_float(prefix + "ROTATION_INTERVAL")
        return overrides

    def get_web_config(self) -> Dict[str, Any]:
        """Get metrics server configuration.

        Returns:
            Web server configuration dictionary
        """
        return {
            'host': self.get('WEB_HOST', '127.0.0.1'),
            'port': self.get_int('WEB_PORT', 8000),
        }

    def get_all_config(self) -> Dict[str, Any]:
        """Get all configuration as a dictionary.

        Returns:
            Complete configuration dictionary
        """
        return {
            'browser': self.get_browser_config(),
            'performance': self.get_performance_config(),
            'http': self.get_http_config(),
            'session': self.get_session_config(),
            'proxy': self.get_proxy_config(),
            'web': self.get_web_config(),
        }
