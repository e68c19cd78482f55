"""Data models for the talentradar fetch engine."""
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List
from datetime import datetime
from urllib.parse import urlparse
import hashlib

BLOCKED_STATUSES = (403, 429)


@dataclass(frozen=True)
class Viewport:
    """Browser viewport size in CSS pixels."""
    width: int
    height: int

    def as_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class ProxySettings:
    """Proxy server with optional credentials.

    Attributes:
        server: Proxy URL, e.g. "http://10.0.0.1:3128"
        username: Optional proxy user
        password: Optional proxy password
    """
    server: str
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_url(cls, url: str) -> "ProxySettings":
        """Build settings from a URL that may embed credentials."""
        parsed = urlparse(url if "://" in url else f"http://{url}")
        server = f"{parsed.scheme}://{parsed.hostname}"
        if parsed.port:
            server = f"{server}:{parsed.port}"
        return cls(server=server, username=parsed.username, password=parsed.password)

    def as_playwright(self) -> Dict[str, str]:
        proxy = {"server": self.server}
        if self.username:
            proxy["username"] = self.username
        if self.password:
            proxy["password"] = self.password
        return proxy

    def as_requests(self) -> Dict[str, str]:
        url = self.server
        if self.username:
            scheme, _, rest = self.server.partition("://")
            credentials = self.username
            if self.password:
                credentials = f"{credentials}:{self.password}"
            url = f"{scheme}://{credentials}@{rest}"
        return {"http": url, "https": url}


@dataclass(frozen=True)
class SessionConfig:
    """Caller-supplied configuration for one browser session.

    The configuration is fixed for the session's lifetime. The site name,
    user agent and headless flag together form the session key.

    Attributes:
        site_name: Site identifier (e.g. "jobs.bg", "dev.bg")
        headless: Run the browser without a window
        viewport: Fixed viewport; randomized or default when omitted
        session_dir: Directory for cookie snapshots (persistence disabled when None)
        stealth: Use a randomized fingerprint instead of the plain identity
        proxy: Proxy to route the session through
        timeout: Navigation timeout in milliseconds
        user_agent: Fixed user agent string
        load_images: Load images, stylesheets, fonts and media
    """
    site_name: str
    headless: bool = True
    viewport: Optional[Viewport] = None
    session_dir: Optional[str] = None
    stealth: bool = True
    proxy: Optional[ProxySettings] = None
    timeout: int = 30000
    user_agent: Optional[str] = None
    load_images: bool = False

    def __post_init__(self):
        """Validate required fields."""
        if not self.site_name or not isinstance(self.site_name, str) or not self.site_name.strip():
            raise ValueError("Site name is required and must be a non-empty string")
        if self.timeout <= 0:
            raise ValueError("Timeout must be a positive number of milliseconds")

    def session_key(self) -> str:
        """Deterministic registry key for this configuration."""
        base = f"{self.site_name}-{self.user_agent or 'default'}-{str(self.headless).lower()}"
        return hashlib.md5(base.encode("utf-8")).hexdigest()[:8]


@dataclass
class Session:
    """A live browser session owned by the engine.

    Attributes:
        id: Unique session identifier, fresh for every created session
        key: Registry key shared by all sessions built from the same configuration
        config: Configuration the session was built from
        context: Playwright browser context
        page: Active page of the context
        created_at: Creation time
        last_activity: Time of the last lookup or fetch
        request_count: Number of fetches made through the session
        fingerprint: Identity the context was created with
    """
    id: str
    key: str
    config: SessionConfig
    context: Any
    page: Any
    created_at: datetime = field(default_factory=lambda: datetime.now())
    last_activity: datetime = field(default_factory=lambda: datetime.now())
    request_count: int = 0
    fingerprint: Any = None

    def touch(self, now: Optional[datetime] = None) -> None:
        """Move last activity forward without counting a request."""
        now = now or datetime.now()
        if now > self.last_activity:
            self.last_activity = now

    def mark_active(self, now: Optional[datetime] = None) -> None:
        """Count one request and update the activity time."""
        self.request_count += 1
        self.touch(now)

    def age_minutes(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now()
        return (now - self.created_at).total_seconds() / 60.0


@dataclass(frozen=True)
class Cookie:
    """A cookie captured from a browser context."""
    name: str
    value: str
    domain: str = ""
    path: str = "/"
    expires: Optional[float] = None
    http_only: bool = False
    secure: bool = False

    @classmethod
    def from_playwright(cls, data: Dict[str, Any]) -> "Cookie":
        return cls(
            name=data.get("name", ""),
            value=data.get("value", ""),
            domain=data.get("domain", ""),
            path=data.get("path", "/"),
            expires=data.get("expires"),
            http_only=bool(data.get("httpOnly", False)),
            secure=bool(data.get("secure", False)),
        )

    def as_playwright(self) -> Dict[str, Any]:
        cookie = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "httpOnly": self.http_only,
            "secure": self.secure,
        }
        if self.expires is not None:
            cookie["expires"] = self.expires
        return cookie


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch, successful or not.

    Failures are values: HTML is empty, status is 0 and ``error`` says what
    went wrong. A 403/429 status is reported as-is so the caller can decide
    whether to rotate the session.

    Attributes:
        html: Page markup
        final_url: URL after redirects
        status: HTTP status code (0 when no response was received)
        headers: Response headers
        success: Whether the fetch completed
        error: Error message for failed fetches
        load_time: Elapsed time in milliseconds
        cookies: Cookie jar snapshot at completion
        source: "browser" or "http"
    """
    html: str
    final_url: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None
    load_time: float = 0.0
    cookies: List[Cookie] = field(default_factory=list)
    source: str = "browser"

    @classmethod
    def failure(cls, url: str, error: str, load_time: float = 0.0,
                status: int = 0, source: str = "browser") -> "FetchResult":
        return cls(
            html="",
            final_url=url,
            status=status,
            headers={},
            success=False,
            error=error or "Unknown error",
            load_time=load_time,
            cookies=[],
            source=source,
        )

    @property
    def blocked(self) -> bool:
        """True when the status looks like bot detection or throttling."""
        return self.status in BLOCKED_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FetchOptions:
    """Per-call fetch options.

    Attributes:
        infinite_scroll: Scroll until the page height settles
        max_scroll_attempts: Cap on scroll rounds
        warmup: Sometimes visit the site home page before the target
        warmup_url: Page to warm up on; the target's home page when omitted
        warmup_probability: Chance of a warm-up visit when warmup is set
    """
    infinite_scroll: bool = False
    max_scroll_attempts: int = 15
    warmup: bool = False
    warmup_url: Optional[str] = None
    warmup_probability: float = 0.3


@dataclass(frozen=True)
class EngineStats:
    """Engine-wide statistics; averages and rates are derived."""
    active_sessions: int
    total_requests: int
    average_load_time: float
    success_rate: float


VALID_FETCH_METHODS = {"browser", "http"}


@dataclass
class SiteConfig:
    """Represents a configured job site.

    Attributes:
        name: Site identifier, also used to pick the evasion policy
        base_url: Site home page
        fetch_method: "browser" or "http"
        http_first: Try a plain request before rendering
        infinite_scroll: Scroll listing pages until their height settles
        headless: Run the browser headless
        stealth: Use randomized fingerprints
        load_images: Load heavy resources
        timeout: Navigation timeout in milliseconds
        user_agent: Fixed user agent
        session_dir: Cookie snapshot directory
        evasion: Overrides for the site's evasion policy
        warmup: Sometimes visit the home page before fetching
    """
    name: str
    base_url: str = ""
    fetch_method: str = "browser"
    http_first: bool = False
    infinite_scroll: bool = False
    headless: bool = True
    stealth: bool = True
    load_images: bool = False
    timeout: int = 30000
    user_agent: Optional[str] = None
    session_dir: Optional[str] = None
    evasion: Dict[str, Any] = field(default_factory=dict)
    warmup: bool = False

    def __post_init__(self):
        """Validate required fields."""
        if not self.name or not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("Site name is required and must be a non-empty string")
        if self.fetch_method not in VALID_FETCH_METHODS:
            raise ValueError(f"Invalid fetch method: {self.fetch_method}")

    def to_session_config(self) -> SessionConfig:
        return SessionConfig(
            site_name=self.name,
            headless=self.headless,
            session_dir=self.session_dir,
            stealth=self.stealth,
            timeout=self.timeout,
            user_agent=self.user_agent,
            load_images=self.load_images,
        )
