"""Browser identities and the fingerprint override table.

Every function here is pure: randomness comes from the ``random.Random``
passed in, so seeding it makes profiles reproducible.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import json
import random

from ..models import SessionConfig, Viewport


class StealthStrategy(Enum):
    """How a session's browser identity is chosen."""
    PLAIN = "plain"
    RANDOMIZED = "randomized"

    @classmethod
    def for_config(cls, config: SessionConfig) -> "StealthStrategy":
        return cls.RANDOMIZED if config.stealth else cls.PLAIN


@dataclass(frozen=True)
class FingerprintProfile:
    """A consistent set of browser identity attributes.

    Attributes:
        viewport: Window size
        user_agent: User-Agent header and navigator.userAgent
        platform: navigator.platform
        vendor: navigator.vendor
        timezone: IANA timezone id
        languages: Ordered navigator.languages
        sec_ch_ua: Client-hint brand list, empty for browsers that do not send it
        sec_ch_platform: Client-hint platform name
        hardware_concurrency: navigator.hardwareConcurrency
    """
    viewport: Viewport
    user_agent: str
    platform: str
    vendor: str
    timezone: str
    languages: Tuple[str, ...]
    sec_ch_ua: str = ""
    sec_ch_platform: str = ""
    hardware_concurrency: int = 8

    @property
    def locale(self) -> str:
        return self.languages[0]

    @property
    def is_chromium(self) -> bool:
        return bool(self.sec_ch_ua)


@dataclass(frozen=True)
class BrowserFamily:
    """User agents that share a platform, vendor and client-hint brands."""
    name: str
    user_agents: Tuple[str, ...]
    platform: str
    vendor: str
    sec_ch_ua: str
    sec_ch_platform: str
    viewports: Tuple[Viewport, ...]


WINDOWS_VIEWPORTS = (
    Viewport(1920, 1080), Viewport(1366, 768), Viewport(1536, 864),
    Viewport(1600, 900), Viewport(1280, 720),
)
MAC_VIEWPORTS = (Viewport(1440, 900), Viewport(1680, 1050), Viewport(1920, 1080))

CHROME_BRANDS = '"Google Chrome";v="131", "Chromium";v="131", "Not_A Brand";v="24"'
EDGE_BRANDS = '"Microsoft Edge";v="131", "Chromium";v="131", "Not_A Brand";v="24"'

BROWSER_FAMILIES: Tuple[BrowserFamily, ...] = (
    BrowserFamily(
        name="chrome-windows",
        user_agents=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
        ),
        platform="Win32",
        vendor="Google Inc.",
        sec_ch_ua=CHROME_BRANDS,
        sec_ch_platform="Windows",
        viewports=WINDOWS_VIEWPORTS,
    ),
    BrowserFamily(
        name="chrome-mac",
        user_agents=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
        ),
        platform="MacIntel",
        vendor="Google Inc.",
        sec_ch_ua=CHROME_BRANDS,
        sec_ch_platform="macOS",
        viewports=MAC_VIEWPORTS,
    ),
    BrowserFamily(
        name="edge-windows",
        user_agents=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
        ),
        platform="Win32",
        vendor="Google Inc.",
        sec_ch_ua=EDGE_BRANDS,
        sec_ch_platform="Windows",
        viewports=WINDOWS_VIEWPORTS,
    ),
    BrowserFamily(
        name="firefox-windows",
        user_agents=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:132.0) Gecko/20100101 Firefox/132.0",
        ),
        platform="Win32",
        vendor="",
        sec_ch_ua="",
        sec_ch_platform="",
        viewports=WINDOWS_VIEWPORTS,
    ),
    BrowserFamily(
        name="firefox-mac",
        user_agents=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:132.0) Gecko/20100101 Firefox/132.0",
        ),
        platform="MacIntel",
        vendor="",
        sec_ch_ua="",
        sec_ch_platform="",
        viewports=MAC_VIEWPORTS,
    ),
)

TIMEZONES = ("Europe/Sofia", "Europe/London", "Europe/Berlin", "Europe/Paris", "America/New_York")
LANGUAGE_SETS = (
    ("en-US", "en"),
    ("en-GB", "en"),
    ("bg-BG", "bg", "en"),
    ("en-US", "bg", "en"),
)
HARDWARE_CONCURRENCY = (4, 8, 12, 16)

DEFAULT_USER_AGENT = BROWSER_FAMILIES[0].user_agents[0]
DEFAULT_VIEWPORT = Viewport(1366, 768)
DEFAULT_TIMEZONE = "Europe/Sofia"
DEFAULT_LANGUAGES = ("en-US", "en")
DEFAULT_GEOLOCATION = {"latitude": 42.6977, "longitude": 23.3219}  # Sofia


def family_for_user_agent(user_agent: str) -> BrowserFamily:
    """Find the family whose platform and vendor match a user agent."""
    for family in BROWSER_FAMILIES:
        if user_agent in family.user_agents:
            return family

    is_mac = "Macintosh" in user_agent or "Mac OS X" in user_agent
    if "Firefox/" in user_agent:
        name = "firefox-mac" if is_mac else "firefox-windows"
    elif "Edg/" in user_agent:
        name = "edge-windows"
    else:
        name = "chrome-mac" if is_mac else "chrome-windows"
    return next(family for family in BROWSER_FAMILIES if family.name == name)


def _profile_from_family(family: BrowserFamily, user_agent: str, rng: random.Random,
                         viewport: Optional[Viewport]) -> FingerprintProfile:
    return FingerprintProfile(
        viewport=viewport or rng.choice(family.viewports),
        user_agent=user_agent,
        platform=family.platform,
        vendor=family.vendor,
        timezone=rng.choice(TIMEZONES),
        languages=rng.choice(LANGUAGE_SETS),
        sec_ch_ua=family.sec_ch_ua,
        sec_ch_platform=family.sec_ch_platform,
        hardware_concurrency=rng.choice(HARDWARE_CONCURRENCY),
    )


def generate_fingerprint(rng: random.Random, viewport: Optional[Viewport] = None,
                         user_agent: Optional[str] = None) -> FingerprintProfile:
    """Generate a randomized, internally consistent profile.

    Args:
        rng: Random source
        viewport: Fixed viewport to keep instead of a random one
        user_agent: Fixed user agent; platform and vendor follow it

    Returns:
        A new FingerprintProfile
    """
    if user_agent:
        return fingerprint_for_user_agent(user_agent, rng, viewport)
    family = rng.choice(BROWSER_FAMILIES)
    return _profile_from_family(family, rng.choice(family.user_agents), rng, viewport)


def fingerprint_for_user_agent(user_agent: str, rng: random.Random,
                               viewport: Optional[Viewport] = None) -> FingerprintProfile:
    return _profile_from_family(family_for_user_agent(user_agent), user_agent, rng, viewport)


def plain_fingerprint(config: SessionConfig) -> FingerprintProfile:
    """The fixed identity used when stealth is off."""
    user_agent = config.user_agent or DEFAULT_USER_AGENT
    family = family_for_user_agent(user_agent)
    return FingerprintProfile(
        viewport=config.viewport or DEFAULT_VIEWPORT,
        user_agent=user_agent,
        platform=family.platform,
        vendor=family.vendor,
        timezone=DEFAULT_TIMEZONE,
        languages=DEFAULT_LANGUAGES,
        sec_ch_ua=family.sec_ch_ua,
        sec_ch_platform=family.sec_ch_platform,
    )


def resolve_fingerprint(config: SessionConfig, rng: random.Random) -> FingerprintProfile:
    """Pick the identity for a new session according to its stealth flag."""
    if StealthStrategy.for_config(config) is StealthStrategy.RANDOMIZED:
        return generate_fingerprint(rng, viewport=config.viewport, user_agent=config.user_agent)
    return plain_fingerprint(config)


def accept_language(languages: Tuple[str, ...]) -> str:
    """Accept-Language value with descending quality factors."""
    parts = []
    for index, language in enumerate(languages):
        if index == 0:
            parts.append(language)
        else:
            parts.append(f"{language};q={max(0.1, 1.0 - index * 0.1):.1f}")
    return ",".join(parts)


def realistic_headers(profile: FingerprintProfile) -> Dict[str, str]:
    """Request headers matching the profile's browser family.

    Chromium-based browsers send client hints; Firefox does not.
    """
    headers = {
        "User-Agent": profile.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
        "Accept-Language": accept_language(profile.languages),
        "Accept-Encoding": "gzip, deflate, br",
        "Cache-Control": "max-age=0",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
    }
    if profile.is_chromium:
        headers["sec-ch-ua"] = profile.sec_ch_ua
        headers["sec-ch-ua-mobile"] = "?0"
        headers["sec-ch-ua-platform"] = f'"{profile.sec_ch_platform}"'
    return headers


class _Undefined:
    """JavaScript ``undefined`` in the override table."""

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _Undefined()


@dataclass(frozen=True)
class JsFunction:
    """JavaScript source placed verbatim in the override table, for callable properties."""
    source: str


@dataclass(frozen=True)
class PropertyOverride:
    """One spoofed browser property: ``target.name`` returns ``value``."""
    target: str
    name: str
    value: Any = field(default=None)


CHROME_PLUGINS = [
    {"name": "Chrome PDF Plugin", "filename": "internal-pdf-viewer", "description": "Portable Document Format"},
    {"name": "Chrome PDF Viewer", "filename": "mhjfbmdgcfjbbpaeojofohoefgiehjai", "description": ""},
    {"name": "Native Client", "filename": "internal-nacl-plugin", "description": ""},
]
CHROME_RUNTIME = {"runtime": {}, "app": {"isInstalled": False}}
NETWORK_CONNECTION = {"downlink": 10, "effectiveType": "4g", "onchange": None, "rtt": 100, "saveData": False}
# A desktop on mains power
BATTERY = JsFunction(
    "() => Promise.resolve({charging: true, chargingTime: 0, dischargingTime: Infinity, level: 1})"
)


def build_overrides(profile: FingerprintProfile,
                    strategy: StealthStrategy = StealthStrategy.RANDOMIZED) -> List[PropertyOverride]:
    """Build the override table applied to every page of a context.

    The plain strategy only hides automation markers; the randomized one also
    aligns navigator and screen properties with the profile and reports a
    broadband connection and a charged battery.
    """
    overrides = [
        PropertyOverride("navigator", "webdriver", UNDEFINED),
        PropertyOverride("navigator", "languages", list(profile.languages)),
        PropertyOverride("navigator", "plugins", CHROME_PLUGINS if profile.is_chromium else []),
    ]
    if profile.is_chromium:
        overrides.append(PropertyOverride("window", "chrome", CHROME_RUNTIME))
    if strategy is StealthStrategy.PLAIN:
        return overrides

    width, height = profile.viewport.width, profile.viewport.height
    overrides.extend([
        PropertyOverride("navigator", "platform", profile.platform),
        PropertyOverride("navigator", "vendor", profile.vendor),
        PropertyOverride("navigator", "hardwareConcurrency", profile.hardware_concurrency),
        PropertyOverride("screen", "width", width),
        PropertyOverride("screen", "height", height),
        PropertyOverride("screen", "availWidth", width),
        PropertyOverride("screen", "availHeight", height - 40),
        PropertyOverride("screen", "colorDepth", 24),
        PropertyOverride("screen", "pixelDepth", 24),
        PropertyOverride("navigator", "connection", NETWORK_CONNECTION),
        PropertyOverride("navigator", "getBattery", BATTERY),
    ])
    return overrides


def _js_value(value: Any) -> str:
    if value is UNDEFINED:
        return "undefined"
    if isinstance(value, JsFunction):
        return f"({value.source})"
    return json.dumps(value)


def render_init_script(overrides: List[PropertyOverride]) -> str:
    """Render the override table as a context init script."""
    lines = []
    for override in overrides:
        lines.append(
            f"try {{ Object.defineProperty({override.target}, {json.dumps(override.name)}, "
            f"{{get: () => {_js_value(override.value)}, configurable: true}}); }} catch (e) {{}}"
        )
    return "\n".join(lines)
