"""Per-site evasion policies.

A policy sets the delay before each navigation, whether to simulate scrolling
and mouse movement, and when a session must be rotated.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging
import random

from ..models import Session, Viewport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvasionPolicy:
    """Evasion tunables for one site.

    Attributes:
        min_delay: Shortest pre-navigation delay in milliseconds
        max_delay: Longest pre-navigation delay in milliseconds
        scroll_page: Scroll a little after the page loads
        mouse_movements: Move the mouse after the page loads
        max_session_requests: Fetches allowed before the session is rotated
        rotation_interval: Session lifetime in minutes
    """
    min_delay: int
    max_delay: int
    scroll_page: bool
    mouse_movements: bool
    max_session_requests: int
    rotation_interval: float

    def __post_init__(self):
        if self.min_delay < 0 or self.max_delay < self.min_delay:
            raise ValueError(f"Invalid delay range: {self.min_delay}-{self.max_delay}")
        if self.max_session_requests < 1:
            raise ValueError("max_session_requests must be at least 1")
        if self.rotation_interval <= 0:
            raise ValueError("rotation_interval must be positive")


DEFAULT_POLICY = EvasionPolicy(
    min_delay=1500,
    max_delay=4000,
    scroll_page=True,
    mouse_movements=False,
    max_session_requests=30,
    rotation_interval=45,
)

SITE_POLICIES: Dict[str, EvasionPolicy] = {
    # jobs.bg blocks aggressively: longer delays, short-lived sessions
    "jobs.bg": EvasionPolicy(
        min_delay=2000,
        max_delay=5000,
        scroll_page=True,
        mouse_movements=False,
        max_session_requests=20,
        rotation_interval=30,
    ),
    "dev.bg": EvasionPolicy(
        min_delay=1000,
        max_delay=3000,
        scroll_page=False,
        mouse_movements=False,
        max_session_requests=50,
        rotation_interval=60,
    ),
}

OVERRIDE_FIELDS = {
    "min_delay": int,
    "max_delay": int,
    "scroll_page": bool,
    "mouse_movements": bool,
    "max_session_requests": int,
    "rotation_interval": float,
}


def get_evasion_policy(site_name: str, overrides: Optional[Dict[str, Any]] = None) -> EvasionPolicy:
    """Return the evasion policy for a site.

    Sites with dedicated constants use them; any other site gets
    DEFAULT_POLICY with the configured overrides applied.

    Args:
        site_name: Site identifier
        overrides: Field values replacing the defaults for unknown sites

    Returns:
        EvasionPolicy for the site
    """
    if site_name in SITE_POLICIES:
        return SITE_POLICIES[site_name]
    if not overrides:
        return DEFAULT_POLICY

    values = {}
    for name, value in overrides.items():
        if name not in OVERRIDE_FIELDS or value is None:
            continue
        values[name] = OVERRIDE_FIELDS[name](value)
    return replace(DEFAULT_POLICY, **values)


def random_delay(policy: EvasionPolicy, rng: random.Random) -> int:
    """Pick a pre-navigation delay within the policy range, inclusive."""
    return rng.randint(policy.min_delay, policy.max_delay)


def should_rotate(session: Session, policy: EvasionPolicy, now: Optional[datetime] = None) -> bool:
    """Check the hard rotation limits for a session.

    Args:
        session: Session to check
        policy: Policy of the session's site
        now: Current time

    Returns:
        True once the request count or age limit is reached
    """
    if session.request_count >= policy.max_session_requests:
        return True
    return session.age_minutes(now) >= policy.rotation_interval


def generate_mouse_movements(viewport: Viewport, rng: random.Random) -> List[Tuple[int, int]]:
    """Three to seven random points inside the viewport."""
    count = rng.randint(3, 7)
    return [
        (rng.randint(0, viewport.width - 1), rng.randint(0, viewport.height - 1))
        for _ in range(count)
    ]


def site_config_key(site_name: str) -> str:
    """Environment-friendly key for a site name, e.g. "jobs.bg" -> "JOBSBG"."""
    return "".join(ch for ch in site_name if ch.isalnum()).upper()
