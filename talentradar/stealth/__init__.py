"""Anti-detection building blocks.

- fingerprint: browser identities, realistic headers and the property override table
- evasion: per-site delay, behaviour and session rotation policies
"""

from .fingerprint import (
    FingerprintProfile,
    PropertyOverride,
    StealthStrategy,
    build_overrides,
    generate_fingerprint,
    plain_fingerprint,
    realistic_headers,
    render_init_script,
    resolve_fingerprint,
)
from .evasion import (
    DEFAULT_POLICY,
    SITE_POLICIES,
    EvasionPolicy,
    get_evasion_policy,
    random_delay,
    should_rotate,
)

__all__ = [
    'FingerprintProfile',
    'PropertyOverride',
    'StealthStrategy',
    'build_overrides',
    'generate_fingerprint',
    'plain_fingerprint',
    'realistic_headers',
    'render_init_script',
    'resolve_fingerprint',
    'DEFAULT_POLICY',
    'SITE_POLICIES',
    'EvasionPolicy',
    'get_evasion_policy',
    'random_delay',
    'should_rotate',
]
