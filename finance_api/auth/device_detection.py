"""Coarse device classification from user-agent strings.

Used to label active sessions so a user can tell their devices apart and so
suspicious-session detection can count distinct device types.
"""

import re

DEVICE_MOBILE = "Mobile"
DEVICE_TABLET = "Tablet"
DEVICE_WINDOWS = "Desktop - Windows"
DEVICE_MAC = "Desktop - Mac"
DEVICE_LINUX = "Desktop - Linux"
DEVICE_DESKTOP = "Desktop"

# Order matters: form-factor markers before OS markers so a phone with a
# desktop-like UA still counts as mobile
_DEVICE_PATTERNS = [
    (re.compile(r"mobile"), DEVICE_MOBILE),
    (re.compile(r"tablet|ipad"), DEVICE_TABLET),
    (re.compile(r"windows"), DEVICE_WINDOWS),
    (re.compile(r"mac"), DEVICE_MAC),
    (re.compile(r"linux"), DEVICE_LINUX),
]


def classify_device(user_agent: str | None) -> str:
    """Map a user-agent string to a device label.

    Args:
        user_agent: The User-Agent header value

    Returns:
        One of the DEVICE_* labels; "Desktop" when nothing matches
    """
    if not user_agent:
        return DEVICE_DESKTOP

    ua_lower = user_agent.lower()
    for pattern, label in _DEVICE_PATTERNS:
        if pattern.search(ua_lower):
            return label
    return DEVICE_DESKTOP
