"""
Platform detection from a request user agent.

Used only when the capture layer does not send an explicit platform.
"""
import re
from typing import Optional

DEFAULT_PLATFORM = "API"

_IOS = re.compile(r"iPhone|iPad|iPod", re.IGNORECASE)
_ANDROID = re.compile(r"Android", re.IGNORECASE)
_BROWSER = re.compile(r"Mozilla/|Chrome/|Safari/|Firefox/", re.IGNORECASE)


def detect_platform(user_agent: Optional[str]) -> str:
    if not user_agent or not user_agent.strip():
        return DEFAULT_PLATFORM
    if _IOS.search(user_agent):
        return "iOS"
    if _ANDROID.search(user_agent):
        return "Android"
    if "Expo" in user_agent:
        # React Native / Expo clients carry the OS name without device tokens
        if "iOS" in user_agent:
            return "iOS"
        if "Android" in user_agent:
            return "Android"
        return "Mobile"
    if _BROWSER.search(user_agent):
        return "Web"
    return DEFAULT_PLATFORM
