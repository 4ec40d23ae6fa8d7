# geoattend/backend/tools/device_fingerprint.py

import hashlib
import re
from typing import Mapping, Optional, Tuple

import bcrypt

VALID_PLATFORMS = ("Windows", "macOS", "Linux", "Android", "iOS", "Unknown")
MIN_DEVICE_FIELD_LENGTH = 10
MAX_DEVICE_FIELD_LENGTH = 2000

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


class DeviceDataError(ValueError):
    """Raised when client-declared device attributes fail validation."""
    pass


def sanitize_device_value(value: Optional[str]) -> str:
    """Strips control characters, caps the length and trims whitespace."""
    if not value:
        return ""
    return _CONTROL_CHARS.sub("", value)[:MAX_DEVICE_FIELD_LENGTH].strip()


def validate_device_data(user_agent, platform, additional_entropy=None) -> Tuple[str, str, Optional[str]]:
    """
    Cihaz bilgilerini hash'lemeden önce doğrular.

    Args:
        user_agent: İstemcinin bildirdiği user agent.
        platform: Kapalı listeden bir platform adı.
        additional_entropy: İsteğe bağlı ek entropi.

    Returns:
        Temizlenmiş (user_agent, platform, additional_entropy) üçlüsü.

    Raises:
        DeviceDataError: Alanlardan biri geçersizse.
    """
    if not user_agent or not isinstance(user_agent, str):
        raise DeviceDataError("User agent is required and must be a string")
    if not platform or not isinstance(platform, str):
        raise DeviceDataError("Platform is required and must be a string")
    if not (MIN_DEVICE_FIELD_LENGTH <= len(user_agent) <= MAX_DEVICE_FIELD_LENGTH):
        raise DeviceDataError("User agent has invalid length")
    if platform not in VALID_PLATFORMS:
        raise DeviceDataError("Invalid platform specified")

    # Doğrulama aşamasıyla aynı kanonik değerler hash'lenmeli.
    entropy = sanitize_device_value(str(additional_entropy)) if additional_entropy else None
    return sanitize_device_value(user_agent), sanitize_device_value(platform), entropy or None


def fingerprint(user_agent: str, platform: str, extra_entropy: Optional[str] = None) -> str:
    """Deterministic SHA-256 over `userAgent|platform|entropy`."""
    combined = f"{user_agent}|{platform}|{extra_entropy or ''}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def bind_hash(device_fingerprint: str, rounds: int = 10) -> str:
    """
    Applies a slow, salted bcrypt hash so stored bindings resist offline brute force.
    CPU-bound; call it from a worker thread inside async code.
    """
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(device_fingerprint.encode("utf-8"), salt).decode("utf-8")


def verify(device_fingerprint: str, stored_hash: str) -> bool:
    """Constant-time comparison through bcrypt.checkpw."""
    try:
        return bcrypt.checkpw(device_fingerprint.encode("utf-8"), stored_hash.encode("utf-8"))
    except ValueError:
        # Bozuk ya da bcrypt formatında olmayan hash
        return False


def detect_platform(user_agent: str) -> str:
    if not user_agent:
        return ""
    if "Windows" in user_agent:
        return "Windows"
    if "Macintosh" in user_agent:
        return "macOS"
    # Android UA'ları da "Linux" içerir, önce Android'e bakılır.
    if "Android" in user_agent:
        return "Android"
    if "Linux" in user_agent:
        return "Linux"
    if "iPhone" in user_agent or "iPad" in user_agent:
        return "iOS"
    return "Unknown"


def extract_device_info(headers: Mapping[str, str]) -> dict:
    """
    Builds the current device description from request headers.

    `X-Device-Platform` and `X-Device-Entropy` let a client repeat exactly what it
    declared at bind time; without them the platform is sniffed from the user agent.
    """
    user_agent = sanitize_device_value(headers.get("user-agent", ""))
    platform = sanitize_device_value(headers.get("x-device-platform", "")) or detect_platform(user_agent)
    entropy = sanitize_device_value(headers.get("x-device-entropy", "")) or None
    return {"user_agent": user_agent, "platform": platform, "entropy": entropy}
