"""Platform detection from tab URLs."""

from __future__ import annotations

from urllib.parse import urlparse

from chatbridge.config import PlatformConfig


def detect_platform(url: str, platforms: dict[str, PlatformConfig]) -> str | None:
    """Return the id of the first platform whose host pattern matches *url*.

    Order follows the config table; first match wins.
    """
    if not url:
        return None
    hostname = urlparse(url).hostname or ""
    if not hostname:
        return None
    for name, platform in platforms.items():
        if any(pattern in hostname for pattern in platform.host_patterns):
            return name
    return None


def root_url_for(url: str, platforms: dict[str, PlatformConfig]) -> str | None:
    """Return the configured landing URL for the platform serving *url*."""
    platform_id = detect_platform(url, platforms)
    if platform_id is None:
        return None
    configured = platforms[platform_id].url
    if configured:
        return configured
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}/"


def supported_platforms(platforms: dict[str, PlatformConfig]) -> list[dict]:
    return [
        {"name": name, "url": p.url, "host_patterns": list(p.host_patterns)}
        for name, p in platforms.items()
    ]
