"""Tests for platform detection."""

from chatbridge.config import PlatformConfig
from chatbridge.infra.browser.platforms import detect_platform, root_url_for, supported_platforms

PLATFORMS = {
    "chatgpt": PlatformConfig(
        name="chatgpt", url="https://chatgpt.com/", host_patterns=["chatgpt.com", "chat.openai.com"],
    ),
    "gemini": PlatformConfig(name="gemini", host_patterns=["gemini.google.com"]),
}


class TestDetectPlatform:
    def test_matches_any_pattern(self):
        assert detect_platform("https://chatgpt.com/c/123", PLATFORMS) == "chatgpt"
        assert detect_platform("https://chat.openai.com/", PLATFORMS) == "chatgpt"
        assert detect_platform("https://gemini.google.com/app", PLATFORMS) == "gemini"

    def test_unknown_or_empty(self):
        assert detect_platform("https://example.com/", PLATFORMS) is None
        assert detect_platform("", PLATFORMS) is None
        assert detect_platform("about:blank", PLATFORMS) is None

    def test_path_is_not_matched(self):
        assert detect_platform("https://example.com/chatgpt.com", PLATFORMS) is None


class TestRootUrl:
    def test_configured_url(self):
        assert root_url_for("https://chatgpt.com/c/123", PLATFORMS) == "https://chatgpt.com/"

    def test_falls_back_to_origin(self):
        assert root_url_for("https://gemini.google.com/app/xyz", PLATFORMS) == "https://gemini.google.com/"

    def test_unknown(self):
        assert root_url_for("https://example.com/", PLATFORMS) is None


def test_supported_platforms():
    names = [p["name"] for p in supported_platforms(PLATFORMS)]
    assert names == ["chatgpt", "gemini"]
