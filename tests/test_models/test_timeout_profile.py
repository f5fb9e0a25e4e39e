"""Tests for PlatformTimeoutProfile."""

from __future__ import annotations

from chatbridge.models.timeout_profile import PlatformTimeoutProfile


class TestPlatformTimeoutProfile:
    def test_success_rate(self):
        profile = PlatformTimeoutProfile(platform_id="chatgpt", success_count=3, attempt_count=4)
        assert profile.success_rate == 0.75

    def test_success_rate_without_attempts(self):
        assert PlatformTimeoutProfile(platform_id="chatgpt").success_rate == 0.0

    def test_is_learned_requires_attempt_and_values(self):
        assert not PlatformTimeoutProfile(platform_id="x", activation_ms=1, check_interval_ms=1, initial_delay_ms=1).is_learned
        assert PlatformTimeoutProfile(
            platform_id="x", activation_ms=1, check_interval_ms=1, initial_delay_ms=1, attempt_count=1,
        ).is_learned

    def test_doc_round_trip(self):
        profile = PlatformTimeoutProfile(platform_id="gemini", check_interval_ms=500, attempt_count=2)
        assert PlatformTimeoutProfile.from_doc(profile.to_doc()) == profile
