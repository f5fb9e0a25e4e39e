"""Per-platform self-tuning of hybrid-mode response timings."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace

from chatbridge.config import OrchestratorConfig
from chatbridge.errors import PersistenceError
from chatbridge.infra.db.state_store import PROFILES_KEY, StateStore
from chatbridge.models.conversation import ConversationConfig
from chatbridge.models.timeout_profile import PlatformTimeoutProfile, TimeoutSettings

logger = logging.getLogger(__name__)

GROW_FACTOR = 1.2
SHRINK_FACTOR = 0.9
MAX_FACTOR = 2.0
MIN_FACTOR = 0.5
FAST_RESPONSE_RATIO = 0.5
RELIABLE_SUCCESS_RATE = 0.8


def _clamp(value: float, default: int) -> int:
    return round(min(max(value, default * MIN_FACTOR), default * MAX_FACTOR))


class TimeoutProfileLearner:
    """Bounded hill-climb over check interval and initial delay per platform.

    Values never leave [0.5x, 2x] of the configured defaults. Profiles are
    persisted best-effort after every record.
    """

    def __init__(
        self,
        store: StateStore,
        defaults: ConversationConfig,
        orchestrator: OrchestratorConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._defaults = defaults
        self._orchestrator = orchestrator or OrchestratorConfig()
        self._clock = clock
        self._profiles: dict[str, PlatformTimeoutProfile] = {}

    def set_defaults(self, defaults: ConversationConfig) -> None:
        self._defaults = defaults

    @property
    def profiles(self) -> dict[str, PlatformTimeoutProfile]:
        return dict(self._profiles)

    async def load(self) -> None:
        try:
            raw = await self._store.get(PROFILES_KEY, {}) or {}
        except PersistenceError:
            logger.warning("Could not load timeout profiles, starting fresh", exc_info=True)
            raw = {}
        self._profiles = {
            platform_id: PlatformTimeoutProfile.from_doc({**doc, "platform_id": platform_id})
            for platform_id, doc in raw.items()
        }

    def _default_settings(self) -> TimeoutSettings:
        return TimeoutSettings(
            activation_ms=self._defaults.hybrid_activation_ms,
            check_interval_ms=self._defaults.hybrid_check_interval_ms,
            initial_delay_ms=self._defaults.hybrid_initial_delay_ms,
        )

    def profile_for(self, platform_id: str | None) -> TimeoutSettings:
        """Learned timings for a platform, or the configured defaults."""
        defaults = self._default_settings()
        profile = self._profiles.get(platform_id) if platform_id else None
        if profile is None or not profile.is_learned:
            return defaults
        # Defaults may have changed since the profile was learned.
        return TimeoutSettings(
            activation_ms=_clamp(profile.activation_ms, defaults.activation_ms),
            check_interval_ms=_clamp(profile.check_interval_ms, defaults.check_interval_ms),
            initial_delay_ms=_clamp(profile.initial_delay_ms, defaults.initial_delay_ms),
        )

    def _get_or_create(self, platform_id: str) -> PlatformTimeoutProfile:
        profile = self._profiles.get(platform_id)
        if profile is None:
            defaults = self._default_settings()
            profile = PlatformTimeoutProfile(
                platform_id=platform_id,
                activation_ms=defaults.activation_ms,
                check_interval_ms=defaults.check_interval_ms,
                initial_delay_ms=defaults.initial_delay_ms,
                last_tuned_at=self._clock(),
            )
        return profile

    def _tune(
        self,
        profile: PlatformTimeoutProfile,
        timeout_used_ms: float,
        observed_response_ms: float,
        succeeded: bool,
        was_cutoff: bool,
    ) -> PlatformTimeoutProfile:
        defaults = self._default_settings()
        if was_cutoff:
            factor = GROW_FACTOR
        elif (
            succeeded
            and observed_response_ms < timeout_used_ms * FAST_RESPONSE_RATIO
            and profile.success_rate > RELIABLE_SUCCESS_RATE
        ):
            factor = SHRINK_FACTOR
        else:
            return profile
        check_interval = profile.check_interval_ms or defaults.check_interval_ms
        initial_delay = profile.initial_delay_ms or defaults.initial_delay_ms
        tuned = replace(
            profile,
            check_interval_ms=_clamp(check_interval * factor, defaults.check_interval_ms),
            initial_delay_ms=_clamp(initial_delay * factor, defaults.initial_delay_ms),
            last_tuned_at=self._clock(),
        )
        logger.info(
            "Retuned %s: check_interval=%dms initial_delay=%dms",
            profile.platform_id, tuned.check_interval_ms, tuned.initial_delay_ms,
        )
        return tuned

    async def record(
        self,
        platform_id: str | None,
        timeout_used_ms: float,
        observed_response_ms: float,
        succeeded: bool,
        was_cutoff: bool = False,
    ) -> PlatformTimeoutProfile | None:
        """Record one hybrid exchange outcome and retune when due."""
        if not platform_id:
            return None
        profile = self._get_or_create(platform_id)
        profile = replace(
            profile,
            attempt_count=profile.attempt_count + 1,
            success_count=profile.success_count + (1 if succeeded else 0),
        )
        cooled_down = self._clock() - profile.last_tuned_at > self._orchestrator.retune_cooldown_s
        if profile.attempt_count >= self._orchestrator.retune_after_attempts and cooled_down:
            profile = self._tune(
                profile, timeout_used_ms, observed_response_ms, succeeded, was_cutoff,
            )
        self._profiles[platform_id] = profile
        await self._store.set_best_effort(
            PROFILES_KEY,
            {pid: p.to_doc() for pid, p in self._profiles.items()},
        )
        return profile
