"""Per-platform learned response-timing profile."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TimeoutSettings:
    """The three hybrid-mode timings handed to the activation controller."""

    activation_ms: int
    check_interval_ms: int
    initial_delay_ms: int


@dataclass(frozen=True)
class PlatformTimeoutProfile:
    """Self-tuning record of how long a platform takes to respond.

    ``last_tuned_at`` is epoch seconds.
    """

    platform_id: str
    activation_ms: int | None = None
    check_interval_ms: int | None = None
    initial_delay_ms: int | None = None
    success_count: int = 0
    attempt_count: int = 0
    last_tuned_at: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.attempt_count == 0:
            return 0.0
        return self.success_count / self.attempt_count

    @property
    def is_learned(self) -> bool:
        return (
            self.attempt_count >= 1
            and bool(self.activation_ms)
            and bool(self.check_interval_ms)
            and bool(self.initial_delay_ms)
        )

    def to_doc(self) -> dict:
        return {
            "platform_id": self.platform_id,
            "activation_ms": self.activation_ms,
            "check_interval_ms": self.check_interval_ms,
            "initial_delay_ms": self.initial_delay_ms,
            "success_count": self.success_count,
            "attempt_count": self.attempt_count,
            "last_tuned_at": self.last_tuned_at,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> PlatformTimeoutProfile:
        return cls(
            platform_id=doc["platform_id"],
            activation_ms=doc.get("activation_ms"),
            check_interval_ms=doc.get("check_interval_ms"),
            initial_delay_ms=doc.get("initial_delay_ms"),
            success_count=doc.get("success_count", 0),
            attempt_count=doc.get("attempt_count", 0),
            last_tuned_at=doc.get("last_tuned_at", 0.0),
        )
