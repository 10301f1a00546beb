"""Retry policy and countdown state, kept free of any I/O or UI concern.

``RetryState`` is an immutable snapshot a presentation layer can poll or
subscribe to: ``idle`` -> ``waiting`` (counting down ``remaining`` seconds)
-> ``retrying`` -> back to ``idle`` on success or ``waiting`` on another
retryable failure.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal, Optional

RETRYABLE_STATUS_CODES = frozenset({404, 429, 503})
RETRYABLE_MARKERS = (
    "429",
    "quota",
    "resource exhausted",
    "resource_exhausted",
    "rate limit",
    "overloaded",
    "unavailable",
    "not found",
)
DELAY_SCHEDULE = (2.0, 5.0, 10.0, 15.0, 20.0)

Phase = Literal["idle", "waiting", "retrying"]


def is_retryable(status_code: Optional[int] = None, message: str = "") -> bool:
    """Rate limit / overload / unavailable model, judged by status or message."""
    if status_code in RETRYABLE_STATUS_CODES:
        return True
    text = (message or "").lower()
    return any(marker in text for marker in RETRYABLE_MARKERS)


def next_delay(attempt: int, *, forced: Optional[float] = None) -> float:
    """Delay before retry number ``attempt`` (1-based); ``forced`` wins."""
    if forced is not None:
        return float(forced)
    index = max(0, attempt - 1)
    if index >= len(DELAY_SCHEDULE):
        return DELAY_SCHEDULE[-1]
    return DELAY_SCHEDULE[index]


@dataclass(frozen=True)
class RetryState:
    phase: Phase = "idle"
    remaining: float = 0.0
    attempt_count: int = 0

    def schedule(self, delay: Optional[float] = None) -> "RetryState":
        attempt = self.attempt_count + 1
        return RetryState(
            phase="waiting",
            remaining=next_delay(attempt, forced=delay),
            attempt_count=attempt,
        )

    def tick(self, elapsed: float) -> "RetryState":
        if self.phase != "waiting":
            return self
        remaining = max(0.0, self.remaining - elapsed)
        if remaining == 0.0:
            return replace(self, phase="retrying", remaining=0.0)
        return replace(self, remaining=remaining)

    def begin_retry(self) -> "RetryState":
        return replace(self, phase="retrying", remaining=0.0)

    def reset(self) -> "RetryState":
        return RetryState()

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "remaining": self.remaining,
            "attempt_count": self.attempt_count,
        }


__all__ = [
    "RETRYABLE_STATUS_CODES",
    "DELAY_SCHEDULE",
    "RetryState",
    "is_retryable",
    "next_delay",
]
