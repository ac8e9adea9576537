"""Abuse-aware gating for authentication attempts.

Every identity (normalized email / account id) and every network origin gets
a RiskWindow: a fixed-length window of attempt and failure counters plus the
timestamps of the most recent attempts for a sliding velocity check.
``evaluate`` turns the current windows into an allow / challenge / block
decision without touching them; ``record`` is the only mutator.

Expiry is lazy: a window whose length has elapsed is treated as absent on
read and replaced on the next write. ``sweep`` only reclaims memory.

NOTE: state lives in this process. In a multi-worker deployment each worker
holds an independent view, so an attacker spreading attempts over workers
sees proportionally looser thresholds. A shared store would be needed for
strict cross-worker enforcement.
"""

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from threading import Lock

logger = logging.getLogger(__name__)


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class GateAction(str, Enum):
    ALLOW = "allow"
    CHALLENGE = "challenge"
    BLOCK = "block"


class GateReason(str, Enum):
    NONE = "none"
    HIGH_FAILURE_RATE_IDENTITY = "high-failure-rate-identity"
    HIGH_FAILURE_RATE_ORIGIN = "high-failure-rate-origin"
    VELOCITY_EXCEEDED = "velocity-exceeded"


class KeyKind(str, Enum):
    IDENTITY = "identity"
    ORIGIN = "origin"


@dataclass(frozen=True)
class GateDecision:
    action: GateAction
    reason: GateReason = GateReason.NONE


ALLOW = GateDecision(GateAction.ALLOW)


@dataclass(frozen=True)
class GatePolicy:
    """Thresholds for the gate. Defaults: 15 minute window, block at 10 failures."""

    window_seconds: float = 15 * 60
    block_failure_threshold: int = 10
    challenge_failure_ratio: float = 0.4
    challenge_min_attempts: int = 3
    velocity_window_seconds: float = 60
    velocity_threshold: int = 20
    clock_skew_seconds: float = 5
    # Sweep drops windows idle for this many window lengths
    retention_windows: int = 4

    @classmethod
    def from_settings(cls, settings) -> "GatePolicy":
        return cls(
            window_seconds=settings.abuse_window_seconds,
            block_failure_threshold=settings.abuse_block_failure_threshold,
            challenge_failure_ratio=settings.abuse_challenge_failure_ratio,
            challenge_min_attempts=settings.abuse_challenge_min_attempts,
            velocity_window_seconds=settings.abuse_velocity_window_seconds,
            velocity_threshold=settings.abuse_velocity_threshold,
            clock_skew_seconds=settings.abuse_clock_skew_seconds,
            retention_windows=settings.abuse_retention_windows,
        )


@dataclass
class RiskWindow:
    """Counters for one key within the current window.

    ``recent`` keeps the timestamps of the last ``velocity_threshold + 1``
    attempts, which is all a sliding velocity check needs.
    """

    window_start: float
    window_end: float
    failure_count: int = 0
    total_count: int = 0
    recent: deque[float] = field(default_factory=deque)

    @classmethod
    def seeded(cls, timestamp: float, velocity_threshold: int) -> "RiskWindow":
        return cls(
            window_start=timestamp,
            window_end=timestamp,
            recent=deque(maxlen=velocity_threshold + 1),
        )

    def copy(self) -> "RiskWindow":
        return replace(self, recent=deque(self.recent, maxlen=self.recent.maxlen))

    def is_expired(self, now: float, window_seconds: float) -> bool:
        return now - self.window_start >= window_seconds

    @property
    def failure_ratio(self) -> float:
        if not self.total_count:
            return 0.0
        return self.failure_count / self.total_count

    def velocity_exceeded(self, now: float, threshold: int, velocity_seconds: float) -> bool:
        """True when more than ``threshold`` attempts fall in the trailing sub-window."""
        if len(self.recent) <= threshold:
            return False
        return now - self.recent[-(threshold + 1)] < velocity_seconds

    def add(self, timestamp: float, failed: bool) -> None:
        self.total_count += 1
        if failed:
            self.failure_count += 1
        self.recent.append(timestamp)
        self.window_end = max(self.window_end, timestamp)


class _Slot:
    """A key's window plus the lock serializing access to it."""

    __slots__ = ("lock", "window", "retired")

    def __init__(self) -> None:
        self.lock = Lock()
        self.window: RiskWindow | None = None
        # Set by sweep once the slot has left the registry
        self.retired = False


class AbuseGate:
    """Per-key risk windows and the allow / challenge / block decision.

    Locking: ``_registry_lock`` only guards lookup, insertion and removal of
    slots and is never held while waiting for a slot lock. Each slot has its
    own lock, so work on different keys never contends.
    """

    def __init__(
        self,
        policy: GatePolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy or GatePolicy()
        self._clock = clock
        self._slots: dict[str, _Slot] = {}
        self._registry_lock = Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._slots)

    @staticmethod
    def _make_key(kind: KeyKind, key: str) -> str:
        return f"{kind.value}:{key}"

    def _slot_for(self, key: str) -> _Slot:
        with self._registry_lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = _Slot()
                self._slots[key] = slot
            return slot

    def _read(self, key: str) -> RiskWindow | None:
        with self._registry_lock:
            slot = self._slots.get(key)
        if slot is None:
            return None
        with slot.lock:
            if slot.window is None:
                return None
            return slot.window.copy()

    def _live_window(self, kind: KeyKind, key: str, now: float) -> RiskWindow | None:
        window = self._read(self._make_key(kind, key))
        if window is None or window.is_expired(now, self.policy.window_seconds):
            return None
        return window

    def _ratio_exceeded(self, window: RiskWindow) -> bool:
        return (
            window.total_count >= self.policy.challenge_min_attempts
            and window.failure_ratio > self.policy.challenge_failure_ratio
        )

    def evaluate(
        self,
        identity_key: str | None,
        origin_key: str,
        now: float | None = None,
    ) -> GateDecision:
        """Decide how much friction the next attempt needs. Never mutates state."""
        if now is None:
            now = self._clock()
        policy = self.policy

        origin = self._live_window(KeyKind.ORIGIN, origin_key, now)
        identity = None
        if identity_key:
            identity = self._live_window(KeyKind.IDENTITY, identity_key, now)

        # Origin blocks first: an anonymous flood is stopped even for clean identities
        if origin and origin.failure_count >= policy.block_failure_threshold:
            return GateDecision(GateAction.BLOCK, GateReason.HIGH_FAILURE_RATE_ORIGIN)
        if identity and identity.failure_count >= policy.block_failure_threshold:
            return GateDecision(GateAction.BLOCK, GateReason.HIGH_FAILURE_RATE_IDENTITY)

        if identity and self._ratio_exceeded(identity):
            return GateDecision(GateAction.CHALLENGE, GateReason.HIGH_FAILURE_RATE_IDENTITY)
        if origin and self._ratio_exceeded(origin):
            return GateDecision(GateAction.CHALLENGE, GateReason.HIGH_FAILURE_RATE_ORIGIN)

        if origin and origin.velocity_exceeded(
            now, policy.velocity_threshold, policy.velocity_window_seconds
        ):
            return GateDecision(GateAction.CHALLENGE, GateReason.VELOCITY_EXCEEDED)

        return ALLOW

    def _normalize_timestamp(
        self, window: RiskWindow | None, timestamp: float | None, now: float
    ) -> float:
        """Clamp timestamps that are in the future or behind the window to now."""
        if timestamp is None:
            return now
        skew = self.policy.clock_skew_seconds
        if timestamp > now + skew:
            logger.debug("Clamping future attempt timestamp %.3f to %.3f", timestamp, now)
            return now
        if window is not None and timestamp < window.window_end - skew:
            logger.debug("Clamping stale attempt timestamp %.3f to %.3f", timestamp, now)
            return now
        return timestamp

    def _update(self, key: str, failed: bool, timestamp: float | None) -> None:
        policy = self.policy
        while True:
            slot = self._slot_for(key)
            with slot.lock:
                if slot.retired:
                    # Swept between lookup and lock; resolve the key again
                    continue
                ts = self._normalize_timestamp(slot.window, timestamp, self._clock())
                window = slot.window
                if window is None or window.is_expired(ts, policy.window_seconds):
                    window = RiskWindow.seeded(ts, policy.velocity_threshold)
                    slot.window = window
                window.add(ts, failed)
                return

    def record(
        self,
        identity_key: str | None,
        origin_key: str,
        outcome: AttemptOutcome,
        timestamp: float | None = None,
    ) -> None:
        """Count one real attempt against the origin and, if known, the identity.

        Not idempotent: every call is counted.
        """
        failed = AttemptOutcome(outcome) is AttemptOutcome.FAILURE
        self._update(self._make_key(KeyKind.ORIGIN, origin_key), failed, timestamp)
        if identity_key:
            self._update(self._make_key(KeyKind.IDENTITY, identity_key), failed, timestamp)

    def get_window(self, kind: KeyKind, key: str) -> RiskWindow | None:
        """Return a copy of the stored window for a key, expired or not."""
        return self._read(self._make_key(KeyKind(kind), key))

    def sweep(self, now: float | None = None) -> int:
        """Drop windows idle for ``retention_windows`` window lengths.

        Holds at most one slot lock at a time. Returns the number removed.
        """
        if now is None:
            now = self._clock()
        horizon = self.policy.window_seconds * self.policy.retention_windows

        with self._registry_lock:
            candidates = list(self._slots.items())

        removed = 0
        for key, slot in candidates:
            with slot.lock:
                window = slot.window
                if slot.retired:
                    continue
                if window is not None and now - window.window_end < horizon:
                    continue
                slot.retired = True
                slot.window = None
                with self._registry_lock:
                    if self._slots.get(key) is slot:
                        del self._slots[key]
                removed += 1

        if removed:
            logger.info("Swept %d idle risk windows (%d remaining)", removed, len(self))
        return removed

    def reset(self) -> None:
        """Forget every window."""
        with self._registry_lock:
            slots = list(self._slots.values())
            self._slots.clear()
        for slot in slots:
            with slot.lock:
                slot.retired = True
                slot.window = None
