"""
Anti-abuse session state: cooldowns, verified cache, running counters.

Everything lives in process memory and is lost on restart. That is
accepted: the role held on the chat platform is the system of record, the
verified cache is only a fast path in front of it.

Concurrency: every verification attempt touches this store. The gate
(`admit`) checks the verified cache and the cooldown and then stamps the
cooldown under one lock, so two near-simultaneous attempts by the same actor
can never both get through. The lock is a threading.Lock because attempts
run both on the event loop and in worker threads; it is never held across
an await.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .models import AttemptStatus, GateDecision, SourceMethod, StatsSnapshot

logger = logging.getLogger(__name__)


# ─── Display Helpers ────────────────────────────────────────────────


def format_cooldown_time(remaining_seconds: float) -> str:
    """'45 seconds', '1 second', '5 minutes' (rounded up)."""
    seconds = max(1, math.ceil(remaining_seconds))
    if seconds < 60:
        return f"{seconds} second{'s' if seconds != 1 else ''}"
    minutes = math.ceil(seconds / 60)
    return f"{minutes} minute{'s' if minutes != 1 else ''}"


def format_uptime(total_seconds: float) -> str:
    """'2d 3h 4m', '3h 4m 5s', '4m 5s' or '5s'."""
    seconds = int(total_seconds)
    minutes, hours, days = seconds // 60, seconds // 3600, seconds // 86400
    if days > 0:
        return f"{days}d {hours % 24}h {minutes % 60}m"
    if hours > 0:
        return f"{hours}h {minutes % 60}m {seconds % 60}s"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


# ─── Store ──────────────────────────────────────────────────────────


@dataclass
class CooldownEntry:
    actor_id: str
    last_attempt_at: float


@dataclass
class _Counters:
    total_attempts: int = 0
    successful: int = 0
    failed: int = 0
    ocr: int = 0
    third_party: int = 0


class AntiAbuseStore:
    """Per-actor cooldowns, an idempotent verified cache and counters.

    Usage:
        store = AntiAbuseStore(cooldown_seconds=300)
        gate = store.admit(actor_id)
        if gate.admitted:
            ...  # run the attempt
    """

    def __init__(
        self,
        cooldown_seconds: float = 300.0,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_seconds = cooldown_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._cooldowns: dict[str, CooldownEntry] = {}
        self._verified: set[str] = set()
        self._counters = _Counters()
        self._started_at = clock()
        self._sweeper: Optional[asyncio.Task] = None

    # ── Gate ────────────────────────────────────────────────────────

    def admit(self, actor_id: str, has_verified_role: bool = False) -> GateDecision:
        """Atomically: reject if verified or cooling down, else start the cooldown."""
        with self._lock:
            if self._is_verified_locked(actor_id, has_verified_role):
                return GateDecision(admitted=False, status=AttemptStatus.ALREADY_VERIFIED)

            remaining = self._remaining_locked(actor_id)
            if remaining > 0:
                return GateDecision(
                    admitted=False,
                    status=AttemptStatus.ON_COOLDOWN,
                    retry_after_seconds=remaining,
                )

            self._cooldowns[actor_id] = CooldownEntry(actor_id, self._clock())
            return GateDecision(admitted=True)

    # ── Cooldowns ───────────────────────────────────────────────────

    def check_cooldown(self, actor_id: str) -> float:
        """Remaining cooldown in seconds (0 when free). Evicts expired entries."""
        with self._lock:
            return self._remaining_locked(actor_id)

    def set_cooldown(self, actor_id: str) -> None:
        with self._lock:
            self._cooldowns[actor_id] = CooldownEntry(actor_id, self._clock())

    def clear_cooldown(self, actor_id: str) -> bool:
        """Admin override. Returns whether a cooldown was active."""
        with self._lock:
            return self._cooldowns.pop(actor_id, None) is not None

    def sweep(self) -> int:
        """Drop every expired cooldown. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [
                actor_id
                for actor_id, entry in self._cooldowns.items()
                if now - entry.last_attempt_at >= self.cooldown_seconds
            ]
            for actor_id in expired:
                del self._cooldowns[actor_id]
        if expired:
            logger.debug("Swept %d expired cooldown(s)", len(expired))
        return len(expired)

    def _remaining_locked(self, actor_id: str) -> float:
        entry = self._cooldowns.get(actor_id)
        if entry is None:
            return 0.0
        remaining = self.cooldown_seconds - (self._clock() - entry.last_attempt_at)
        if remaining <= 0:
            del self._cooldowns[actor_id]
            return 0.0
        return remaining

    # ── Verified cache ──────────────────────────────────────────────

    def is_verified(self, actor_id: str, has_verified_role: bool = False) -> bool:
        """Cache hit, or the platform says the actor holds the role (then cache it)."""
        with self._lock:
            return self._is_verified_locked(actor_id, has_verified_role)

    def mark_verified(self, actor_id: str) -> None:
        with self._lock:
            self._verified.add(actor_id)

    def revoke(self, actor_id: str) -> bool:
        """Remove an actor from the verified cache. Returns whether it was cached."""
        with self._lock:
            if actor_id in self._verified:
                self._verified.discard(actor_id)
                return True
            return False

    def _is_verified_locked(self, actor_id: str, has_verified_role: bool) -> bool:
        if actor_id in self._verified:
            return True
        if has_verified_role:
            self._verified.add(actor_id)
            return True
        return False

    # ── Counters ────────────────────────────────────────────────────

    def record_attempt(self, source: SourceMethod, success: bool) -> None:
        """Count one attempt that reached the decision engine."""
        with self._lock:
            c = self._counters
            c.total_attempts += 1
            if success:
                c.successful += 1
            else:
                c.failed += 1
            if source == SourceMethod.IMAGE_OCR:
                c.ocr += 1
            else:
                c.third_party += 1

    def stats(self) -> StatsSnapshot:
        with self._lock:
            c = self._counters
            uptime = self._clock() - self._started_at
            rate = (c.successful / c.total_attempts * 100) if c.total_attempts else 0.0
            return StatsSnapshot(
                total_attempts=c.total_attempts,
                successful_verifications=c.successful,
                failed_verifications=c.failed,
                ocr_verifications=c.ocr,
                third_party_verifications=c.third_party,
                success_rate=round(rate, 1),
                uptime_seconds=uptime,
                uptime_formatted=format_uptime(uptime),
                verified_cache_size=len(self._verified),
                active_cooldowns=len(self._cooldowns),
            )

    # ── Periodic sweep ──────────────────────────────────────────────

    def start_sweeper(self) -> None:
        """Start the periodic sweep on the running event loop (idempotent)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()
