from __future__ import annotations

import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Protocol


@dataclass
class RateWindow:
    count: int
    reset_time: float


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after_s: int = 0


class RateLimitStore(Protocol):
    def admit(self, identity: str) -> RateLimitDecision: ...


class FixedWindowRateLimiter:
    """Very small in-memory per-key rate limiter (fixed window).

    Windows live as long as the limiter instance, so a process restart
    resets every counter. Expired windows are swept from admit() at most
    once per ``sweep_interval_s``.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_s: float,
        key_prefix: str = "ip:",
        clock: Callable[[], float] = time.time,
        sweep_interval_s: Optional[float] = None,
    ) -> None:
        self.limit = limit
        self.window_s = window_s
        self.key_prefix = key_prefix
        self._clock = clock
        self._sweep_interval_s = window_s if sweep_interval_s is None else sweep_interval_s
        self._windows: Dict[str, RateWindow] = {}
        self._lock = Lock()
        self._next_sweep = clock() + self._sweep_interval_s

    def __len__(self) -> int:
        return len(self._windows)

    def window_for(self, identity: str) -> Optional[RateWindow]:
        return self._windows.get(self.key_prefix + identity)

    def admit(self, identity: str) -> RateLimitDecision:
        now = self._clock()
        key = self.key_prefix + identity
        with self._lock:
            if now >= self._next_sweep:
                self._sweep_locked(now)

            window = self._windows.get(key)
            if window is None:
                window = RateWindow(count=0, reset_time=now + self.window_s)

            if now > window.reset_time:
                window.count = 0
                window.reset_time = now + self.window_s

            if window.count >= self.limit:
                return RateLimitDecision(
                    allowed=False, retry_after_s=math.ceil(window.reset_time - now)
                )

            window.count += 1
            self._windows[key] = window
            return RateLimitDecision(allowed=True)

    def sweep(self) -> int:
        """Drop windows that have already expired. Returns how many were removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, w in self._windows.items() if now > w.reset_time]
        for k in expired:
            del self._windows[k]
        self._next_sweep = now + self._sweep_interval_s
        return len(expired)


class ClientRateLimiter:
    """Per-IP admission, optionally followed by a shared global budget."""

    def __init__(
        self,
        per_ip: FixedWindowRateLimiter,
        global_limiter: Optional[FixedWindowRateLimiter] = None,
    ) -> None:
        self.per_ip = per_ip
        self.global_limiter = global_limiter

    def admit(self, identity: str) -> RateLimitDecision:
        decision = self.per_ip.admit(identity)
        if not decision.allowed or self.global_limiter is None:
            return decision
        return self.global_limiter.admit("all")


def make_rate_limiter(settings, clock: Callable[[], float] = time.time) -> ClientRateLimiter:
    per_ip = FixedWindowRateLimiter(
        limit=settings.RATE_LIMIT_PER_IP,
        window_s=settings.RATE_LIMIT_WINDOW_S,
        clock=clock,
    )
    global_limiter = None
    if settings.ENFORCE_GLOBAL_LIMIT:
        global_limiter = FixedWindowRateLimiter(
            limit=settings.GLOBAL_RATE_LIMIT,
            window_s=settings.GLOBAL_RATE_LIMIT_WINDOW_S,
            key_prefix="global:",
            clock=clock,
        )
    return ClientRateLimiter(per_ip, global_limiter)
