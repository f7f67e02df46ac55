"""Sliding-window rate limiter with cooldowns.

Each key (e.g. ``create_offer:<user_id>``) keeps the timestamps of its recent
attempts. Once a key hits ``max_attempts`` inside ``window_seconds`` it enters
a cooldown; every attempt during the cooldown is refused without being
recorded. A separate hourly bucket backs hard caps such as offers per hour.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

import config
from trades.errors import RATE_LIMITED, RateLimitError

logger = logging.getLogger(__name__)

ALLOWED = "allowed"
RATE_LIMITED_KIND = "rate_limited"
COOLDOWN = "cooldown"

HOUR_SECONDS = 3600.0
SWEEP_INTERVAL_SECONDS = 60.0


@dataclass(frozen=True)
class RateLimitConfig:
    max_attempts: int
    window_seconds: float
    cooldown_seconds: float

    @classmethod
    def preset(cls, name: str) -> "RateLimitConfig":
        try:
            raw = config.RATE_LIMIT_PRESETS[name]
        except KeyError:
            raise ValueError(f"unknown rate limit preset {name!r}")
        return cls(
            max_attempts=int(raw["max_attempts"]),
            window_seconds=float(raw["window_seconds"]),
            cooldown_seconds=float(raw["cooldown_seconds"]),
        )


@dataclass(frozen=True)
class RateLimitDecision:
    kind: str
    seconds: float = 0.0

    @property
    def allowed(self) -> bool:
        return self.kind == ALLOWED


class RateLimiter:
    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._timestamps: Dict[str, List[float]] = {}
        self._cooldowns: Dict[str, float] = {}
        self._hourly: Dict[str, List[float]] = {}
        # longest window/cooldown seen so far; bounds what the sweep may drop
        self._horizon = 0.0
        self._last_sweep: Optional[float] = None

    def _sweep(self, now: float) -> None:
        """Drop keys with nothing left inside any window. Caller holds the lock."""
        if self._last_sweep is not None and now - self._last_sweep < SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        cutoff = now - self._horizon
        for key in [k for k, ts in self._timestamps.items() if not ts or ts[-1] <= cutoff]:
            del self._timestamps[key]
        for key in [k for k, started in self._cooldowns.items() if started <= cutoff]:
            del self._cooldowns[key]
        for key in [k for k, ts in self._hourly.items() if not ts or ts[-1] <= now - HOUR_SECONDS]:
            del self._hourly[key]

    def check_and_record(self, key: str, cfg: Optional[RateLimitConfig] = None) -> RateLimitDecision:
        cfg = cfg or RateLimitConfig.preset("default")
        with self._lock:
            now = self._clock()
            self._horizon = max(self._horizon, cfg.window_seconds, cfg.cooldown_seconds)
            self._sweep(now)

            started = self._cooldowns.get(key)
            if started is not None:
                elapsed = now - started
                if elapsed < cfg.cooldown_seconds:
                    return RateLimitDecision(COOLDOWN, cfg.cooldown_seconds - elapsed)
                del self._cooldowns[key]

            window_start = now - cfg.window_seconds
            recent = [t for t in self._timestamps.get(key, []) if t > window_start]

            if len(recent) >= cfg.max_attempts:
                self._timestamps[key] = recent
                self._cooldowns[key] = now
                logger.info("[RATE_LIMITED] key=%s cooldown=%ss", key, cfg.cooldown_seconds)
                return RateLimitDecision(RATE_LIMITED_KIND, cfg.cooldown_seconds)

            recent.append(now)
            self._timestamps[key] = recent
            return RateLimitDecision(ALLOWED)

    def check_hourly_limit(self, key: str, max_per_hour: int) -> bool:
        """Record an attempt against the hourly bucket; False once the cap is reached."""
        with self._lock:
            now = self._clock()
            self._sweep(now)
            recent = [t for t in self._hourly.get(key, []) if t > now - HOUR_SECONDS]
            if len(recent) >= max_per_hour:
                self._hourly[key] = recent
                return False
            recent.append(now)
            self._hourly[key] = recent
            return True

    def hourly_retry_after(self, key: str) -> float:
        with self._lock:
            now = self._clock()
            recent = [t for t in self._hourly.get(key, []) if t > now - HOUR_SECONDS]
            if not recent:
                self._hourly.pop(key, None)
                return 0.0
            return max(0.0, recent[0] + HOUR_SECONDS - now)

    def tracked_keys(self) -> Set[str]:
        with self._lock:
            return set(self._timestamps) | set(self._cooldowns) | set(self._hourly)

    def remaining_attempts(self, key: str, cfg: Optional[RateLimitConfig] = None) -> int:
        cfg = cfg or RateLimitConfig.preset("default")
        with self._lock:
            window_start = self._clock() - cfg.window_seconds
            count = sum(1 for t in self._timestamps.get(key, []) if t > window_start)
        return max(0, cfg.max_attempts - count)

    def reset(self, key: str) -> None:
        with self._lock:
            self._timestamps.pop(key, None)
            self._cooldowns.pop(key, None)
            self._hourly.pop(key, None)

    def clear_all(self) -> None:
        with self._lock:
            self._timestamps.clear()
            self._cooldowns.clear()
            self._hourly.clear()


# ----------------------------------------------------------------------------
# Guards used by the engine
# ----------------------------------------------------------------------------


def offer_key(user_id: str) -> str:
    return f"create_offer:{user_id}"


def offer_hourly_key(user_id: str) -> str:
    return f"create_offer_hourly:{user_id}"


def message_key(user_id: str) -> str:
    return f"send_message:{user_id}"


def enforce_offer_limit(limiter: RateLimiter, user_id: str) -> None:
    """Per-minute offer window plus the hourly hard cap. Counter-offers count too."""
    decision = limiter.check_and_record(offer_key(user_id), RateLimitConfig.preset("offers"))
    if decision.kind == RATE_LIMITED_KIND:
        seconds = int(decision.seconds)
        raise RateLimitError(
            RATE_LIMITED,
            f"Too many offers. Please wait {seconds} seconds before trying again.",
            {"user_id": user_id, "scope": "offers"},
            retry_after=decision.seconds,
        )
    if decision.kind == COOLDOWN:
        seconds = int(decision.seconds)
        raise RateLimitError(
            RATE_LIMITED,
            f"Please wait {seconds} seconds before sending another offer.",
            {"user_id": user_id, "scope": "offers"},
            retry_after=decision.seconds,
        )

    if not limiter.check_hourly_limit(offer_hourly_key(user_id), config.OFFERS_PER_HOUR):
        raise RateLimitError(
            RATE_LIMITED,
            "You've reached the hourly limit for offers. Please try again later.",
            {"user_id": user_id, "scope": "offers_hourly", "max_per_hour": config.OFFERS_PER_HOUR},
            retry_after=limiter.hourly_retry_after(offer_hourly_key(user_id)),
        )


def enforce_message_limit(limiter: RateLimiter, user_id: str) -> None:
    decision = limiter.check_and_record(message_key(user_id), RateLimitConfig.preset("messages"))
    if decision.allowed:
        return
    if decision.kind == RATE_LIMITED_KIND:
        text = f"Slow down! Wait {int(decision.seconds)} seconds."
    else:
        text = f"Please wait {int(decision.seconds)} seconds."
    raise RateLimitError(
        RATE_LIMITED,
        text,
        {"user_id": user_id, "scope": "messages"},
        retry_after=decision.seconds,
    )


def like_key(user_id: str) -> str:
    return f"like_item:{user_id}"


def enforce_like_limit(limiter: RateLimiter, user_id: str) -> None:
    decision = limiter.check_and_record(like_key(user_id), RateLimitConfig.preset("likes"))
    if decision.allowed:
        return
    raise RateLimitError(
        RATE_LIMITED,
        "Too fast! Please slow down.",
        {"user_id": user_id, "scope": "likes"},
        retry_after=decision.seconds,
    )
