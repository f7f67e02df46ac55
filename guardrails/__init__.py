"""Abuse guardrails: per-user rate limits and text sanitization."""

from .rate_limiter import (
    RateLimitConfig,
    RateLimitDecision,
    RateLimiter,
    enforce_message_limit,
    enforce_offer_limit,
)
from .sanitizer import (
    SanitizeResult,
    SanitizerConfig,
    require_clean_text,
    sanitize,
    sanitize_for_display,
)

__all__ = [
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimiter",
    "enforce_message_limit",
    "enforce_offer_limit",
    "SanitizeResult",
    "SanitizerConfig",
    "require_clean_text",
    "sanitize",
    "sanitize_for_display",
]
