"""Content sanitizer for user-written text (offer notes, messages, review comments).

Pipeline, in order: trim, empty check, strip invisible characters, length
bounds, spam patterns, dangerous URLs, link removal (when links are not
allowed), whitespace normalization, final empty check.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

import config
from trades.errors import CONTENT_REJECTED, SanitizationError

VALID = "valid"
TOO_LONG = "too_long"
TOO_SHORT = "too_short"
EMPTY = "empty"
BLOCKED = "blocked"
INVALID = "invalid"

SPAM_PATTERNS = [
    re.compile(r"(.)\1{10,}"),
    re.compile(r"[A-Z]{20,}"),
    re.compile(r"(?i)click here to win"),
    re.compile(r"(?i)congratulations you('ve)? won"),
    re.compile(r"(?i)free money"),
    re.compile(r"(?i)act now"),
    re.compile(r"(?i)limited time offer"),
    re.compile(r"(?i)bitcoin doubler"),
    re.compile(r"(?i)crypto giveaway"),
]

DANGEROUS_URL_PATTERNS = [
    re.compile(r"https?://\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}"),
    re.compile(r"(?i)(bit\.ly|tinyurl|t\.co|goo\.gl|ow\.ly|is\.gd|buff\.ly)/"),
    re.compile(r"(?i)data:"),
    re.compile(r"(?i)javascript:"),
    re.compile(r"(?i)(paypal|apple|google|amazon|bank).*\.(tk|ml|ga|cf|gq|xyz)/"),
]

INVISIBLE_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\u200b-\u200d\ufeff\u2060]")
URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)

SPAM_REASON = "Message contains spam-like content"
UNSAFE_LINK_REASON = "Message contains a potentially unsafe link"
LINK_PLACEHOLDER = "[link removed]"


@dataclass(frozen=True)
class SanitizerConfig:
    max_length: int = 2000
    min_length: int = 1
    allow_links: bool = True
    allow_markdown: bool = True
    strip_invisible_chars: bool = True
    block_spam_patterns: bool = True

    @classmethod
    def preset(cls, name: str) -> "SanitizerConfig":
        try:
            raw = config.SANITIZER_PRESETS[name]
        except KeyError:
            raise ValueError(f"unknown sanitizer preset {name!r}")
        return cls(**raw)


@dataclass(frozen=True)
class SanitizeResult:
    kind: str
    text: Optional[str] = None
    max_allowed: Optional[int] = None
    reason: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.kind == VALID

    def describe(self) -> str:
        """User-facing explanation for a rejected result."""
        if self.kind == TOO_LONG:
            return f"Text is too long (max {self.max_allowed} characters)."
        if self.kind == TOO_SHORT:
            return "Text is too short."
        if self.kind == EMPTY:
            return "Text can't be empty."
        if self.reason:
            return self.reason
        return "Text is not allowed."


def strip_invisible_characters(text: str) -> str:
    return INVISIBLE_CHARS.sub("", text)


def normalize_whitespace(text: str) -> str:
    text = re.sub(r"  +", " ", text)
    return re.sub(r"\n{3,}", "\n\n", text)


def sanitize(text: Optional[str], cfg: Optional[SanitizerConfig] = None) -> SanitizeResult:
    cfg = cfg or SanitizerConfig()
    if text is None:
        return SanitizeResult(EMPTY)
    if not isinstance(text, str):
        return SanitizeResult(INVALID, reason="Text must be a string")

    cleaned = text.strip()
    if not cleaned:
        return SanitizeResult(EMPTY)

    if cfg.strip_invisible_chars:
        cleaned = strip_invisible_characters(cleaned)

    if len(cleaned) < cfg.min_length:
        return SanitizeResult(TOO_SHORT)
    if len(cleaned) > cfg.max_length:
        return SanitizeResult(TOO_LONG, max_allowed=cfg.max_length)

    if cfg.block_spam_patterns and any(p.search(cleaned) for p in SPAM_PATTERNS):
        return SanitizeResult(BLOCKED, reason=SPAM_REASON)

    if any(p.search(cleaned) for p in DANGEROUS_URL_PATTERNS):
        return SanitizeResult(BLOCKED, reason=UNSAFE_LINK_REASON)

    if not cfg.allow_links:
        cleaned = URL_RE.sub(LINK_PLACEHOLDER, cleaned)

    cleaned = normalize_whitespace(cleaned)

    if not cleaned.strip():
        return SanitizeResult(EMPTY)
    return SanitizeResult(VALID, text=cleaned)


def require_clean_text(text: Optional[str], preset: str, *, field: str = "text") -> str:
    """Sanitize with a named preset; raise SanitizationError unless the result is valid."""
    result = sanitize(text, SanitizerConfig.preset(preset))
    if not result.is_valid:
        raise SanitizationError(
            CONTENT_REJECTED,
            f"{field} rejected: {result.kind}",
            {"field": field, "result": result.kind, "max_allowed": result.max_allowed},
            reason=result.describe(),
        )
    return result.text


def sanitize_for_display(text: str) -> str:
    return normalize_whitespace(strip_invisible_characters(text or ""))
