import os
from typing import Dict

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# SQLite file backing the record store (server, smoke test, CLI default).
MARKET_DB_PATH = os.environ.get("MARKET_DB_PATH", os.path.join(BASE_DIR, "market.db"))

LOG_LEVEL = os.environ.get("MARKET_LOG_LEVEL", "INFO").upper()

# 가드레일: rate limit presets (max_attempts per window_seconds, cooldown once exceeded)
RATE_LIMIT_PRESETS: Dict[str, Dict[str, float]] = {
    "default": {"max_attempts": 5, "window_seconds": 60, "cooldown_seconds": 30},
    "strict": {"max_attempts": 3, "window_seconds": 60, "cooldown_seconds": 60},
    "relaxed": {"max_attempts": 10, "window_seconds": 60, "cooldown_seconds": 15},
    "offers": {"max_attempts": 5, "window_seconds": 60, "cooldown_seconds": 30},
    "messages": {"max_attempts": 20, "window_seconds": 60, "cooldown_seconds": 10},
    "likes": {"max_attempts": 30, "window_seconds": 60, "cooldown_seconds": 5},
}

# Offers (and counter-offers) also have a hard cap per rolling hour.
OFFERS_PER_HOUR = 20

# Content sanitizer presets.
SANITIZER_PRESETS: Dict[str, Dict[str, object]] = {
    "default": {
        "max_length": 2000,
        "min_length": 1,
        "allow_links": True,
        "allow_markdown": True,
        "strip_invisible_chars": True,
        "block_spam_patterns": True,
    },
    "strict": {
        "max_length": 500,
        "min_length": 1,
        "allow_links": False,
        "allow_markdown": False,
        "strip_invisible_chars": True,
        "block_spam_patterns": True,
    },
}

# Which sanitizer preset applies to which free-text field.
OFFER_NOTE_SANITIZER = "strict"
MESSAGE_SANITIZER = "default"
REVIEW_COMMENT_SANITIZER = "strict"

# Reviews
RATING_MIN = 1
RATING_MAX = 5
