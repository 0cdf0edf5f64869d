"""Bandwidth throttling.

Parses operator throttle strings into token-bucket parameters and enforces them.
"""

from __future__ import annotations

from torrentd.throttle.byte_size import parse_byte_size
from torrentd.throttle.rate_limiter import (
    UNLIMITED,
    RateLimiterSpec,
    download_limiter,
    parse_rate_limit,
    sanitize_rates,
    upload_limiter,
)
from torrentd.throttle.token_bucket import TokenBucket

__all__ = [
    "UNLIMITED",
    "RateLimiterSpec",
    "TokenBucket",
    "download_limiter",
    "parse_byte_size",
    "parse_rate_limit",
    "sanitize_rates",
    "upload_limiter",
]
