"""Throttle strings to token-bucket limiter descriptors.

Rate strings are typed by operators, so parsing is strict but callers are
fail-soft: a string that does not parse means "unlimited" plus a warning,
never an exception escaping into the daemon.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from torrentd.models import Config
from torrentd.throttle.byte_size import parse_byte_size
from torrentd.utils.exceptions import RateParseError

logger = logging.getLogger(__name__)

MAX_RATE = 2**31 - 1
BURST_MULTIPLIER = 3

PRESET_RATES: dict[str, int] = {
    "low": 50_000,  # ~50k/s
    "medium": 500_000,  # ~500k/s
    "high": 1_500_000,  # ~1500k/s
}

UNLIMITED_TOKENS = frozenset({"unlimited", "0", ""})

RATE_FIELDS = ("upload_rate", "download_rate")


@dataclass(frozen=True)
class RateLimiterSpec:
    """Token bucket parameters.

    ``rate`` is bytes per second, ``math.inf`` for no limit. An unlimited
    spec always has a zero burst.
    """

    rate: float
    burst: int

    @property
    def unlimited(self) -> bool:
        """Whether this spec imposes no limit."""
        return math.isinf(self.rate)

    @classmethod
    def for_rate(cls, rate: int) -> RateLimiterSpec:
        """Build a finite spec with the standard burst headroom."""
        return cls(rate=float(rate), burst=rate * BURST_MULTIPLIER)


UNLIMITED = RateLimiterSpec(rate=math.inf, burst=0)


def parse_rate_limit(text: str) -> RateLimiterSpec:
    """Parse a throttle string.

    Args:
        text: ``low``, ``medium``, ``high``, ``unlimited``/``0``/empty, or a
            byte size such as ``10MB``. Case and surrounding whitespace are
            ignored.

    Returns:
        The limiter descriptor.

    Raises:
        RateParseError: the string is not a preset and not a byte size, or
            the size exceeds the signed 32-bit range.

    """
    normalized = text.strip().lower()

    if normalized in UNLIMITED_TOKENS:
        return UNLIMITED
    if normalized in PRESET_RATES:
        return RateLimiterSpec.for_rate(PRESET_RATES[normalized])

    value = parse_byte_size(normalized)
    if value > MAX_RATE:
        msg = f"rate {text!r} exceeds representable range"
        raise RateParseError(msg, {"value": value, "max": MAX_RATE})
    return RateLimiterSpec.for_rate(value)


def _limiter_for(config: Config, field: str) -> RateLimiterSpec:
    text = getattr(config, field)
    try:
        return parse_rate_limit(text)
    except RateParseError as e:
        logger.warning("RateLimit [%s] unrecognized (%s), set as unlimited", text, e)
        return UNLIMITED


def upload_limiter(config: Config) -> RateLimiterSpec:
    """Upload limiter for ``config``; unparsable rates mean unlimited."""
    return _limiter_for(config, "upload_rate")


def download_limiter(config: Config) -> RateLimiterSpec:
    """Download limiter for ``config``; unparsable rates mean unlimited."""
    return _limiter_for(config, "download_rate")


def sanitize_rates(config: Config) -> tuple[Config, list[str]]:
    """Reset every unparsable rate string to empty.

    Returns:
        The (possibly new) snapshot and the names of the fields that were reset.

    """
    reset: list[str] = []
    for field in RATE_FIELDS:
        text = getattr(config, field)
        try:
            parse_rate_limit(text)
        except RateParseError as e:
            logger.warning(
                "RateLimit [%s] for %s unrecognized (%s), reset to unlimited",
                text,
                field,
                e,
            )
            reset.append(field)

    if not reset:
        return config, reset
    return config.model_copy(update=dict.fromkeys(reset, "")), reset
