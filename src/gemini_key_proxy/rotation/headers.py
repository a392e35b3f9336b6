"""Parsing of upstream rate-limit reset hints."""

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

from dateutil import parser as dateutil_parser
from structlog import get_logger

from gemini_key_proxy.rotation.constants import (
    EPOCH_SECONDS_THRESHOLD,
    RATE_LIMIT_RESET_HEADER,
    RETRY_AFTER_HEADER,
)


logger = get_logger(__name__)


def _parse_date(value: str) -> datetime | None:
    try:
        dt = dateutil_parser.parse(value)
    except (ValueError, TypeError, OverflowError, dateutil_parser.ParserError):
        return None
    # Ensure timezone-aware datetime (assume UTC if naive)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _from_epoch(seconds: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, ValueError, OSError):
        return None


def _after(now: datetime, seconds: float) -> datetime | None:
    try:
        return now + timedelta(seconds=seconds)
    except OverflowError:
        return None


def parse_rate_limit_reset(
    headers: Mapping[str, str], now: datetime | None = None
) -> datetime | None:
    """Work out when a rate-limited key becomes usable again.

    Checks headers in order of preference:
    1. x-ratelimit-reset (Unix seconds, a small number of seconds from now,
       or a date)
    2. retry-after (seconds or HTTP date)

    Args:
        headers: Upstream response headers (case-insensitive lookup)
        now: Reference time for relative values

    Returns:
        Reset instant in UTC, or None when no usable hint is present
    """
    now = now or datetime.now(UTC)
    headers_lower = {k.lower(): v for k, v in headers.items()}

    if (reset_value := headers_lower.get(RATE_LIMIT_RESET_HEADER)) is not None:
        try:
            seconds = float(reset_value)
        except ValueError:
            parsed = _parse_date(reset_value)
            if parsed is not None:
                return parsed
        else:
            reset_at: datetime | None = None
            if seconds >= EPOCH_SECONDS_THRESHOLD:
                reset_at = _from_epoch(seconds)
            elif seconds >= 0:
                reset_at = _after(now, seconds)
            if reset_at is not None:
                return reset_at
        logger.debug(
            "rate_limit_reset_unparseable",
            header=RATE_LIMIT_RESET_HEADER,
            value=reset_value,
        )

    if (retry_after := headers_lower.get(RETRY_AFTER_HEADER)) is not None:
        try:
            seconds = int(retry_after)
        except ValueError:
            parsed = _parse_date(retry_after)
            if parsed is not None:
                return parsed
        else:
            if seconds >= 0 and (reset_at := _after(now, seconds)) is not None:
                return reset_at
        logger.debug(
            "rate_limit_reset_unparseable", header=RETRY_AFTER_HEADER, value=retry_after
        )

    return None
