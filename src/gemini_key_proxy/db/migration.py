"""Import credentials from the legacy keys.json document store into SQLite."""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import orjson
import structlog
from dateutil import parser as date_parser

from gemini_key_proxy.db.repositories.base import CredentialStore


logger = structlog.get_logger(__name__)


def _parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO8601 string or a Unix timestamp in milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    parsed = date_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


async def import_legacy_keys(json_path: Path, store: CredentialStore) -> int:
    """Import credentials from a keys.json array.

    Each entry looks like ``{"key", "isActive", "lastUsed",
    "rateLimitResetAt", "failureCount", "requestCount", "_id"}``. Entries
    whose key is already stored are skipped.

    Args:
        json_path: Path to keys.json
        store: Destination credential store

    Returns:
        Number of credentials imported
    """
    if not json_path.exists():
        logger.info("migration_skipped_no_file", path=str(json_path))
        return 0

    try:
        data = orjson.loads(json_path.read_bytes())
    except (orjson.JSONDecodeError, OSError):
        logger.exception("migration_failed_read", path=str(json_path))
        return 0

    if not isinstance(data, list) or not data:
        logger.info("migration_skipped_empty", path=str(json_path))
        return 0

    imported = 0
    for index, entry in enumerate(data):
        secret = entry.get("key") if isinstance(entry, dict) else None
        if not secret:
            logger.warning("migration_entry_without_key", index=index)
            continue

        if await store.find_by_secret(secret):
            logger.debug("migration_skipped_exists", index=index)
            continue

        try:
            last_used_at = _parse_timestamp(entry.get("lastUsed"))
            rate_limit_reset_at = _parse_timestamp(entry.get("rateLimitResetAt"))
        except (ValueError, OverflowError) as e:
            logger.warning("migration_invalid_timestamp", index=index, error=str(e))
            last_used_at = None
            rate_limit_reset_at = None

        credential = await store.create(secret)
        credential.is_active = bool(entry.get("isActive", True))
        credential.last_used_at = last_used_at
        credential.rate_limit_reset_at = rate_limit_reset_at
        credential.failure_count = max(int(entry.get("failureCount") or 0), 0)
        credential.request_count = max(int(entry.get("requestCount") or 0), 0)
        await store.update(credential)

        imported += 1
        logger.info("migration_credential_created", credential_id=credential.id)

    logger.info("migration_complete", imported=imported, total=len(data))
    return imported
