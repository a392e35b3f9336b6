"""Rotation constants."""

RATE_LIMIT_STATUS_CODE = 429

# Upper bound below which x-ratelimit-reset is read as a delta, not an epoch
EPOCH_SECONDS_THRESHOLD = 1_000_000_000

RATE_LIMIT_RESET_HEADER = "x-ratelimit-reset"
RETRY_AFTER_HEADER = "retry-after"
