"""
Canonical constants for badge resolution.
Centralizing these values keeps the cache, the analytics query and the
session layer agreeing on keys and horizons.
"""

# Cache Keys
METRIC_KEY_PREFIX = "b:"   # b:<property_id> -> weekly users as decimal string
SESSION_KEY_PREFIX = "s:"  # s:<session_id> -> account username

# Cache Horizons
METRIC_CACHE_TTL_SECONDS = 12 * 3600
SESSION_TTL_SECONDS = 3600
BADGE_MAX_AGE_SECONDS = 3600

# Analytics Query Window
# Trailing 7 days, ending yesterday (today is still incomplete)
WINDOW_START = "7daysAgo"
WINDOW_END = "yesterday"
USERS_METRIC = "ga:users"
PROFILE_ID_PREFIX = "ga:"

# OAuth
ANALYTICS_SCOPE = "https://www.googleapis.com/auth/analytics.readonly"


def metric_key(property_id: str) -> str:
    return METRIC_KEY_PREFIX + property_id


def session_key(session_id: str) -> str:
    return SESSION_KEY_PREFIX + session_id
