from __future__ import annotations
"""
Badge metric resolution.

fast cache -> database -> analytics API

Once a metric is in the fast cache neither the database nor the API is touched,
which bounds API traffic to one call per property per cache TTL. The database
round trip on a miss exists only to map the property to its profile and to
refresh/persist the owner's token.

There is no lock around check-then-populate: concurrent misses for the same
property each fetch and write the same value.
"""

import dataclasses
import logging
from typing import Callable, Optional

from analytics_badge.auth.token_model import OAuthToken
from analytics_badge.config.badge_windows import metric_key, METRIC_CACHE_TTL_SECONDS
from analytics_badge.errors import (
    CacheError,
    DataCorruptionError,
    NotFoundError,
    PersistenceError,
    UpstreamError,
)

logger = logging.getLogger(__name__)


class BadgeCache:
    """Resolves a badge property id to its weekly users count"""

    def __init__(
        self,
        cache,
        db,
        analytics_factory: Callable[[Optional[OAuthToken]], object],
        ttl_seconds: int = METRIC_CACHE_TTL_SECONDS,
    ):
        self.cache = cache
        self.db = db
        self.analytics_factory = analytics_factory
        self.ttl_seconds = ttl_seconds

    def _cached(self, property_id: str) -> Optional[int]:
        key = metric_key(property_id)
        try:
            raw = self.cache.get(key)
        except CacheError as e:
            logger.warning(f"[BADGE] [{property_id}] Cache read failed, treating as miss: {e}")
            return None
        if raw is None:
            return None
        try:
            return int(raw.decode() if isinstance(raw, bytes) else raw)
        except (UnicodeDecodeError, ValueError) as e:
            raise DataCorruptionError(f"Cached value for {key} is not an integer: {raw!r}") from e

    def resolve(self, property_id: str) -> int:
        cached = self._cached(property_id)
        if cached is not None:
            return cached

        prop = self.db.fetch_property(property_id)
        if prop is None:
            raise NotFoundError(f"Unknown badge: {property_id}")

        account = self.db.fetch_account(prop.account)
        if account is None:
            raise NotFoundError(
                f"Property {property_id} references missing account {prop.account}"
            )
        loaded = dataclasses.replace(account)

        client = self.analytics_factory(account.get_token())
        raw_total, token = client.fetch_weekly_users(prop.profile)
        try:
            total = int(raw_total)
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"Analytics total for {property_id} is not an integer: {raw_total!r}") from e

        try:
            self.cache.set(metric_key(property_id), str(total).encode(), self.ttl_seconds)
        except CacheError as e:
            logger.error(f"[BADGE] [{property_id}] Cache write failed: {e}")

        if token is not None:
            account.set_token(token)
        if account != loaded:
            try:
                self.db.upsert_account(account)
                logger.info(f"[BADGE] [{property_id}] Refreshed token persisted for {account.username}")
            except PersistenceError as e:
                logger.error(f"[BADGE] [{property_id}] Token persist failed for {account.username}: {e}")

        return total
