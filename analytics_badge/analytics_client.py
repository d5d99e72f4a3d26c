from __future__ import annotations
"""
Google Analytics API Client
Fetches the weekly users total for a profile and lists account summaries,
refreshing the account's OAuth token on the way
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple
from google.oauth2.credentials import Credentials
from google.auth.transport.requests import Request
from googleapiclient.discovery import build

from analytics_badge.settings import Settings
from analytics_badge.auth.token_model import OAuthToken, to_naive_utc
from analytics_badge.errors import UpstreamError
from analytics_badge.config.badge_windows import (
    ANALYTICS_SCOPE,
    PROFILE_ID_PREFIX,
    USERS_METRIC,
    WINDOW_START,
    WINDOW_END,
)

logger = logging.getLogger(__name__)


class AnalyticsClient:
    """
    Client for the Google Analytics v3 API acting for a single account.

    Every call returns its result together with the token the client holds
    afterwards, so callers can persist a refresh without relying on the
    credentials object being mutated in place.
    """

    def __init__(
        self,
        token: Optional[OAuthToken],
        settings: Settings,
        service_builder: Callable[..., Any] = build,
    ):
        self.settings = settings
        self.credentials = self._load_credentials(token)
        self._service_builder = service_builder
        self._service = None

    def _load_credentials(self, token: Optional[OAuthToken]) -> Credentials:
        """
        Build google-auth credentials from a stored token.
        A missing token is accepted; the first call will then fail with UpstreamError.
        """
        web = self.settings.client_config["web"]
        return Credentials(
            token=token.access_token if token else None,
            refresh_token=(token.refresh_token or None) if token else None,
            token_uri=web.get("token_uri", "https://oauth2.googleapis.com/token"),
            client_id=web.get("client_id"),
            client_secret=web.get("client_secret"),
            scopes=[ANALYTICS_SCOPE],
            expiry=to_naive_utc(token.expiry) if token else None,
        )

    @property
    def token(self) -> Optional[OAuthToken]:
        """Snapshot of the credential currently held by the client."""
        if not self.credentials.token:
            return None
        return OAuthToken(
            access_token=self.credentials.token,
            refresh_token=self.credentials.refresh_token or "",
            expiry=self.credentials.expiry,
        )

    # ============================================================
    # TOKEN REFRESH
    # ============================================================

    def _refresh_if_expired(self) -> None:
        if self.credentials.valid:
            return

        logger.info("[AUTH] Token missing or expired, refreshing...")
        logger.debug(
            f"[AUTH] token present: {self.credentials.token is not None}, "
            f"refresh_token present: {self.credentials.refresh_token is not None}, "
            f"expiry: {self.credentials.expiry}"
        )
        try:
            self.credentials.refresh(Request())
        except Exception as e:
            logger.error(f"[AUTH] Refresh failed: {type(e).__name__}: {e}")
            raise UpstreamError(f"Failed to refresh Google OAuth token: {e}") from e
        logger.info(f"[AUTH] Token refreshed, new expiry: {self.credentials.expiry}")

    def _get_service(self):
        self._refresh_if_expired()
        if self._service is None:
            try:
                self._service = self._service_builder(
                    "analytics", "v3", credentials=self.credentials, cache_discovery=False
                )
            except Exception as e:
                raise UpstreamError(f"Failed to build analytics service: {e}") from e
        return self._service

    # ============================================================
    # ANALYTICS API METHODS
    # ============================================================

    def fetch_weekly_users(self, profile: str) -> Tuple[str, Optional[OAuthToken]]:
        """
        Fetch the trailing 7-day users total (ending yesterday) for a profile.

        Returns:
            Tuple of (total as returned by the API, token held after the call)
        """
        service = self._get_service()
        try:
            result = service.data().ga().get(
                ids=PROFILE_ID_PREFIX + profile,
                start_date=WINDOW_START,
                end_date=WINDOW_END,
                metrics=USERS_METRIC,
            ).execute()
        except Exception as e:
            logger.error(f"[ANALYTICS] [PROFILE: {profile}] Fetch failed: {e}")
            raise UpstreamError(f"Analytics data request failed: {e}") from e

        totals = result.get("totalsForAllResults") or {}
        if USERS_METRIC not in totals:
            raise UpstreamError(f"Analytics response for profile {profile} has no {USERS_METRIC} total")

        logger.info(f"[ANALYTICS] [PROFILE: {profile}] {USERS_METRIC}={totals[USERS_METRIC]}")
        return totals[USERS_METRIC], self.token

    def list_account_summaries(self) -> Tuple[Dict[str, Any], Optional[OAuthToken]]:
        """
        List the analytics accounts, web properties and profiles visible to the user.

        Returns:
            Tuple of (accountSummaries resource, token held after the call)
        """
        service = self._get_service()
        try:
            summaries = service.management().accountSummaries().list().execute()
        except Exception as e:
            logger.error(f"[ANALYTICS] Account summaries failed: {e}")
            raise UpstreamError(f"Analytics management request failed: {e}") from e

        logger.info(
            f"[ANALYTICS] Fetched {len(summaries.get('items', []))} account summaries "
            f"for {summaries.get('username')}"
        )
        return summaries, self.token


def web_property_ids(summaries: Dict[str, Any]) -> set:
    """Ids of every web property listed in an accountSummaries resource."""
    return {
        web_property["id"]
        for account in summaries.get("items", [])
        for web_property in account.get("webProperties", [])
        if web_property.get("id")
    }
