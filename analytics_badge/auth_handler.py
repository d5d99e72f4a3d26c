from __future__ import annotations
import logging
from typing import Optional
from google_auth_oauthlib.flow import Flow

from analytics_badge.settings import Settings
from analytics_badge.auth.token_model import OAuthToken
from analytics_badge.errors import UpstreamError
from analytics_badge.config.badge_windows import ANALYTICS_SCOPE

logger = logging.getLogger(__name__)

SCOPES = [ANALYTICS_SCOPE]


class GoogleAuthHandler:
    """Handles the OAuth 2.0 web flow for linking a Google Analytics account."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _flow(self) -> Flow:
        # Consent and exchange build separate flows, so no PKCE verifier can be shared
        return Flow.from_client_config(
            self.settings.client_config,
            scopes=SCOPES,
            redirect_uri=self.settings.redirect_uri,
            autogenerate_code_verifier=False
        )

    def get_authorization_url(self, state: Optional[str] = None) -> str:
        """
        Generate the Google OAuth consent URL.

        access_type='offline' ensures we get a refresh_token; prompt='consent'
        makes Google issue one again when the user re-links.
        """
        authorization_url, _ = self._flow().authorization_url(
            access_type='offline',
            include_granted_scopes='false',
            prompt='consent',
            state=state
        )
        return authorization_url

    def exchange(self, code: str) -> OAuthToken:
        """
        Exchange an authorization code for tokens.

        Raises:
            UpstreamError if Google rejects the code or the analytics scope was not granted
        """
        if not code:
            raise UpstreamError("Missing authorization code")

        flow = self._flow()
        try:
            flow.fetch_token(code=code)
        except Exception as e:
            logger.error(f"[AUTH] Code exchange failed: {e}")
            raise UpstreamError(f"Authentication failed: {e}") from e

        credentials = flow.credentials
        if credentials.scopes and ANALYTICS_SCOPE not in credentials.scopes:
            raise UpstreamError(
                "Analytics permission (analytics.readonly) was not granted. "
                "Please approve all requested permissions during login."
            )

        logger.info(
            f"[AUTH] Code exchanged (refresh_token present: {credentials.refresh_token is not None})"
        )
        return OAuthToken(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token or "",
            expiry=credentials.expiry,
        )
