from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


def to_naive_utc(expiry: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize expiry to naive UTC.
    google-auth compares expiry against a naive UTC clock internally.
    """
    if expiry is None:
        return None
    if expiry.tzinfo is not None:
        expiry = expiry.astimezone(timezone.utc)
    return expiry.replace(tzinfo=None)


@dataclass(frozen=True)
class OAuthToken:
    """
    Canonical delegated-authorization credential.
    Immutable: a refresh produces a new token rather than mutating this one.
    """
    access_token: str
    refresh_token: str = ""
    expiry: Optional[datetime] = None


@dataclass
class Account:
    """
    A linked analytics user and the credential held on their behalf.
    An empty access_token means the account has not been authorized yet.
    """
    username: str = ""
    access_token: str = ""
    refresh_token: str = ""
    expiry: Optional[datetime] = None

    def get_token(self) -> Optional[OAuthToken]:
        if not self.access_token:
            return None
        return OAuthToken(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expiry=self.expiry,
        )

    def set_token(self, token: OAuthToken) -> None:
        """
        Store a (possibly refreshed) token.
        Refresh tokens are only issued on the initial grant, so an empty one
        never overwrites the stored value.
        """
        self.access_token = token.access_token
        if token.refresh_token:
            self.refresh_token = token.refresh_token
        self.expiry = to_naive_utc(token.expiry)
