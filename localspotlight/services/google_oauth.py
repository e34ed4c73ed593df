import json
from dataclasses import dataclass

from authlib.integrations.requests_client import OAuth2Session
from authlib.common.errors import AuthlibBaseError

from ..config import settings

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/business.manage",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]


class GoogleOAuthError(Exception):
    pass


@dataclass
class OAuthState:
    org_id: str
    user_id: str

    def encode(self) -> str:
        return json.dumps({"orgId": self.org_id, "userId": self.user_id})

    @classmethod
    def decode(cls, raw: str | None) -> "OAuthState":
        """Parse the state parameter; raises ValueError when it is not the expected JSON."""
        if not raw:
            raise ValueError("empty state")
        data = json.loads(raw)
        if not isinstance(data, dict) or not data.get("orgId") or not data.get("userId"):
            raise ValueError("state is missing orgId or userId")
        return cls(org_id=str(data["orgId"]), user_id=str(data["userId"]))


def _redirect_uri() -> str:
    return settings.google_redirect_uri or f"{settings.public_base_url.rstrip('/')}/api/google/oauth/callback"


def _client(**kwargs) -> OAuth2Session:
    if not settings.google_client_id or not settings.google_client_secret:
        raise GoogleOAuthError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be configured.")
    return OAuth2Session(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        **kwargs,
    )


def build_authorization_url(state: OAuthState) -> str:
    client = _client(scope=" ".join(GOOGLE_SCOPES), redirect_uri=_redirect_uri())
    url, _ = client.create_authorization_url(
        AUTHORIZE_URL,
        state=state.encode(),
        access_type="offline",
        prompt="consent",
        include_granted_scopes="true",
    )
    return url


def exchange_code(code: str) -> dict:
    """Trade an authorization code for tokens (`access_token`, `refresh_token`, `scope`, ...)."""
    client = _client(redirect_uri=_redirect_uri())
    try:
        token = client.fetch_token(TOKEN_URL, code=code, grant_type="authorization_code")
    except AuthlibBaseError as e:
        raise GoogleOAuthError(f"Google token exchange failed: {e}") from e
    return dict(token)


def refresh_access_token(refresh_token: str) -> str:
    client = _client()
    try:
        token = client.refresh_token(TOKEN_URL, refresh_token=refresh_token)
    except AuthlibBaseError as e:
        raise GoogleOAuthError(f"Google token refresh failed: {e}") from e

    access_token = token.get("access_token")
    if not access_token:
        raise GoogleOAuthError("Google did not return an access token.")
    return access_token


def granted_scopes(token: dict) -> list[str]:
    scope = token.get("scope")
    if isinstance(scope, str) and scope:
        return scope.split()
    if isinstance(scope, (list, tuple)):
        return list(scope)
    return list(GOOGLE_SCOPES)
