import hmac
from dataclasses import dataclass, field
from typing import Any

import jwt
from fastapi import Request, HTTPException, Depends, status
from fastapi.responses import Response

from ..config import settings

ALGORITHM = "HS256"
AUDIENCE = "authenticated"

ACCESS_COOKIE = "sb-access-token"
REFRESH_COOKIE = "sb-refresh-token"
PKCE_COOKIE = "sb-code-verifier"
REFRESH_MAX_AGE = 30 * 24 * 60 * 60


@dataclass
class AuthUser:
    id: str
    email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.metadata.get("name") or self.email or "Member"


class LoginRequired(Exception):
    """Raised by page dependencies; the app turns it into a sign-in redirect."""

    def __init__(self, next_path: str = "/"):
        super().__init__(next_path)
        self.next_path = next_path


def decode_session_token(token: str) -> AuthUser | None:
    if not settings.supabase_jwt_secret:
        return None
    try:
        payload = jwt.decode(token, settings.supabase_jwt_secret, algorithms=[ALGORITHM], audience=AUDIENCE)
    except jwt.PyJWTError:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None
    return AuthUser(id=user_id, email=payload.get("email"), metadata=payload.get("user_metadata") or {})


def needs_refresh(access_token: str | None) -> bool:
    """True when the access cookie is gone or no longer decodes, and a refresh could help."""
    if not settings.supabase_jwt_secret:
        return False
    return not access_token or decode_session_token(access_token) is None


def get_current_user(request: Request) -> AuthUser | None:
    # 1. Session refreshed earlier in this request, then the session cookie
    token = getattr(request.state, "access_token", None) or request.cookies.get(ACCESS_COOKIE)

    # 2. Bearer token for API clients
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split("Bearer ", 1)[1]

    if not token:
        return None
    return decode_session_token(token)


def require_user(user: AuthUser | None = Depends(get_current_user)) -> AuthUser:
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_page_user(request: Request, user: AuthUser | None = Depends(get_current_user)) -> AuthUser:
    if not user:
        raise LoginRequired(request.url.path)
    return user


def bearer_matches(request: Request, secret: str | None) -> bool:
    if not secret:
        return False
    header = request.headers.get("Authorization") or ""
    return hmac.compare_digest(header, f"Bearer {secret}")


def set_session_cookies(response: Response, access_token: str, refresh_token: str | None, expires_in: int):
    response.set_cookie(
        key=ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        max_age=expires_in,
        path="/",
    )
    if refresh_token:
        response.set_cookie(
            key=REFRESH_COOKIE,
            value=refresh_token,
            httponly=True,
            secure=settings.cookie_secure,
            samesite="lax",
            max_age=REFRESH_MAX_AGE,
            path="/",
        )


def sets_session_cookie(response: Response) -> bool:
    return any(value.startswith(f"{ACCESS_COOKIE}=") for value in response.headers.getlist("set-cookie"))


def clear_session_cookies(response: Response, keys=(ACCESS_COOKIE, REFRESH_COOKIE, PKCE_COOKIE)):
    for key in keys:
        response.delete_cookie(key=key, path="/", httponly=True, secure=settings.cookie_secure, samesite="lax")
