"""
Thin client over the hosted auth platform's REST API.

Password sign-in, magic links (PKCE), code exchange, refresh and sign-out are
all delegated; this module only shapes requests and maps failures to
`AuthProviderError`.
"""
import base64
import hashlib
import secrets
from dataclasses import dataclass, field
from typing import Any

import requests

from ..config import settings
from ..logging_setup import log_event

TIMEOUT = 15


class AuthProviderError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class AuthSession:
    access_token: str
    refresh_token: str | None
    expires_in: int
    user: dict[str, Any] = field(default_factory=dict)


def _auth_url(path: str) -> str:
    return f"{settings.supabase_url.rstrip('/')}/auth/v1/{path.lstrip('/')}"


def _headers(access_token: str | None = None) -> dict[str, str]:
    if not settings.supabase_anon_key:
        raise AuthProviderError("SUPABASE_ANON_KEY is not configured.")
    headers = {"apikey": settings.supabase_anon_key, "Content-Type": "application/json"}
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"
    return headers


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    return body.get("error_description") or body.get("msg") or body.get("message") or body.get("error") or str(body)


def _session_from(resp: requests.Response) -> AuthSession:
    if resp.status_code >= 400:
        raise AuthProviderError(_error_message(resp), resp.status_code)
    data = resp.json()
    if not data.get("access_token"):
        raise AuthProviderError("Auth provider did not return a session.", resp.status_code)
    return AuthSession(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_in=int(data.get("expires_in") or 3600),
        user=data.get("user") or {},
    )


def generate_pkce_pair() -> tuple[str, str]:
    """Return (code_verifier, S256 code_challenge)."""
    verifier = secrets.token_urlsafe(48)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def sign_in_with_password(email: str, password: str) -> AuthSession:
    resp = requests.post(
        _auth_url("token"),
        params={"grant_type": "password"},
        json={"email": email, "password": password},
        headers=_headers(),
        timeout=TIMEOUT,
    )
    session = _session_from(resp)
    log_event("auth_password_sign_in", user_id=session.user.get("id"))
    return session


def send_magic_link(email: str, redirect_to: str, code_challenge: str) -> None:
    resp = requests.post(
        _auth_url("otp"),
        params={"redirect_to": redirect_to},
        json={
            "email": email,
            "create_user": True,
            "code_challenge": code_challenge,
            "code_challenge_method": "s256",
        },
        headers=_headers(),
        timeout=TIMEOUT,
    )
    if resp.status_code >= 400:
        raise AuthProviderError(_error_message(resp), resp.status_code)
    log_event("auth_magic_link_sent")


def exchange_code_for_session(auth_code: str, code_verifier: str) -> AuthSession:
    resp = requests.post(
        _auth_url("token"),
        params={"grant_type": "pkce"},
        json={"auth_code": auth_code, "code_verifier": code_verifier},
        headers=_headers(),
        timeout=TIMEOUT,
    )
    return _session_from(resp)


def refresh_session(refresh_token: str) -> AuthSession:
    resp = requests.post(
        _auth_url("token"),
        params={"grant_type": "refresh_token"},
        json={"refresh_token": refresh_token},
        headers=_headers(),
        timeout=TIMEOUT,
    )
    return _session_from(resp)


def sign_out(access_token: str) -> None:
    resp = requests.post(_auth_url("logout"), headers=_headers(access_token), timeout=TIMEOUT)
    # 401 means the token already expired; the session is gone either way.
    if resp.status_code >= 400 and resp.status_code != 401:
        raise AuthProviderError(_error_message(resp), resp.status_code)
