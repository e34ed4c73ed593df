from html import escape
from urllib.parse import urlencode

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from ..config import settings
from ..logging_setup import log_event
from ..security.auth import (
    ACCESS_COOKIE,
    PKCE_COOKIE,
    clear_session_cookies,
    get_current_user,
    set_session_cookies,
)
from ..services import auth_provider
from ..services.auth_provider import AuthProviderError
from .ui import render_auth_page

router = APIRouter(tags=["auth"])

PKCE_MAX_AGE = 10 * 60

SIGN_IN_CONTENT = """
<form method="post" action="/sign-in/password" class="space-y-4">
  <input type="hidden" name="redirect" value="{redirect}">
  <input name="email" type="email" required placeholder="you@business.com"
         class="w-full px-4 py-2 rounded-lg border border-slate-300 dark:border-slate-700 bg-transparent">
  <input name="password" type="password" required placeholder="Password"
         class="w-full px-4 py-2 rounded-lg border border-slate-300 dark:border-slate-700 bg-transparent">
  <button class="w-full py-2 rounded-lg bg-blue-600 text-white font-semibold">Sign in</button>
</form>
<div class="my-6 text-center text-xs uppercase tracking-widest text-slate-400">or</div>
<form method="post" action="/sign-in/magic-link" class="space-y-4">
  <input type="hidden" name="redirect" value="{redirect}">
  <input name="email" type="email" required placeholder="you@business.com"
         class="w-full px-4 py-2 rounded-lg border border-slate-300 dark:border-slate-700 bg-transparent">
  <button class="w-full py-2 rounded-lg border border-blue-600 text-blue-600 font-semibold">Email me a magic link</button>
</form>
"""


def safe_redirect(target: str | None, default: str = "/") -> str:
    """Only same-site paths are accepted as post sign-in destinations."""
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return default


def _sign_in_url(status: str, redirect: str) -> str:
    params = {"status": status}
    if redirect != "/":
        params["redirect"] = redirect
    return f"/sign-in?{urlencode(params)}"


@router.get("/sign-in", response_class=HTMLResponse)
def sign_in_page(request: Request, redirect: str | None = None):
    if get_current_user(request):
        return RedirectResponse(url=safe_redirect(redirect), status_code=303)

    content = SIGN_IN_CONTENT.format(redirect=escape(safe_redirect(redirect)))
    return render_auth_page(request, "Sign in", content)


@router.post("/sign-in/password")
def sign_in_password(
    email: str = Form(...),
    password: str = Form(...),
    redirect: str = Form("/"),
):
    target = safe_redirect(redirect)
    try:
        session = auth_provider.sign_in_with_password(email.strip(), password)
    except AuthProviderError as e:
        log_event("auth_sign_in_failed", level="warning", error=str(e), status_code=e.status_code)
        status = "invalid_credentials" if e.status_code in (400, 401) else "auth_failed"
        return RedirectResponse(url=_sign_in_url(status, target), status_code=303)

    response = RedirectResponse(url=target, status_code=303)
    set_session_cookies(response, session.access_token, session.refresh_token, session.expires_in)
    return response


@router.post("/sign-in/magic-link")
def sign_in_magic_link(email: str = Form(""), redirect: str = Form("/")):
    target = safe_redirect(redirect)
    email = email.strip()
    if not email:
        return RedirectResponse(url=_sign_in_url("missing_email", target), status_code=303)

    verifier, challenge = auth_provider.generate_pkce_pair()
    callback = f"{settings.public_base_url.rstrip('/')}/auth/callback?{urlencode({'redirect': target})}"
    try:
        auth_provider.send_magic_link(email, callback, challenge)
    except AuthProviderError as e:
        log_event("auth_magic_link_failed", level="warning", error=str(e), status_code=e.status_code)
        return RedirectResponse(url=_sign_in_url("auth_failed", target), status_code=303)

    response = RedirectResponse(url=_sign_in_url("magic_link_sent", target), status_code=303)
    response.set_cookie(
        key=PKCE_COOKIE,
        value=verifier,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        max_age=PKCE_MAX_AGE,
        path="/",
    )
    return response


@router.get("/auth/callback")
def auth_callback(request: Request, code: str | None = None, redirect: str | None = None):
    target = safe_redirect(redirect)
    if not code:
        return RedirectResponse(url=target, status_code=303)

    verifier = request.cookies.get(PKCE_COOKIE)
    if not verifier:
        return RedirectResponse(url=_sign_in_url("auth_failed", target), status_code=303)

    try:
        session = auth_provider.exchange_code_for_session(code, verifier)
    except AuthProviderError as e:
        log_event("auth_code_exchange_failed", level="warning", error=str(e), status_code=e.status_code)
        return RedirectResponse(url=_sign_in_url("auth_failed", target), status_code=303)

    response = RedirectResponse(url="/", status_code=303)
    set_session_cookies(response, session.access_token, session.refresh_token, session.expires_in)
    response.delete_cookie(PKCE_COOKIE, path="/")
    return response


@router.post("/sign-out")
def sign_out(request: Request):
    access_token = request.cookies.get(ACCESS_COOKIE)
    if access_token:
        try:
            auth_provider.sign_out(access_token)
        except AuthProviderError as e:
            log_event("auth_sign_out_failed", level="warning", error=str(e), status_code=e.status_code)

    response = RedirectResponse(url="/sign-in", status_code=303)
    clear_session_cookies(response)
    return response
