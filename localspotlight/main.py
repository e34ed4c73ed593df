import logging
import uuid
from urllib.parse import urlencode

import requests
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import missing_secrets
from .db import engine
from .logging_setup import log_event, request_id_var, setup_logging
from .models import Base
from .routes import auth, dashboard, generation, google, orgs, posts, sync
from .schemas import first_error
from .security.auth import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    LoginRequired,
    clear_session_cookies,
    needs_refresh,
    set_session_cookies,
    sets_session_cookie,
)
from .services import auth_provider

logger = logging.getLogger(__name__)

app = FastAPI(title="LocalSpotlight Console")
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


@app.middleware("http")
async def refresh_expired_session(request: Request, call_next):
    refresh_token = request.cookies.get(REFRESH_COOKIE)
    if not refresh_token or not needs_refresh(request.cookies.get(ACCESS_COOKIE)):
        return await call_next(request)

    try:
        session = await run_in_threadpool(auth_provider.refresh_session, refresh_token)
    except auth_provider.AuthProviderError as e:
        log_event("session_refresh_failed", level="warning", status_code=e.status_code, error=str(e))
        response = await call_next(request)
        if not sets_session_cookie(response):
            clear_session_cookies(response, keys=(ACCESS_COOKIE, REFRESH_COOKIE))
        return response
    except requests.RequestException as e:
        log_event("session_refresh_unreachable", level="warning", error=str(e))
        return await call_next(request)

    request.state.access_token = session.access_token
    response = await call_next(request)
    # Sign-in and sign-out write their own cookies.
    if not sets_session_cookie(response):
        set_session_cookies(response, session.access_token, session.refresh_token or refresh_token, session.expires_in)
    log_event("session_refreshed", user_id=session.user.get("id"))
    return response


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-Id"] = request_id
    return response


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    # Form posts cannot be replayed after sign-in, so only GET pages come back.
    if request.method == "GET" and exc.next_path and exc.next_path != "/":
        return RedirectResponse(url=f"/sign-in?{urlencode({'redirect': exc.next_path})}", status_code=303)
    return RedirectResponse(url="/sign-in", status_code=303)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": first_error(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": str(exc), "type": type(exc).__name__},
    )


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/ready")
def readiness_check():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "ready"}
    except Exception as e:
        log_event("readiness_failed", level="error", error=str(e))
        return JSONResponse(status_code=503, content={"status": "not_ready", "error": "Database unreachable."})


app.include_router(auth.router)
app.include_router(orgs.router)
app.include_router(dashboard.router)
app.include_router(google.router)
app.include_router(posts.router)
app.include_router(sync.router)
app.include_router(generation.router)


@app.on_event("startup")
def on_startup():
    setup_logging()
    Base.metadata.create_all(bind=engine)

    missing = missing_secrets()
    if missing:
        log_event("startup_missing_secrets", level="warning", missing=", ".join(missing))
    log_event("startup_complete")
