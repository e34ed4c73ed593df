from html import escape
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, Query, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from ..logging_setup import log_event
from ..models import GbpAccount, GbpLocation, GoogleConnection
from ..security.auth import AuthUser, get_current_user, require_page_user, require_user
from ..security.encryption import TokenEncryptionError
from ..security.rbac import OWNER_ROLES, get_membership, has_role, resolve_selected_org
from ..services.audit import record_audit
from ..services.google_business import GoogleApiError, fetch_user_email, list_accounts
from ..services.google_connect import (
    ConnectError,
    disconnect_google,
    resync_locations,
    set_managed_locations,
    store_locations,
    upsert_accounts,
    upsert_connections,
)
from ..services.google_oauth import (
    GoogleOAuthError,
    OAuthState,
    build_authorization_url,
    exchange_code,
    granted_scopes,
)
from ..services.pagination import paginate
from .ui import card, empty_state, fmt_dt, hidden, pagination_links, remember_org, render_page

router = APIRouter(tags=["google"])

INTEGRATIONS_PATH = "/integrations/google"


def integrations_redirect(status: str, org_id: str | None = None) -> RedirectResponse:
    params = {"orgId": org_id, "status": status} if org_id else {"status": status}
    return RedirectResponse(url=f"{INTEGRATIONS_PATH}?{urlencode(params)}", status_code=303)


# --- Page ---

@router.get(INTEGRATIONS_PATH, response_class=HTMLResponse)
def google_integration_page(
    request: Request,
    response: Response,
    page: int = 1,
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    org, role = resolve_selected_org(request, db, user)
    if not org:
        return RedirectResponse(url="/orgs?status=no_org", status_code=303)
    remember_org(request, response, org)

    can_manage = role in OWNER_ROLES
    connections = db.query(GoogleConnection).filter(GoogleConnection.org_id == org.id).all()
    accounts = db.query(GbpAccount).filter(GbpAccount.org_id == org.id).order_by(GbpAccount.display_name.asc()).all()

    query = db.query(GbpLocation).filter(GbpLocation.org_id == org.id)
    pager = paginate(query.count(), page)
    locations = query.order_by(GbpLocation.title.asc()).offset(pager.offset).limit(pager.per_page).all()

    if connections:
        account_rows = "".join(
            f'<li class="py-1">{escape(a.display_name or a.google_account_name)} '
            f'<span class="text-xs text-slate-500">{escape(a.google_account_name)}</span></li>'
            for a in accounts
        )
        status_body = f"""
        <p class="text-sm mb-3">Connected {len(connections)} account(s), last updated {fmt_dt(max(c.updated_at or c.created_at for c in connections))}.</p>
        <ul class="text-sm mb-4">{account_rows}</ul>"""
    else:
        status_body = '<p class="text-sm mb-4">Google Business Profile is not connected yet.</p>'

    if can_manage:
        connect_label = "Reconnect Google" if connections else "Connect Google"
        status_body += f"""
        <div class="flex gap-3 text-sm">
          <a href="/api/google/oauth?orgId={org.id}" class="px-4 py-2 rounded-lg bg-blue-600 text-white font-semibold">{connect_label}</a>
          <form method="post" action="{INTEGRATIONS_PATH}/sync-locations">{hidden("orgId", org.id)}
            <button class="px-4 py-2 rounded-lg border border-slate-300 dark:border-slate-700">Refresh locations</button></form>
          <form method="post" action="{INTEGRATIONS_PATH}/disconnect">{hidden("orgId", org.id)}
            <button class="px-4 py-2 rounded-lg border border-rose-300 text-rose-600">Disconnect</button></form>
        </div>"""

    disabled = "" if can_manage else "disabled"
    location_rows = "".join(
        f"""<label class="flex justify-between items-center py-2 border-b border-slate-100 dark:border-slate-800 text-sm">
              <span>{escape(loc.title or "Untitled location")}
                <span class="text-xs text-slate-500">{escape(loc.google_location_name)}</span></span>
              <span>{hidden("pageLocationIds", loc.id)}
                <input type="checkbox" name="managedLocationIds" value="{loc.id}" {"checked" if loc.is_managed else ""} {disabled}></span>
            </label>"""
        for loc in locations
    )
    locations_body = empty_state("No locations imported yet.")
    if location_rows:
        save = f'<button class="mt-4 px-4 py-2 rounded-lg bg-blue-600 text-white font-semibold text-sm" {disabled}>Save managed locations</button>'
        locations_body = f"""
        <form method="post" action="{INTEGRATIONS_PATH}/managed">{hidden("orgId", org.id)}
          {location_rows}
          {save}
        </form>"""
    locations_body += pagination_links(INTEGRATIONS_PATH, pager, {"orgId": org.id})

    content = card("Google Business Profile", status_body) + card("Locations", locations_body)
    return render_page(request, user, "Google integration", content, active="integrations", org_name=org.name)


# --- Connect flow ---

@router.get("/api/google/oauth")
def start_google_oauth(
    request: Request,
    org_id: str | None = Query(None, alias="orgId"),
    db: Session = Depends(get_db),
):
    user = get_current_user(request)
    if not user:
        return RedirectResponse(url="/sign-in", status_code=303)
    if not org_id:
        return integrations_redirect("missing_org")
    if not has_role(db, org_id, user.id, OWNER_ROLES):
        return integrations_redirect("not_owner", org_id)

    try:
        url = build_authorization_url(OAuthState(org_id=org_id, user_id=user.id))
    except GoogleOAuthError as e:
        log_event("google_oauth_start_failed", level="error", org_id=org_id, error=str(e))
        return integrations_redirect("error", org_id)

    log_event("google_oauth_started", org_id=org_id, user_id=user.id)
    return RedirectResponse(url=url, status_code=307)


@router.get("/api/google/oauth/callback")
def google_oauth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    db: Session = Depends(get_db),
):
    user = get_current_user(request)
    if not user:
        return RedirectResponse(url="/sign-in", status_code=303)

    if not code or not state:
        return integrations_redirect("missing_code")

    try:
        oauth_state = OAuthState.decode(state)
    except ValueError as e:
        log_event("google_oauth_invalid_state", level="warning", error=str(e))
        return integrations_redirect("invalid_state")

    if oauth_state.user_id != user.id:
        return integrations_redirect("state_mismatch")

    org_id = oauth_state.org_id
    try:
        token = exchange_code(code)
        refresh_token = token.get("refresh_token")
        if not refresh_token:
            log_event("google_oauth_missing_refresh", level="error", org_id=org_id)
            return integrations_redirect("missing_refresh")

        access_token = token["access_token"]
        email = fetch_user_email(access_token)
        accounts = list_accounts(access_token)
        if not accounts:
            return integrations_redirect("no_accounts")

        membership = get_membership(db, org_id, user.id)
        if not membership or membership.role not in OWNER_ROLES:
            log_event("google_oauth_role_rejected", level="warning", org_id=org_id, user_id=user.id)
            return integrations_redirect("not_owner")

        scopes = granted_scopes(token)
        try:
            upsert_connections(db, org_id, accounts, refresh_token, scopes)
        except (SQLAlchemyError, TokenEncryptionError) as e:
            db.rollback()
            log_event("google_connection_insert_failed", level="error", org_id=org_id, error=str(e))
            return integrations_redirect("insert_failed")

        try:
            stored_accounts = upsert_accounts(db, org_id, accounts)
        except SQLAlchemyError as e:
            db.rollback()
            log_event("google_account_sync_failed", level="error", org_id=org_id, error=str(e))
            return integrations_redirect("account_sync_failed")

        location_count = store_locations(db, org_id, access_token, stored_accounts)

        record_audit(
            db, org_id, "google_connection.upsert",
            target=", ".join(a.get("name") or "unknown-account" for a in accounts),
            meta={"email": email, "scopes": " ".join(scopes)},
            actor_id=user.id,
        )
        db.commit()
    except (GoogleOAuthError, GoogleApiError, SQLAlchemyError, KeyError) as e:
        db.rollback()
        log_event("google_oauth_callback_failed", level="error", org_id=org_id, error=str(e))
        return integrations_redirect("error")

    log_event("google_connected", org_id=org_id, accounts=len(accounts), locations=location_count)
    return integrations_redirect("success", org_id)


# --- Connection management ---

def _owner_org(db: Session, user: AuthUser, org_id: str) -> RedirectResponse | None:
    if not org_id:
        return integrations_redirect("missing_org")
    if not has_role(db, org_id, user.id, OWNER_ROLES):
        return integrations_redirect("not_owner")
    return None


@router.post(f"{INTEGRATIONS_PATH}/sync-locations")
def sync_locations_action(
    org_id: str = Form("", alias="orgId"),
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    denied = _owner_org(db, user, org_id)
    if denied:
        return denied

    try:
        resync_locations(db, org_id)
    except ConnectError as e:
        db.rollback()
        log_event("google_locations_resync_failed", level="warning", org_id=org_id, status=e.status, error=str(e))
        return integrations_redirect(e.status, org_id)
    except (GoogleOAuthError, TokenEncryptionError) as e:
        db.rollback()
        log_event("google_locations_resync_failed", level="error", org_id=org_id, error=str(e))
        return integrations_redirect("locations_failed", org_id)
    return integrations_redirect("sync_success", org_id)


@router.post(f"{INTEGRATIONS_PATH}/managed")
def update_managed_locations(
    org_id: str = Form("", alias="orgId"),
    page_location_ids: list[str] = Form([], alias="pageLocationIds"),
    managed_location_ids: list[str] = Form([], alias="managedLocationIds"),
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    org_id = org_id.strip()
    denied = _owner_org(db, user, org_id)
    if denied:
        return denied

    # Only the locations shown on the submitted page are touched.
    page_ids = set(page_location_ids)
    checked = set(managed_location_ids)
    try:
        managed = set_managed_locations(db, org_id, checked, page_ids or None)
    except SQLAlchemyError as e:
        db.rollback()
        log_event("managed_locations_save_failed", level="error", org_id=org_id, error=str(e))
        return integrations_redirect("save_failed", org_id)

    log_event("managed_locations_saved", org_id=org_id, managed=managed)
    return integrations_redirect("save_success", org_id)


@router.post(f"{INTEGRATIONS_PATH}/disconnect")
def disconnect_google_action(
    org_id: str = Form("", alias="orgId"),
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    if not org_id:
        return integrations_redirect("missing_org")
    membership = get_membership(db, org_id, user.id)
    if not membership or membership.role != "owner":
        return integrations_redirect("not_owner")

    try:
        disconnect_google(db, org_id)
        record_audit(db, org_id, "google_connection.delete", target=org_id, actor_id=user.id)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log_event("google_disconnect_failed", level="error", org_id=org_id, error=str(e))
        return integrations_redirect("disconnect_failed", org_id)
    return integrations_redirect("disconnected", org_id)


# --- Locations API ---

@router.get("/api/integrations/google/locations")
def list_org_locations(
    org_id: str | None = Query(None, alias="orgId"),
    start: int = Query(0, alias="from", ge=0),
    end: int | None = Query(None, alias="to", ge=0),
    user: AuthUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not org_id:
        return JSONResponse(status_code=400, content={"error": "Missing orgId parameter"})
    if not get_membership(db, org_id, user.id):
        return JSONResponse(status_code=403, content={"error": "Access denied"})

    if end is None or end < start:
        end = start + 19

    query = db.query(GbpLocation).filter(GbpLocation.org_id == org_id)
    total = query.count()
    rows = query.order_by(GbpLocation.title.asc()).offset(start).limit(end - start + 1).all()

    return {
        "locations": [
            {
                "id": loc.id,
                "title": loc.title,
                "google_location_name": loc.google_location_name,
                "is_managed": loc.is_managed,
                "sync_state": loc.sync_state,
            }
            for loc in rows
        ],
        "totalCount": total,
        "from": start,
        "to": end,
    }
