from html import escape

from fastapi import APIRouter, Depends, Form, Request, Response
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..logging_setup import log_event
from ..models import GbpLocation, Org, OrgMember, User
from ..security.auth import AuthUser, require_page_user
from ..security.rbac import (
    OWNER_ROLES,
    SELECTED_ORG_COOKIE,
    get_membership,
    list_user_orgs,
    resolve_selected_org,
    ensure_user_profile,
)
from ..services.audit import record_audit
from .ui import SELECTED_ORG_MAX_AGE, card, empty_state, hidden, remember_org, render_page, stat_tile

router = APIRouter(tags=["orgs"])

MIN_ORG_NAME = 2

CREATE_ORG_FORM = """
<form method="post" action="/orgs" class="flex gap-3">
  <input name="name" required minlength="2" placeholder="Organization name"
         class="flex-1 px-4 py-2 rounded-lg border border-slate-300 dark:border-slate-700 bg-transparent">
  <button class="px-4 py-2 rounded-lg bg-blue-600 text-white font-semibold">Create</button>
</form>
"""


@router.get("/orgs", response_class=HTMLResponse)
def orgs_page(
    request: Request,
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    orgs = list_user_orgs(db, user.id)
    rows = "".join(
        f"""<a href="/orgs/{org.id}" class="flex justify-between py-3 border-b border-slate-100 dark:border-slate-800">
              <span class="font-semibold">{escape(org.name)}</span>
              <span class="text-xs uppercase tracking-widest text-slate-500">{escape(role)}</span>
            </a>"""
        for org, role in orgs
    )
    content = card("Your organizations", rows or empty_state("You are not a member of any organization yet."))
    content += card("New organization", CREATE_ORG_FORM)
    return render_page(request, user, "Organizations", content, active="orgs",
                       org_name=orgs[0][0].name if orgs else None)


@router.post("/orgs")
def create_org(
    name: str = Form(""),
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    name = name.strip()
    if len(name) < MIN_ORG_NAME:
        return RedirectResponse(url="/orgs?status=invalid_name", status_code=303)

    ensure_user_profile(db, user)

    org = Org(name=name, plan="free")
    db.add(org)
    db.flush()

    db.add(OrgMember(org_id=org.id, user_id=user.id, role="owner"))
    record_audit(db, org.id, "org.create", target=org.id, actor_id=user.id, meta={"name": name})
    db.commit()

    log_event("org_created", org_id=org.id, user_id=user.id)
    return RedirectResponse(url=f"/orgs/{org.id}?status=org_created", status_code=303)


@router.get("/orgs/{org_id}", response_class=HTMLResponse)
def org_detail_page(
    org_id: str,
    request: Request,
    response: Response,
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    membership = get_membership(db, org_id, user.id)
    org = db.get(Org, org_id) if membership else None
    if not org:
        return RedirectResponse(url="/orgs", status_code=303)

    location_count = db.query(func.count(GbpLocation.id)).filter(GbpLocation.org_id == org.id).scalar() or 0
    managed_count = db.query(func.count(GbpLocation.id)).filter(
        GbpLocation.org_id == org.id, GbpLocation.is_managed.is_(True)
    ).scalar() or 0
    members = (
        db.query(OrgMember, User)
        .outerjoin(User, User.id == OrgMember.user_id)
        .filter(OrgMember.org_id == org.id)
        .order_by(OrgMember.created_at.asc())
        .all()
    )

    member_rows = "".join(
        f"""<div class="flex justify-between py-2 border-b border-slate-100 dark:border-slate-800 text-sm">
              <span>{escape((profile.name or profile.email) if profile else member.user_id)}</span>
              <span class="text-xs uppercase tracking-widest text-slate-500">{escape(member.role)}</span>
            </div>"""
        for member, profile in members
    )

    content = f"""
    <h1 class="text-3xl font-extrabold mb-2">{escape(org.name)}</h1>
    <p class="text-sm text-slate-500 mb-8">Plan: {escape(org.plan or "free")} &middot; Your role: {escape(membership.role)}</p>
    <div class="grid grid-cols-1 md:grid-cols-3 gap-6 mb-8">
      {stat_tile("Locations", location_count)}
      {stat_tile("Managed", managed_count)}
      {stat_tile("Members", len(members))}
    </div>
    <div class="flex gap-3 mb-8 text-sm">
      <a href="/?orgId={org.id}" class="px-4 py-2 rounded-lg bg-blue-600 text-white font-semibold">Open dashboard</a>
      <a href="/integrations/google?orgId={org.id}" class="px-4 py-2 rounded-lg border border-slate-300 dark:border-slate-700">Google integration</a>
    </div>
    """
    content += card("Members", member_rows or empty_state("No members."))

    response.set_cookie(SELECTED_ORG_COOKIE, org.id, max_age=SELECTED_ORG_MAX_AGE, samesite="lax", path="/")
    return render_page(request, user, org.name, content, active="orgs", org_name=org.name)


@router.get("/settings/org", response_class=HTMLResponse)
def org_settings_page(
    request: Request,
    response: Response,
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    org, role = resolve_selected_org(request, db, user)
    if not org:
        return RedirectResponse(url="/orgs?status=no_org", status_code=303)
    remember_org(request, response, org)

    can_edit = role in OWNER_ROLES
    disabled = "" if can_edit else "disabled"
    form = f"""
    <form method="post" action="/settings/org" class="flex gap-3">
      {hidden("orgId", org.id)}
      <input name="name" value="{escape(org.name)}" required minlength="2" {disabled}
             class="flex-1 px-4 py-2 rounded-lg border border-slate-300 dark:border-slate-700 bg-transparent">
      <button class="px-4 py-2 rounded-lg bg-blue-600 text-white font-semibold" {disabled}>Save</button>
    </form>
    """
    if not can_edit:
        form += '<p class="mt-3 text-xs text-slate-500">Only owners and admins can rename the organization.</p>'

    return render_page(request, user, "Organization settings", card("Organization name", form),
                       active="settings", org_name=org.name)


@router.post("/settings/org")
def update_org_settings(
    org_id: str = Form(..., alias="orgId"),
    name: str = Form(""),
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    membership = get_membership(db, org_id, user.id)
    if not membership or membership.role not in OWNER_ROLES:
        return RedirectResponse(url=f"/settings/org?orgId={org_id}&status=not_owner", status_code=303)

    name = name.strip()
    if len(name) < MIN_ORG_NAME:
        return RedirectResponse(url=f"/settings/org?orgId={org_id}&status=invalid_name", status_code=303)

    org = db.get(Org, org_id)
    previous = org.name
    org.name = name
    record_audit(db, org.id, "org.update", target=org.id, actor_id=user.id, meta={"from": previous, "to": name})
    db.commit()

    log_event("org_updated", org_id=org.id, user_id=user.id)
    return RedirectResponse(url=f"/settings/org?orgId={org_id}&status=org_updated", status_code=303)
