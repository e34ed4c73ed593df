from html import escape

from fastapi import APIRouter, Depends, Form, Request, Response
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..logging_setup import log_event
from ..models import GbpLocation, GbpPost, GbpReview, PostCandidate, Schedule
from ..security.auth import AuthUser, require_page_user
from ..security.rbac import EDITOR_ROLES, get_membership, has_role, resolve_selected_org
from ..services.llm import AiService, get_ai_service
from ..services.pagination import paginate
from ..services.post_generation import (
    ContentActionError,
    approve_candidate,
    attach_generated_image,
    generate_candidate_for_location,
    regenerate_candidate,
    reject_candidate,
)
from .auth import safe_redirect
from .ui import (
    THEME_COOKIE,
    card,
    current_theme,
    empty_state,
    fmt_dt,
    hidden,
    pagination_links,
    remember_org,
    render_page,
    stat_tile,
)

router = APIRouter(tags=["dashboard"])

RECENT_LIMIT = 5
DETAIL_LIMIT = 20

STATUS_PILL = {
    "pending": "bg-amber-100 text-amber-800 dark:bg-amber-900 dark:text-amber-200",
    "approved": "bg-blue-100 text-blue-800 dark:bg-blue-900 dark:text-blue-200",
    "published": "bg-emerald-100 text-emerald-800 dark:bg-emerald-900 dark:text-emerald-200",
    "failed": "bg-rose-100 text-rose-800 dark:bg-rose-900 dark:text-rose-200",
    "rejected": "bg-slate-200 text-slate-700 dark:bg-slate-800 dark:text-slate-300",
    "cancelled": "bg-slate-200 text-slate-700 dark:bg-slate-800 dark:text-slate-300",
}


def pill(value: str | None) -> str:
    value = value or "unknown"
    tone = STATUS_PILL.get(value, STATUS_PILL["cancelled"])
    return f'<span class="px-2 py-0.5 rounded-full text-xs font-semibold {tone}">{escape(value)}</span>'


def stars(rating: int | None) -> str:
    return "&#9733;" * (rating or 0) + "&#9734;" * (5 - (rating or 0))


def _no_org_redirect() -> RedirectResponse:
    return RedirectResponse(url="/orgs?status=no_org", status_code=303)


def _location_titles(db: Session, location_ids) -> dict[str, str]:
    ids = {i for i in location_ids if i}
    if not ids:
        return {}
    rows = db.query(GbpLocation.id, GbpLocation.title).filter(GbpLocation.id.in_(ids)).all()
    return {row.id: row.title or "Untitled location" for row in rows}


def _schedule_rows(schedules, titles: dict[str, str] | None = None) -> str:
    rows = []
    for s in schedules:
        location = f'<span class="text-slate-500">{escape(titles.get(s.location_id, ""))}</span>' if titles else ""
        error = f'<div class="text-xs text-rose-500">{escape(s.last_error)}</div>' if s.last_error else ""
        rows.append(f"""
        <div class="flex justify-between items-start py-3 border-b border-slate-100 dark:border-slate-800 text-sm">
          <div>
            <div>{fmt_dt(s.publish_at)} {location}</div>
            {error}
          </div>
          <div class="flex items-center gap-2">
            <span class="text-xs text-slate-500">retries {s.retry_count or 0}</span>
            {pill(s.status)}
          </div>
        </div>""")
    return "".join(rows)


def _review_rows(reviews, titles: dict[str, str] | None = None) -> str:
    rows = []
    for r in reviews:
        location = f' &middot; {escape(titles.get(r.location_id, ""))}' if titles else ""
        reply = f'<div class="mt-1 text-xs text-slate-500">Reply: {escape(r.reply)}</div>' if r.reply else ""
        rows.append(f"""
        <div class="py-3 border-b border-slate-100 dark:border-slate-800 text-sm">
          <div class="flex justify-between">
            <span class="font-semibold">{escape(r.author or "Anonymous")}</span>
            <span class="text-amber-500">{stars(r.rating)}</span>
          </div>
          <div class="text-xs text-slate-500">{fmt_dt(r.created_at)}{location}</div>
          <p class="mt-1">{escape(r.text or "")}</p>
          {reply}
        </div>""")
    return "".join(rows)


def _post_rows(posts) -> str:
    rows = []
    for p in posts:
        link = f'<a href="{escape(p.search_url)}" class="text-xs text-blue-600" target="_blank">View on Google</a>' if p.search_url else ""
        rows.append(f"""
        <div class="py-3 border-b border-slate-100 dark:border-slate-800 text-sm">
          <div class="flex justify-between">
            <span class="font-semibold">{escape(p.topic_type or "STANDARD")}</span>
            <span class="text-xs text-slate-500">{fmt_dt(p.google_create_time or p.created_at)}</span>
          </div>
          <p class="mt-1">{escape((p.summary or "")[:280])}</p>
          {link}
        </div>""")
    return "".join(rows)


# --- Pages ---

@router.get("/", response_class=HTMLResponse)
def dashboard_page(
    request: Request,
    response: Response,
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    org, role = resolve_selected_org(request, db, user)
    if not org:
        return _no_org_redirect()
    remember_org(request, response, org)

    total_locations = db.query(func.count(GbpLocation.id)).filter(GbpLocation.org_id == org.id).scalar() or 0
    total_reviews = db.query(func.count(GbpReview.id)).filter(GbpReview.org_id == org.id).scalar() or 0
    pending_schedules = db.query(func.count(Schedule.id)).filter(
        Schedule.org_id == org.id, Schedule.status == "pending"
    ).scalar() or 0
    average_rating = db.query(func.avg(GbpReview.rating)).filter(
        GbpReview.org_id == org.id, GbpReview.rating.isnot(None)
    ).scalar()

    recent_reviews = (
        db.query(GbpReview).filter(GbpReview.org_id == org.id)
        .order_by(GbpReview.created_at.desc()).limit(RECENT_LIMIT).all()
    )
    recent_schedules = (
        db.query(Schedule).filter(Schedule.org_id == org.id)
        .order_by(Schedule.publish_at.desc()).limit(RECENT_LIMIT).all()
    )
    recent_posts = (
        db.query(GbpPost).filter(GbpPost.org_id == org.id)
        .order_by(GbpPost.created_at.desc()).limit(RECENT_LIMIT).all()
    )
    titles = _location_titles(db, [r.location_id for r in recent_reviews] + [s.location_id for s in recent_schedules])

    content = f"""
    <h1 class="text-3xl font-extrabold mb-8">{escape(org.name)}</h1>
    <div class="grid grid-cols-2 md:grid-cols-4 gap-6 mb-8">
      {stat_tile("Locations", total_locations)}
      {stat_tile("Reviews", total_reviews)}
      {stat_tile("Pending posts", pending_schedules)}
      {stat_tile("Average rating", f"{average_rating:.1f}" if average_rating is not None else "--")}
    </div>
    <div class="grid grid-cols-1 md:grid-cols-2 gap-6">
      <div>{card("Recent reviews", _review_rows(recent_reviews, titles) or empty_state("No reviews synced yet."))}</div>
      <div>{card("Recent schedules", _schedule_rows(recent_schedules, titles) or empty_state("Nothing scheduled."))}</div>
    </div>
    """
    content += card("Recent posts", _post_rows(recent_posts) or empty_state("No posts published yet."))
    return render_page(request, user, "Dashboard", content, active="dashboard", org_name=org.name)


@router.get("/locations", response_class=HTMLResponse)
def locations_page(
    request: Request,
    response: Response,
    page: int = 1,
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    org, role = resolve_selected_org(request, db, user)
    if not org:
        return _no_org_redirect()
    remember_org(request, response, org)

    query = db.query(GbpLocation).filter(GbpLocation.org_id == org.id)
    pager = paginate(query.count(), page)
    locations = query.order_by(GbpLocation.title.asc()).offset(pager.offset).limit(pager.per_page).all()

    rows = "".join(
        f"""<a href="/locations/{loc.id}" class="flex justify-between py-3 border-b border-slate-100 dark:border-slate-800">
              <span class="font-semibold">{escape(loc.title or "Untitled location")}</span>
              <span class="text-xs text-slate-500">{"Managed" if loc.is_managed else "Not managed"}</span>
            </a>"""
        for loc in locations
    )
    body = (rows or empty_state("No locations yet. Connect Google to import them.")) + pagination_links("/locations", pager)
    return render_page(request, user, "Locations", card("Locations", body), active="locations", org_name=org.name)


@router.get("/locations/{location_id}", response_class=HTMLResponse)
def location_detail_page(
    location_id: str,
    request: Request,
    tab: str = "posts",
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    location = db.get(GbpLocation, location_id)
    membership = get_membership(db, location.org_id, user.id) if location else None
    if not location or not membership:
        return RedirectResponse(url="/locations?status=location_missing", status_code=303)

    tabs = "".join(
        f'<a href="/locations/{location.id}?tab={key}" class="px-3 py-1 rounded-lg {"bg-blue-600 text-white" if key == tab else "border border-slate-300 dark:border-slate-700"}">{label}</a>'
        for key, label in (("posts", "Posts"), ("reviews", "Reviews"))
    )

    if tab == "reviews":
        reviews = (
            db.query(GbpReview).filter(GbpReview.location_id == location.id)
            .order_by(GbpReview.created_at.desc()).limit(DETAIL_LIMIT).all()
        )
        body = card("Reviews", _review_rows(reviews) or empty_state("No reviews synced yet."))
    else:
        schedules = (
            db.query(Schedule).filter(Schedule.location_id == location.id)
            .order_by(Schedule.publish_at.desc()).limit(DETAIL_LIMIT).all()
        )
        posts = (
            db.query(GbpPost).filter(GbpPost.location_id == location.id)
            .order_by(GbpPost.created_at.desc()).limit(DETAIL_LIMIT).all()
        )
        body = card("Schedules", _schedule_rows(schedules) or empty_state("Nothing scheduled."))
        body += card("Published posts", _post_rows(posts) or empty_state("No posts published yet."))

    generate = ""
    if membership.role in EDITOR_ROLES:
        generate = f"""
        <form method="post" action="/locations/{location.id}/generate">
          <button class="px-4 py-2 rounded-lg bg-blue-600 text-white font-semibold text-sm"
                  {"" if location.is_managed else "disabled"}>Generate post draft</button>
        </form>"""

    content = f"""
    <div class="flex justify-between items-center mb-6">
      <div>
        <h1 class="text-3xl font-extrabold">{escape(location.title or "Untitled location")}</h1>
        <p class="text-sm text-slate-500">{escape(location.google_location_name)} &middot; {"Managed" if location.is_managed else "Not managed"}</p>
      </div>
      {generate}
    </div>
    <div class="flex gap-2 mb-6 text-sm">{tabs}</div>
    {body}
    """
    return render_page(request, user, location.title or "Location", content, active="locations")


@router.get("/reviews", response_class=HTMLResponse)
def reviews_page(
    request: Request,
    response: Response,
    page: int = 1,
    rating: int | None = None,
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    org, role = resolve_selected_org(request, db, user)
    if not org:
        return _no_org_redirect()
    remember_org(request, response, org)

    query = db.query(GbpReview).filter(GbpReview.org_id == org.id)
    if rating is not None and 1 <= rating <= 5:
        query = query.filter(GbpReview.rating == rating)
    else:
        rating = None

    pager = paginate(query.count(), page)
    reviews = query.order_by(GbpReview.created_at.desc()).offset(pager.offset).limit(pager.per_page).all()
    titles = _location_titles(db, [r.location_id for r in reviews])

    filters = "".join(
        f'<a href="/reviews{"?rating=" + str(value) if value else ""}" class="px-3 py-1 rounded-lg {"bg-blue-600 text-white" if value == rating else "border border-slate-300 dark:border-slate-700"}">{label}</a>'
        for value, label in [(None, "All")] + [(n, f"{n} &#9733;") for n in range(5, 0, -1)]
    )
    body = f'<div class="flex gap-2 mb-4 text-sm">{filters}</div>'
    body += _review_rows(reviews, titles) or empty_state("No reviews match.")
    body += pagination_links("/reviews", pager, {"rating": rating})
    return render_page(request, user, "Reviews", card("Reviews", body), active="reviews", org_name=org.name)


@router.get("/content", response_class=HTMLResponse)
def content_page(
    request: Request,
    response: Response,
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    org, role = resolve_selected_org(request, db, user)
    if not org:
        return _no_org_redirect()
    remember_org(request, response, org)

    candidates = (
        db.query(PostCandidate)
        .filter(PostCandidate.org_id == org.id, PostCandidate.status == "pending")
        .order_by(PostCandidate.created_at.desc())
        .all()
    )
    titles = _location_titles(db, [c.location_id for c in candidates])
    can_edit = role in EDITOR_ROLES

    cards = []
    for c in candidates:
        schema = c.schema or {}
        cta = schema.get("cta") or {}
        images = "".join(f'<img src="{escape(url)}" class="w-32 h-32 object-cover rounded-lg">' for url in c.images or [])
        actions = ""
        if can_edit:
            actions = "".join(
                f"""<form method="post" action="/content/{action}">{hidden("candidateId", c.id)}
                      <button class="px-3 py-1 rounded-lg text-xs font-semibold {style}">{label}</button></form>"""
                for action, label, style in (
                    ("approve", "Approve", "bg-emerald-600 text-white"),
                    ("reject", "Reject", "bg-rose-600 text-white"),
                    ("regenerate", "Regenerate", "border border-slate-300 dark:border-slate-700"),
                    ("image", "Generate image", "border border-slate-300 dark:border-slate-700"),
                )
            )
        cards.append(f"""
        <div class="py-4 border-b border-slate-100 dark:border-slate-800">
          <div class="text-xs text-slate-500">{escape(titles.get(c.location_id, ""))} &middot; {fmt_dt(c.created_at)}
            &middot; risk {schema.get("riskScore", "--")}</div>
          <h3 class="mt-1 text-lg font-bold">{escape(schema.get("title") or "Untitled draft")}</h3>
          <p class="mt-1 text-sm">{escape(schema.get("description") or "")}</p>
          {f'<p class="mt-1 text-xs text-blue-600">{escape(cta.get("label") or "")}</p>' if cta else ""}
          <div class="mt-2 flex gap-2">{images}</div>
          <div class="mt-3 flex gap-2">{actions}</div>
        </div>""")

    body = "".join(cards) or empty_state("No drafts are waiting for review.")
    return render_page(request, user, "Content", card("Awaiting approval", body), active="content", org_name=org.name)


@router.post("/theme")
def toggle_theme(request: Request, redirect: str = Form("/")):
    theme = "light" if current_theme(request) == "dark" else "dark"
    response = RedirectResponse(url=safe_redirect(redirect), status_code=303)
    response.set_cookie(THEME_COOKIE, theme, max_age=365 * 24 * 60 * 60, samesite="lax", path="/")
    return response


# --- Form actions ---

@router.post("/locations/{location_id}/generate")
def generate_location_post(
    location_id: str,
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
    ai: AiService = Depends(get_ai_service),
):
    location = db.get(GbpLocation, location_id)
    if not location:
        return RedirectResponse(url="/locations?status=location_missing", status_code=303)
    if not has_role(db, location.org_id, user.id, EDITOR_ROLES):
        return RedirectResponse(url=f"/locations/{location_id}?status=insufficient_role", status_code=303)

    try:
        generate_candidate_for_location(db, ai, location, user.id)
    except ContentActionError as e:
        return RedirectResponse(url=f"/locations/{location_id}?status={e.status}", status_code=303)
    return RedirectResponse(url=f"/locations/{location_id}?tab=posts&status=generation_ready", status_code=303)


def _load_candidate(db: Session, user: AuthUser, candidate_id: str) -> PostCandidate | RedirectResponse:
    if not candidate_id:
        return RedirectResponse(url="/content?status=missing_candidate", status_code=303)
    candidate = db.get(PostCandidate, candidate_id)
    if not candidate:
        return RedirectResponse(url="/content?status=candidate_missing", status_code=303)
    if not has_role(db, candidate.org_id, user.id, EDITOR_ROLES):
        return RedirectResponse(url="/content?status=insufficient_role", status_code=303)
    return candidate


def _content_redirect(status: str) -> RedirectResponse:
    return RedirectResponse(url=f"/content?status={status}", status_code=303)


@router.post("/content/approve")
def approve_post(
    candidate_id: str = Form("", alias="candidateId"),
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    candidate = _load_candidate(db, user, candidate_id)
    if isinstance(candidate, RedirectResponse):
        return candidate
    try:
        approve_candidate(db, candidate)
    except ContentActionError as e:
        return _content_redirect(e.status)
    return _content_redirect("post_approved")


@router.post("/content/reject")
def reject_post(
    candidate_id: str = Form("", alias="candidateId"),
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    candidate = _load_candidate(db, user, candidate_id)
    if isinstance(candidate, RedirectResponse):
        return candidate
    if candidate.status == "rejected":
        return _content_redirect("already_rejected")
    reject_candidate(db, candidate)
    return _content_redirect("post_rejected")


@router.post("/content/regenerate")
def regenerate_post(
    candidate_id: str = Form("", alias="candidateId"),
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
    ai: AiService = Depends(get_ai_service),
):
    candidate = _load_candidate(db, user, candidate_id)
    if isinstance(candidate, RedirectResponse):
        return candidate
    try:
        regenerate_candidate(db, ai, candidate, user.id)
    except ContentActionError as e:
        log_event("post_regenerate_failed", level="warning", candidate_id=candidate_id, status=e.status)
        return _content_redirect(e.status)
    return _content_redirect("regenerate_success")


@router.post("/content/image")
def generate_post_image(
    candidate_id: str = Form("", alias="candidateId"),
    user: AuthUser = Depends(require_page_user),
    db: Session = Depends(get_db),
):
    candidate = _load_candidate(db, user, candidate_id)
    if isinstance(candidate, RedirectResponse):
        return candidate
    try:
        attach_generated_image(db, candidate)
    except ContentActionError as e:
        log_event("post_image_failed", level="warning", candidate_id=candidate_id, status=e.status)
        return _content_redirect(e.status)
    return _content_redirect("image_ready")
