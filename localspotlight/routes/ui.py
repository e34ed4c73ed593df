from html import escape
from urllib.parse import urlencode

from fastapi import Request, Response

from ..security.auth import AuthUser
from ..security.rbac import SELECTED_ORG_COOKIE

THEME_COOKIE = "theme"
SELECTED_ORG_MAX_AGE = 365 * 24 * 60 * 60

# --- HTML TEMPLATES ---

APP_LAYOUT_HTML = """<!doctype html>
<html lang="en" class="{theme}">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{title} | LocalSpotlight</title>
  <script src="https://cdn.tailwindcss.com"></script>
  <script>tailwind.config = {{ darkMode: 'class' }}</script>
  <link href="https://fonts.googleapis.com/css2?family=Inter:wght@400;500;600;700;800&display=swap" rel="stylesheet">
  <style>
    body {{ font-family: 'Inter', sans-serif; }}
    .card {{ border-radius: 1rem; border-width: 1px; }}
    .nav-link.active {{ color: #2563eb; border-bottom: 2px solid #2563eb; }}
  </style>
</head>
<body class="min-h-screen bg-slate-50 text-slate-900 dark:bg-slate-950 dark:text-slate-100">
  <nav class="border-b border-slate-200 dark:border-slate-800 bg-white/80 dark:bg-slate-900/80 backdrop-blur sticky top-0 z-50">
    <div class="max-w-7xl mx-auto px-6 h-16 flex justify-between items-center">
      <div class="flex items-center gap-8">
        <a href="/" class="text-lg font-extrabold tracking-tight text-blue-600">LocalSpotlight</a>
        <div class="hidden md:flex gap-6 text-xs font-bold uppercase tracking-widest">
          <a href="/" class="nav-link py-5 {active_dashboard}">Dashboard</a>
          <a href="/locations" class="nav-link py-5 {active_locations}">Locations</a>
          <a href="/reviews" class="nav-link py-5 {active_reviews}">Reviews</a>
          <a href="/content" class="nav-link py-5 {active_content}">Content</a>
          <a href="/integrations/google" class="nav-link py-5 {active_integrations}">Integrations</a>
          <a href="/orgs" class="nav-link py-5 {active_orgs}">Orgs</a>
          <a href="/settings/org" class="nav-link py-5 {active_settings}">Settings</a>
        </div>
      </div>
      <div class="flex items-center gap-4 text-sm">
        <span class="text-slate-500">{org_name}</span>
        <span class="font-semibold">{user_name}</span>
        <form method="post" action="/theme">
          <input type="hidden" name="redirect" value="{current_path}">
          <button class="px-3 py-1 rounded-lg border border-slate-300 dark:border-slate-700 text-xs">Theme</button>
        </form>
        <form method="post" action="/sign-out">
          <button class="px-3 py-1 rounded-lg bg-slate-900 text-white dark:bg-slate-100 dark:text-slate-900 text-xs">Sign out</button>
        </form>
      </div>
    </div>
  </nav>
  <main class="max-w-7xl mx-auto px-6 py-10">
    {banner}
    {content}
  </main>
</body>
</html>
"""

AUTH_LAYOUT_HTML = """<!doctype html>
<html lang="en" class="{theme}">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{title} | LocalSpotlight</title>
  <script src="https://cdn.tailwindcss.com"></script>
  <script>tailwind.config = {{ darkMode: 'class' }}</script>
</head>
<body class="min-h-screen flex items-center justify-center bg-slate-50 text-slate-900 dark:bg-slate-950 dark:text-slate-100">
  <div class="w-full max-w-md p-8 card bg-white dark:bg-slate-900 border-slate-200 dark:border-slate-800">
    <h1 class="text-2xl font-extrabold mb-6">{title}</h1>
    {banner}
    {content}
  </div>
</body>
</html>
"""

# status code -> (tone, message)
STATUS_MESSAGES = {
    # auth
    "magic_link_sent": ("success", "Check your inbox for a sign-in link."),
    "invalid_credentials": ("error", "Email or password is incorrect."),
    "missing_email": ("error", "Enter your email address."),
    "auth_failed": ("error", "We could not sign you in. Try again."),
    # orgs
    "org_created": ("success", "Organization created."),
    "org_updated": ("success", "Organization updated."),
    "invalid_name": ("error", "Organization names need at least 2 characters."),
    "no_org": ("info", "Create an organization to get started."),
    # google connect
    "missing_org": ("error", "Pick an organization first."),
    "not_owner": ("error", "Only owners and admins can manage the Google connection."),
    "missing_code": ("error", "Google did not return an authorization code."),
    "invalid_state": ("error", "The sign-in state was invalid. Try connecting again."),
    "state_mismatch": ("error", "The sign-in state did not match your session."),
    "missing_refresh": ("error", "Google did not return a refresh token. Remove the app from your Google account and reconnect."),
    "no_accounts": ("error", "No Google Business Profile accounts were found."),
    "insert_failed": ("error", "We could not save the Google connection."),
    "account_sync_failed": ("error", "We could not save your Google accounts."),
    "locations_failed": ("error", "We could not refresh locations from Google."),
    "no_connections": ("error", "Connect Google before syncing."),
    "success": ("success", "Google Business Profile connected."),
    "sync_success": ("success", "Locations refreshed from Google."),
    "save_success": ("success", "Managed locations saved."),
    "save_failed": ("error", "We could not save managed locations."),
    "disconnected": ("success", "Google disconnected."),
    "disconnect_failed": ("error", "We could not disconnect Google."),
    "error": ("error", "Something went wrong talking to Google."),
    # content
    "missing_candidate": ("error", "Pick a post to act on."),
    "candidate_missing": ("error", "That post no longer exists."),
    "location_not_managed": ("error", "This location is not managed."),
    "insufficient_role": ("error", "Editors, admins and owners can change content."),
    "already_approved": ("info", "That post is already approved."),
    "already_rejected": ("info", "That post was already rejected."),
    "post_approved": ("success", "Post approved and scheduled."),
    "post_rejected": ("success", "Post rejected."),
    "regenerate_success": ("success", "A fresh draft is ready."),
    "regenerate_blocked": ("error", "The new draft was blocked by safety checks."),
    "regenerate_failed": ("error", "We could not regenerate that post."),
    "image_ready": ("success", "Image generated."),
    "image_failed": ("error", "Image generation failed."),
    "missing_media_brief": ("error", "This post has no media brief to render."),
    # locations
    "not_managed": ("error", "Turn on management for this location first."),
    "generation_failed": ("error", "Post generation failed."),
    "generation_blocked": ("error", "The draft was blocked by safety checks."),
    "generation_ready": ("success", "A new draft is waiting in Content."),
    "location_missing": ("error", "That location was not found."),
}

BANNER_TONES = {
    "success": "bg-emerald-50 text-emerald-800 border-emerald-200 dark:bg-emerald-950 dark:text-emerald-200 dark:border-emerald-900",
    "error": "bg-rose-50 text-rose-800 border-rose-200 dark:bg-rose-950 dark:text-rose-200 dark:border-rose-900",
    "info": "bg-blue-50 text-blue-800 border-blue-200 dark:bg-blue-950 dark:text-blue-200 dark:border-blue-900",
}

NAV_KEYS = ["dashboard", "locations", "reviews", "content", "integrations", "orgs", "settings"]


def current_theme(request: Request) -> str:
    return "dark" if request.cookies.get(THEME_COOKIE) == "dark" else "light"


def status_banner(status_code: str | None) -> str:
    if not status_code:
        return ""
    tone, message = STATUS_MESSAGES.get(status_code, ("info", status_code.replace("_", " ")))
    return f'<div class="mb-6 px-4 py-3 rounded-xl border text-sm {BANNER_TONES[tone]}">{escape(message)}</div>'


def render_page(request: Request, user: AuthUser, title: str, content: str, active: str = "",
                org_name: str | None = None) -> str:
    active_flags = {f"active_{key}": ("active" if key == active else "") for key in NAV_KEYS}
    return APP_LAYOUT_HTML.format(
        theme=current_theme(request),
        title=escape(title),
        user_name=escape(user.display_name),
        org_name=escape(org_name or "No organization"),
        current_path=escape(str(request.url.path)),
        banner=status_banner(request.query_params.get("status")),
        content=content,
        **active_flags,
    )


def render_auth_page(request: Request, title: str, content: str) -> str:
    return AUTH_LAYOUT_HTML.format(
        theme=current_theme(request),
        title=escape(title),
        banner=status_banner(request.query_params.get("status")),
        content=content,
    )


def card(title: str, body: str) -> str:
    return f"""
    <section class="card p-6 mb-6 bg-white dark:bg-slate-900 border-slate-200 dark:border-slate-800">
      <h2 class="text-sm font-bold uppercase tracking-widest text-slate-500 mb-4">{escape(title)}</h2>
      {body}
    </section>"""


def stat_tile(label: str, value) -> str:
    return f"""
    <div class="card p-6 bg-white dark:bg-slate-900 border-slate-200 dark:border-slate-800">
      <div class="text-xs font-bold uppercase tracking-widest text-slate-500">{escape(label)}</div>
      <div class="mt-2 text-3xl font-extrabold">{escape(str(value))}</div>
    </div>"""


def empty_state(message: str) -> str:
    return f'<div class="py-6 text-center text-sm text-slate-500 italic">{escape(message)}</div>'


def fmt_dt(value) -> str:
    return value.strftime("%b %d, %Y %H:%M") if value else "--"


def pagination_links(path: str, page, params: dict | None = None) -> str:
    """Prev/next links for a `services.pagination.Page`; extra query params are kept."""
    if page.total_pages <= 1:
        return ""

    def link(target: int, label: str) -> str:
        query = urlencode({**{k: v for k, v in (params or {}).items() if v not in (None, "")}, "page": target})
        return f'<a href="{path}?{query}" class="px-3 py-1 rounded-lg border border-slate-300 dark:border-slate-700">{label}</a>'

    parts = []
    if page.has_prev:
        parts.append(link(page.page - 1, "Previous"))
    parts.append(f'<span class="text-slate-500">Page {page.page} of {page.total_pages} ({page.total_count} total)</span>')
    if page.has_next:
        parts.append(link(page.page + 1, "Next"))
    return f'<div class="mt-6 flex items-center gap-4 text-sm">{"".join(parts)}</div>'


def hidden(name: str, value) -> str:
    return f'<input type="hidden" name="{name}" value="{escape(str(value))}">'


def remember_org(request: Request, response: Response, org) -> None:
    """Persist an explicitly chosen `?orgId=` in the selected-org cookie."""
    if org and request.query_params.get("orgId") == org.id:
        response.set_cookie(SELECTED_ORG_COOKIE, org.id, max_age=SELECTED_ORG_MAX_AGE, samesite="lax", path="/")
