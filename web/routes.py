"""
web/routes.py -- Jinja2 template routes for the ICT4Events web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same Database, UserStore and TimelineStore) but return HTML or
redirects instead of JSON.

Routes:
  GET  /                                 -- redirect to the timeline
  GET  /Login                            -- login form (notice instead if already logged in)
  POST /Login                            -- check credentials, issue auth cookie, redirect
  POST /Logout                           -- clear cookie, redirect /Login
  GET  /Timeline                         -- timeline of posts (auth required)
  POST /Timeline                         -- publish a post (auth required)
  POST /Timeline/{post_id}/delete        -- delete own post (auth required)

Login flow (POST /Login):
  1. Email must be well formed -- checked before any database call.
  2. Credentials are checked by auth.logic.authenticate_user().
  3. A ticket valid for SESSION_MINUTES is set as the auth cookie and the
     browser is sent to ?ReturnUrl, or DEFAULT_LANDING_PATH when absent.
  Rejections re-render the form with a message; they are not logged.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter
from auth.dependencies import try_get_current_user
from auth.logic import authenticate_user, is_valid_email
from auth.store import UserStore
from auth.tokens import clear_auth_cookie, issue_ticket, set_auth_cookie
from core.config import get_settings
from timeline.models import Post
from timeline.store import MAX_POST_LENGTH, TimelineStore

logger = logging.getLogger("ict4events.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# layout.html calls this to render the account menu.
templates.env.globals["try_get_current_user"] = try_get_current_user
router = APIRouter()

_settings = get_settings()

# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

# Only messages from these dicts reach templates, never raw query input.
_LOGIN_MESSAGES: dict[str, str] = {
    "missing_fields": "Please enter your email address and password.",
    "invalid_email": "You entered an invalid email address.",
    "bad_credentials": "Your login details do not match an existing account.",
}

_TIMELINE_MESSAGES: dict[str, str] = {
    "post_empty": "A post cannot be empty.",
    "post_too_long": f"A post can be at most {MAX_POST_LENGTH} characters.",
    "post_failed": "Your post could not be saved. Please try again.",
    "delete_failed": "That post could not be deleted.",
    "timeline_unavailable": "The timeline is unavailable right now.",
}

_ALREADY_LOGGED_IN = "You are already logged in."

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def _safe_return(return_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only relative, server-local paths.

    "/Timeline" is accepted; "https://evil.example" and "//evil.example" fall
    back to the default landing path.
    """
    if return_url and return_url.startswith("/") and not return_url.startswith("//"):
        return return_url
    return _settings.default_landing_path


def _require_auth(request: Request) -> Optional[RedirectResponse]:
    """Return a redirect to /Login?ReturnUrl=<path> if not authenticated, None if OK.

    Call at the top of protected route handlers:
        if redirect := _require_auth(request):
            return redirect
    """
    if try_get_current_user(request) is None:
        query = urlencode({"ReturnUrl": request.url.path})
        return RedirectResponse(f"/Login?{query}", status_code=302)
    return None


def _login_page(request: Request, error_code: Optional[str] = None, email: str = "") -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error_msg": _LOGIN_MESSAGES.get(error_code or ""),
            "email": email,
            "return_url": request.query_params.get("ReturnUrl", ""),
        },
    )


# ---------------------------------------------------------------------------
# GET / -- landing
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> RedirectResponse:
    return RedirectResponse(_settings.default_landing_path, status_code=302)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/Login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login form, or a notice instead of the form when already logged in."""
    if try_get_current_user(request) is not None:
        return templates.TemplateResponse(
            request,
            "login.html",
            {"notice": _ALREADY_LOGGED_IN},
        )
    return _login_page(request)


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/Login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(default=""),
    password: str = Form(default=""),
    remember_me: bool = Form(default=False),
) -> HTMLResponse:
    """Handle the login form submission."""
    email = email.strip()
    if not email or not password:
        return _login_page(request, "missing_fields", email)
    if not is_valid_email(email):
        return _login_page(request, "invalid_email", email)

    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, email, password)
    if user is None:
        return _login_page(request, "bad_credentials", email)

    user_store.update_last_login(user.id)
    ticket = issue_ticket(user, persistent=remember_me)
    resp = RedirectResponse(_safe_return(request.query_params.get("ReturnUrl")), status_code=302)
    set_auth_cookie(resp, ticket)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/Logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the auth cookie and redirect to the login page."""
    resp = RedirectResponse("/Login", status_code=302)
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------


@router.get("/Timeline", response_class=HTMLResponse)
def timeline(request: Request) -> HTMLResponse:
    if redirect := _require_auth(request):
        return redirect
    store: TimelineStore = request.app.state.timeline
    posts = store.list_posts()
    error_code = request.query_params.get("error", "")
    if posts is None:
        error_code = "timeline_unavailable"
    return templates.TemplateResponse(
        request,
        "timeline.html",
        {
            "posts": posts or [],
            "error_msg": _TIMELINE_MESSAGES.get(error_code),
            "max_length": MAX_POST_LENGTH,
        },
    )


@router.post("/Timeline", response_class=HTMLResponse)
def timeline_post(request: Request, body: str = Form(default="")) -> RedirectResponse:
    """Publish a post, then redirect back (POST/redirect/GET)."""
    if redirect := _require_auth(request):
        return redirect
    user = try_get_current_user(request)
    body = body.strip()
    if not body:
        return RedirectResponse("/Timeline?error=post_empty", status_code=303)
    if len(body) > MAX_POST_LENGTH:
        return RedirectResponse("/Timeline?error=post_too_long", status_code=303)

    store: TimelineStore = request.app.state.timeline
    if store.create_post(Post(user_id=user.id, body=body)) is None:
        return RedirectResponse("/Timeline?error=post_failed", status_code=303)
    return RedirectResponse("/Timeline", status_code=303)


@router.post("/Timeline/{post_id}/delete", response_class=HTMLResponse)
def timeline_delete(request: Request, post_id: int) -> RedirectResponse:
    if redirect := _require_auth(request):
        return redirect
    user = try_get_current_user(request)
    store: TimelineStore = request.app.state.timeline
    if not store.delete_post(post_id, user.id):
        return RedirectResponse("/Timeline?error=delete_failed", status_code=303)
    return RedirectResponse("/Timeline", status_code=303)
