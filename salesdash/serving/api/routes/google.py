"""
Google Calendar Endpoints

OAuth start/callback pages and the upcoming-events feed for the dashboard
calendar widget.
"""

from html import escape
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from salesdash.core.calendar import to_iso
from salesdash.core.errors import AuthorizationRequired, DashboardError, IntegrationNotConfigured, UpstreamRequestError
from salesdash.integrations.google_calendar import (
    REFRESH_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE_MAX_AGE,
    GoogleCalendarClient,
    sanitize_calendar_id,
)
from salesdash.reports.context import utc_now
from salesdash.serving.api.dependencies import get_google_client, parse_limit, request_base_url

router = APIRouter()
logger = structlog.get_logger(__name__)

NO_STORE = {"Cache-Control": "no-store"}
NOT_CONFIGURED = "google_oauth_not_configured"
PAGE_TEMPLATE = (
    '<!doctype html><html><head><meta charset="utf-8" /><title>Google Calendar OAuth</title></head>'
    '<body style="font-family:Arial,sans-serif;padding:20px;line-height:1.45;">{body}</body></html>'
)


def html_page(status_code: int, body: str) -> HTMLResponse:
    return HTMLResponse(PAGE_TEMPLATE.format(body=body), status_code=status_code, headers=NO_STORE)


@router.get("/oauth/start")
async def oauth_start(request: Request, google: GoogleCalendarClient = Depends(get_google_client)):
    if not google.is_configured:
        return JSONResponse(
            status_code=503,
            content={"status": NOT_CONFIGURED, "error": "Google OAuth client id/secret not configured on backend"},
        )
    redirect_uri = google.redirect_uri(request_base_url(request))
    return RedirectResponse(google.authorize_url(redirect_uri), status_code=302, headers=NO_STORE)


@router.get("/oauth/callback")
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    google: GoogleCalendarClient = Depends(get_google_client),
):
    if not google.is_configured:
        return html_page(
            503,
            "<h1>Google Calendar OAuth not configured</h1>"
            "<p>Set GOOGLE_OAUTH_CLIENT_ID and GOOGLE_OAUTH_CLIENT_SECRET on the backend.</p>",
        )
    if error and error.strip():
        return html_page(400, f"<h1>Google authorization failed</h1><p>{escape(error.strip())}</p>")
    if not code or not code.strip():
        return html_page(400, "<h1>Missing OAuth code</h1><p>Google did not return an authorization code.</p>")

    had_refresh_token = bool(google.refresh_token)
    try:
        payload = await google.exchange_code(code.strip(), google.redirect_uri(request_base_url(request)))
    except DashboardError as e:
        logger.warning("Google OAuth token exchange failed", error=e.message)
        return html_page(500, f"<h1>Google OAuth token exchange failed</h1><p>{escape(e.message)}</p>")

    refresh_token = str(payload.get("refresh_token") or "").strip()
    if refresh_token:
        hint = (
            "<p>Connected.</p><p>This browser now has a secure cookie for Calendar access. "
            "For all devices and restarts, set <code>GOOGLE_CALENDAR_REFRESH_TOKEN</code> to this value:</p>"
            '<textarea readonly style="width:100%;min-height:88px;font-family:monospace;padding:10px;">'
            f"{escape(refresh_token)}</textarea>"
        )
    elif had_refresh_token:
        hint = (
            "<p>Connected using an existing refresh token.</p>"
            "<p>For reliable access after restarts, set <code>GOOGLE_CALENDAR_REFRESH_TOKEN</code>.</p>"
        )
    else:
        hint = "<p>Connected for this process only. Re-auth may be needed after restart.</p>"

    response = html_page(
        200,
        f"<h1>Google Calendar connected</h1>{hint}<p>You can close this tab and refresh the dashboard.</p>",
    )
    if refresh_token:
        response.set_cookie(
            REFRESH_TOKEN_COOKIE,
            refresh_token,
            max_age=REFRESH_TOKEN_COOKIE_MAX_AGE,
            path="/",
            httponly=True,
            secure=True,
            samesite="lax",
        )
    return response


@router.get("/calendar/upcoming")
async def calendar_upcoming(
    request: Request,
    max_results: Optional[str] = Query(None, alias="max"),
    calendar_id: Optional[str] = Query(None, alias="calendarId"),
    google: GoogleCalendarClient = Depends(get_google_client),
):
    """
    Next events of the configured calendar.

    503 when OAuth is not configured, 401 with ``auth_url`` when the user has
    to (re)authorize, 502 for any other Calendar API failure.
    """
    google.adopt_refresh_token(request.cookies.get(REFRESH_TOKEN_COOKIE))
    calendar = sanitize_calendar_id(calendar_id or google.settings.calendar_id)

    try:
        payload = await google.upcoming(calendar, parse_limit(max_results, 4, 10))
    except IntegrationNotConfigured as e:
        return JSONResponse(status_code=503, content={"status": NOT_CONFIGURED, "error": e.message})
    except AuthorizationRequired as e:
        auth_url = (
            google.authorize_url(google.redirect_uri(request_base_url(request)))
            if google.is_configured
            else None
        )
        return JSONResponse(
            status_code=401,
            content={"status": AuthorizationRequired.code, "error": e.message, "auth_url": auth_url},
        )
    except UpstreamRequestError as e:
        logger.warning("Google Calendar request failed", error=e.message, status_code=e.status_code)
        return JSONResponse(status_code=502, content={"status": "google_calendar_error", "error": e.message})

    return {
        "updatedAt": to_iso(utc_now()),
        "calendar_id": calendar,
        "time_zone": payload.get("time_zone"),
        "events": payload["events"],
    }
