"""
Google Calendar Integration

OAuth 2.0 authorization-code flow plus a read-only "upcoming events" call
for the dashboard calendar widget. Tokens live in process memory; a refresh
token may also come from configuration or from the browser cookie set after
a successful callback.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, urlencode, urlparse

import httpx
import structlog

from salesdash.config.settings import GoogleSettings
from salesdash.core.calendar import to_iso
from salesdash.core.errors import (
    AuthorizationRequired,
    GoogleCalendarError,
    IntegrationNotConfigured,
)
from salesdash.integrations.base import BaseIntegration, safe_json

logger = structlog.get_logger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"
EVENT_FIELDS = "timeZone,items(id,summary,status,start,end,hangoutLink,location,htmlLink)"

REFRESH_TOKEN_COOKIE = "salesdash_gcal_rt"
REFRESH_TOKEN_COOKIE_MAX_AGE = 60 * 60 * 24 * 180
CALLBACK_PATH = "/api/google/oauth/callback"

# Refresh the access token this many seconds before it expires
EXPIRY_MARGIN_SECONDS = 30


def is_local_host(host: str) -> bool:
    hostname = (urlparse(f"http://{host}").hostname or host or "").lower()
    return hostname in ("localhost", "127.0.0.1", "::1")


def sanitize_calendar_id(value: Optional[str]) -> str:
    text = (value or "").strip()
    return text[:200] if text else "primary"


def normalize_event(item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Flatten a Calendar API event; events without a start are dropped."""
    start_block = item.get("start") or {}
    end_block = item.get("end") or {}
    start_dt = start_block.get("dateTime") if isinstance(start_block.get("dateTime"), str) else ""
    end_dt = end_block.get("dateTime") if isinstance(end_block.get("dateTime"), str) else ""
    start_date = start_block.get("date") if isinstance(start_block.get("date"), str) else ""
    end_date = end_block.get("date") if isinstance(end_block.get("date"), str) else ""
    start = start_dt or start_date
    if not start:
        return None
    return {
        "id": str(item.get("id") or ""),
        "title": str(item.get("summary") or "").strip() or "(Untitled)",
        "start": start,
        "end": end_dt or end_date or "",
        "is_all_day": bool(start_date and not start_dt),
        "meet_link": item.get("hangoutLink") or None,
        "location": item.get("location") or None,
        "html_link": item.get("htmlLink") or None,
    }


class GoogleCalendarClient(BaseIntegration):
    """
    OAuth-backed Google Calendar reader

    Usage:
        client = GoogleCalendarClient(settings.google)
        url = client.authorize_url(client.redirect_uri("https://dash.example.com"))
        events = await client.upcoming("primary", max_results=4)
    """

    source_name = "google_calendar"

    def __init__(
        self,
        settings: GoogleSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__(http_client, timeout)
        self.settings = settings
        self._clock = clock or time.time
        self.refresh_token = settings.refresh_token.get_secret_value() if settings.refresh_token else ""
        self.access_token = ""
        self.access_token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    @property
    def client_secret(self) -> str:
        return self.settings.client_secret.get_secret_value() if self.settings.client_secret else ""

    # ------------------------------------------------------------------
    # Authorization flow
    # ------------------------------------------------------------------

    def redirect_uri(self, request_base_url: str) -> str:
        """
        Redirect URI registered with Google.

        A configured localhost URI is ignored when the request came from a
        public host.
        """
        base = request_base_url.rstrip("/")
        fallback = f"{base}{CALLBACK_PATH}"
        configured = self.settings.redirect_uri.strip()
        if not configured:
            return fallback
        parsed = urlparse(configured)
        if not parsed.scheme or not parsed.netloc:
            return fallback
        request_host = urlparse(base).netloc
        if not is_local_host(request_host) and is_local_host(parsed.netloc):
            return fallback
        return configured

    def authorize_url(self, redirect_uri: str) -> str:
        params = {
            "client_id": self.settings.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": self.settings.scopes,
            "access_type": "offline",
            "include_granted_scopes": "true",
            "prompt": "consent",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    def adopt_refresh_token(self, token: Optional[str]) -> None:
        """Use a refresh token from the request cookie when none is held yet."""
        if not self.refresh_token and token and token.strip():
            self.refresh_token = token.strip()

    def _store_access_token(self, payload: Dict[str, Any]) -> str:
        access_token = str(payload.get("access_token") or "").strip()
        if not access_token:
            raise GoogleCalendarError("Google token response did not include an access token")
        try:
            expires_in = float(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0.0
        self.access_token = access_token
        self.access_token_expires_at = self._clock() + max(30.0, expires_in)
        return access_token

    def _clear_tokens(self, include_refresh: bool = False) -> None:
        self.access_token = ""
        self.access_token_expires_at = 0.0
        if include_refresh:
            self.refresh_token = ""

    async def _post_token(self, data: Dict[str, str]) -> httpx.Response:
        try:
            async with self.session() as client:
                return await client.post(TOKEN_URL, data=data)
        except httpx.HTTPError as e:
            raise GoogleCalendarError(f"Google OAuth token request failed: {e}") from e

    async def exchange_code(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        """
        Trade an authorization code for tokens.

        Returns:
            The token payload; the refresh token (when present) is kept in memory.
        """
        if not self.is_configured:
            raise IntegrationNotConfigured("google_oauth", "Google OAuth client id/secret not configured on backend")

        response = await self._post_token({
            "code": code,
            "client_id": self.settings.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        })
        payload = safe_json(response) or {}
        if response.status_code >= 400:
            message = payload.get("error_description") or payload.get("error") or (
                f"Google OAuth token exchange failed ({response.status_code})"
            )
            raise GoogleCalendarError(str(message), status_code=response.status_code)

        self._store_access_token(payload)
        refresh_token = str(payload.get("refresh_token") or "").strip()
        if refresh_token:
            self.refresh_token = refresh_token
        logger.info("Google Calendar connected", has_refresh_token=bool(refresh_token))
        return payload

    async def refresh_access_token(self) -> str:
        if not self.is_configured:
            raise IntegrationNotConfigured("google_oauth", "Google OAuth client credentials are not configured")
        if not self.refresh_token:
            raise AuthorizationRequired("Google Calendar requires authorization. Visit /api/google/oauth/start first.")

        response = await self._post_token({
            "client_id": self.settings.client_id,
            "client_secret": self.client_secret,
            "refresh_token": self.refresh_token,
            "grant_type": "refresh_token",
        })
        payload = safe_json(response) or {}
        if response.status_code >= 400:
            if str(payload.get("error") or "").lower() == "invalid_grant":
                self._clear_tokens(include_refresh=True)
                logger.warning("Google refresh token rejected, authorization required")
                raise AuthorizationRequired(
                    "Google Calendar authorization expired. Reconnect via /api/google/oauth/start."
                )
            message = payload.get("error_description") or payload.get("error") or (
                f"Google OAuth refresh failed ({response.status_code})"
            )
            raise GoogleCalendarError(str(message), status_code=response.status_code)

        return self._store_access_token(payload)

    async def get_access_token(self) -> str:
        if self.access_token and self._clock() + EXPIRY_MARGIN_SECONDS < self.access_token_expires_at:
            return self.access_token
        return await self.refresh_access_token()

    # ------------------------------------------------------------------
    # Calendar API
    # ------------------------------------------------------------------

    async def upcoming(self, calendar_id: str, max_results: int = 4) -> Dict[str, Any]:
        """
        Next events from ``calendar_id`` starting now.

        Raises:
            AuthorizationRequired: no usable token, or the API answered 401/403
            GoogleCalendarError: any other API failure
        """
        token = await self.get_access_token()
        params = {
            "singleEvents": "true",
            "orderBy": "startTime",
            "timeMin": to_iso(datetime.fromtimestamp(self._clock(), tz=timezone.utc)),
            "maxResults": str(max_results),
            "fields": EVENT_FIELDS,
        }
        url = EVENTS_URL.format(calendar_id=quote(calendar_id, safe=""))
        try:
            async with self.session() as client:
                response = await client.get(url, params=params, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as e:
            raise GoogleCalendarError(f"Google Calendar API request failed: {e}") from e

        payload = safe_json(response) or {}
        if response.status_code in (401, 403):
            self._clear_tokens()
            raise AuthorizationRequired("Google Calendar authorization required")
        if response.status_code >= 400:
            error = payload.get("error")
            message = (
                (error.get("message") if isinstance(error, dict) else None)
                or payload.get("error_description")
                or (error if isinstance(error, str) else None)
                or f"Google Calendar API request failed ({response.status_code})"
            )
            raise GoogleCalendarError(str(message), status_code=response.status_code)

        items = payload.get("items") if isinstance(payload.get("items"), list) else []
        events: List[Dict[str, Any]] = []
        for item in items:
            if not isinstance(item, dict) or str(item.get("status") or "").lower() == "cancelled":
                continue
            event = normalize_event(item)
            if event:
                events.append(event)
        return {"time_zone": payload.get("timeZone") or None, "events": events}


