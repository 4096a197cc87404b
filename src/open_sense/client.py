"""Async client for the Sense home energy monitoring API."""

import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from .events import EventEmitter
from .exceptions import APIError
from .models import AuthenticationResult, RealtimeState, Session, TrendScale, parse_mfa_token
from .realtime import Connector, RealtimeFeed
from .session import SessionManager


API_URL = "https://api.sense.com/apiservice/api/v1"
WSS_URL = "wss://clientrt.sense.com"

_LOGGER = logging.getLogger(__name__)


def obfuscate_email(email: str) -> str:
    """Mask an email address for logging, e.g. ``jo******@example.com``."""
    return re.sub(r"(?<=.{2}).(?=[^@]*?.@)", "*", email)


class SenseClient:
    """
    Async client for Sense's cloud API.

    Covers:
    - Email/password login, with multi-factor completion
    - Transparent access token renewal
    - Monitor overview, devices and historical trends
    - Realtime monitor updates over a websocket feed

    Subscribe to ``session_changed`` on :attr:`emitter` and persist the
    session each time it fires; pass it back in on the next start.

    Example:
        >>> async with SenseClient() as client:
        ...     client.emitter.on("session_changed", save_session)
        ...     mfa_token = await client.login("me@example.com", "hunter2")
        ...     if mfa_token:
        ...         await client.complete_mfa_login(mfa_token, input("Code: "))
        ...     overview = await client.get_monitor_overview(client.session.monitor_ids[0])
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        *,
        http: Optional[httpx.AsyncClient] = None,
        connector: Optional[Connector] = None,
        logger: Optional[logging.Logger] = None,
        api_url: Optional[str] = None,
        wss_url: Optional[str] = None,
        auto_reconnect: bool = True,
    ):
        """
        Initialize the Sense client.

        Args:
            session: A previously persisted session, if any
            http: HTTP client to use for API calls (created on demand if omitted)
            connector: Opens realtime channels (default ``websockets.connect``)
            logger: Logger to use instead of this module's logger
            api_url: REST API base URL (env ``SENSE_API_URL``)
            wss_url: Realtime API base URL (env ``SENSE_WSS_URL``)
            auto_reconnect: Reconnect the realtime feed when it drops
        """
        self.api_url = api_url or os.environ.get("SENSE_API_URL", API_URL)
        self.wss_url = wss_url or os.environ.get("SENSE_WSS_URL", WSS_URL)
        self.auto_reconnect = auto_reconnect

        self._logger = logger or _LOGGER
        self._http = http
        self._owns_http = http is None

        self.emitter = EventEmitter(logger=self._logger)
        self._sessions = SessionManager(
            self.api_url,
            self._get_http,
            self.emitter,
            session=session,
            logger=self._logger,
        )
        self._realtime = RealtimeFeed(
            self.wss_url,
            self._sessions.ensure_fresh_token,
            self.emitter,
            connector=connector,
            auto_reconnect=auto_reconnect,
            logger=self._logger,
        )

    async def __aenter__(self):
        """Async context manager entry."""
        await self._get_http()
        return self

    async def __aexit__(self, *args):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Stop realtime updates and release the HTTP client if we created it."""
        await self._realtime.stop()
        if self._http and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http is None:
            self._http = httpx.AsyncClient()
            self._owns_http = True
        return self._http

    @property
    def session(self) -> Optional[Session]:
        """The current session, or None when logged out."""
        return self._sessions.session

    @property
    def is_authenticated(self) -> bool:
        return self._sessions.session is not None

    @property
    def realtime_state(self) -> RealtimeState:
        return self._realtime.state

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def login(self, email: str, password: str) -> Optional[str]:
        """
        Log in with email and password.

        Any existing session is cleared first. If the account requires
        multi-factor authentication, the MFA token is returned and must be
        passed to :meth:`complete_mfa_login`.

        Returns:
            The MFA token, or None if the login completed without MFA

        Raises:
            APIError: authentication failed
        """
        self._sessions.clear()

        masked = obfuscate_email(email)
        self._logger.debug("Initiating Sense authentication for %s...", masked)

        http = await self._get_http()
        resp = await http.post(
            f"{self.api_url}/authenticate",
            data={"email": email, "password": password},
        )

        requires_mfa = resp.status_code == 401
        if not resp.is_success and not requires_mfa:
            self._logger.error("Unable to authenticate with Sense: %s", resp.reason_phrase)
            raise APIError.from_response(resp)

        if requires_mfa:
            self._logger.debug("Sense authentication requires MFA for %s.", masked)
            try:
                body = resp.json()
            except ValueError:
                body = None
            mfa_token = parse_mfa_token(body)
            if not mfa_token:
                # A 401 without a challenge is a plain credential rejection
                self._logger.error("Unable to authenticate with Sense: %s", resp.reason_phrase)
                raise APIError.from_response(resp)
            return mfa_token

        self._logger.debug("Sense authentication successful for %s.", masked)
        self._adopt(resp.json())
        return None

    async def complete_mfa_login(
        self,
        mfa_token: str,
        code: str,
        client_time: Optional[datetime] = None,
    ) -> None:
        """
        Finish a login that required multi-factor authentication.

        Args:
            mfa_token: Token returned by :meth:`login`
            code: One-time password from the authenticator app
            client_time: Current time on this device, for clock skew
                correction (defaults to now)

        Raises:
            APIError: the code was rejected
        """
        self._logger.debug("Completing MFA login...")
        client_time = client_time or datetime.now(timezone.utc)

        http = await self._get_http()
        resp = await http.post(
            f"{self.api_url}/authenticate/mfa",
            data={
                "totp": code,
                "mfa_token": mfa_token,
                "client_time": _iso_utc(client_time),
            },
        )

        if not resp.is_success:
            self._logger.error("Unable to complete MFA login with Sense: %s", resp.reason_phrase)
            raise APIError.from_response(resp)

        self._logger.debug("MFA login completed successfully.")
        self._adopt(resp.json())

    async def logout(self) -> None:
        """Stop realtime updates and forget the session."""
        await self._realtime.stop()
        self._sessions.clear()

    def _adopt(self, data: dict[str, Any]) -> None:
        self._sessions.set_session(AuthenticationResult.from_response(data).to_session())

    async def ensure_fresh_token(self) -> str:
        """Return a valid access token, renewing it if it expires soon."""
        return await self._sessions.ensure_fresh_token()

    # -------------------------------------------------------------------------
    # Monitors
    # -------------------------------------------------------------------------

    async def _get(self, path: str, params: Optional[dict] = None) -> Any:
        """Authenticated GET returning the decoded JSON body."""
        access_token = await self._sessions.ensure_fresh_token()
        http = await self._get_http()

        resp = await http.get(
            f"{self.api_url}{path}",
            params=params,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if not resp.is_success:
            raise APIError.from_response(resp)
        return resp.json()

    async def get_monitor_overview(self, monitor_id: int) -> dict[str, Any]:
        """
        Get an overview of a monitor.

        Returns:
            The monitor overview as returned by the API
        """
        return await self._get(f"/app/monitors/{monitor_id}/overview")

    async def get_monitor_devices(self, monitor_id: int) -> list[dict[str, Any]]:
        """Get every device detected by a monitor."""
        return await self._get(f"/app/monitors/{monitor_id}/devices")

    async def get_monitor_trends(
        self,
        monitor_id: int,
        tz: str,
        scale: TrendScale,
        start: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """
        Get historical usage trends for a monitor.

        Args:
            monitor_id: Monitor to query
            tz: IANA timezone of the monitor (see its overview), e.g. 'America/New_York'
            scale: DAY, WEEK, MONTH, YEAR or CYCLE
            start: A moment inside the first period (default now); naive
                datetimes are read as wall time in ``tz``

        Returns:
            Trends as returned by the API
        """
        scale = TrendScale(scale)
        start_day = self.trend_start(tz, scale, start)
        return await self._get(
            "/app/history/trends",
            params={
                "monitor_id": str(monitor_id),
                "scale": scale.value,
                "start": _iso_utc(start_day),
            },
        )

    def trend_start(
        self, tz: str, scale: TrendScale, start: Optional[datetime] = None
    ) -> datetime:
        """Beginning of the period containing ``start``, in the monitor's timezone."""
        try:
            zone = ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            self._logger.warning("Failed to parse timezone '%s'. Using UTC instead.", tz)
            zone = timezone.utc

        if start is None:
            day = datetime.now(zone)
        elif start.tzinfo is None:
            day = start.replace(tzinfo=zone)
        else:
            day = start.astimezone(zone)

        day = day.replace(hour=0, minute=0, second=0, microsecond=0)
        if scale is TrendScale.WEEK:
            # Weeks start on Monday
            day -= timedelta(days=day.weekday())
        elif scale is TrendScale.MONTH:
            day = day.replace(day=1)
        elif scale is TrendScale.YEAR:
            day = day.replace(month=1, day=1)
        return day

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    async def start_realtime_updates(self, monitor_id: int) -> None:
        """
        Start streaming realtime updates for a monitor.

        Updates arrive as ``realtime_update`` events on :attr:`emitter`
        with the monitor id and the decoded message. Calling this while
        updates are already running does nothing.

        Raises:
            UnauthenticatedError: no valid session
            APIError: the access token could not be renewed
        """
        await self._realtime.start(monitor_id)

    async def stop_realtime_updates(self) -> None:
        """Stop realtime updates. Auto-reconnect does not revive a stopped feed."""
        await self._realtime.stop()


def _iso_utc(moment: datetime) -> str:
    """ISO-8601 UTC timestamp with milliseconds, e.g. 2025-01-01T05:00:00.000Z."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    moment = moment.astimezone(timezone.utc)
    return moment.replace(tzinfo=None).isoformat(timespec="milliseconds") + "Z"
