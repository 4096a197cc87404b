"""Session ownership and access-token renewal."""

import base64
import binascii
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Optional

import httpx

from .events import SESSION_CHANGED, EventEmitter
from .exceptions import APIError, UnauthenticatedError
from .models import Session, TokenClaims


_LOGGER = logging.getLogger(__name__)

ACCESS_TOKEN_PREFIX = "t1.v2."
# Renew tokens this close to expiry so they don't lapse mid-request
RENEWAL_LOOKAHEAD_SECONDS = 15 * 60


def _b64decode(segment: str) -> bytes:
    # Accept both alphabets, padded or not
    segment = segment.replace("+", "-").replace("/", "_")
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def decode_access_token(access_token: str) -> TokenClaims:
    """
    Read the expiry and subject claims from an access token.

    The signature is not verified; only the server can do that.

    Raises:
        ValueError: if the token is malformed or lacks a claim
    """
    if access_token.startswith(ACCESS_TOKEN_PREFIX):
        access_token = access_token[len(ACCESS_TOKEN_PREFIX):]

    parts = access_token.split(".")
    if len(parts) != 3:
        raise ValueError("Invalid access token format.")

    try:
        payload = json.loads(_b64decode(parts[1]))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Undecodable access token payload: {e}") from e

    if not isinstance(payload, dict):
        raise ValueError("Access token payload is not an object.")
    if not payload.get("exp"):
        raise ValueError("No expiration time in access token.")
    if not payload.get("userId"):
        raise ValueError("No subject id in access token.")

    try:
        expires_at = float(payload["exp"])
    except (TypeError, ValueError) as e:
        raise ValueError("Expiration time in access token is not a number.") from e

    return TokenClaims(expires_at=expires_at, subject=str(payload["userId"]))


class SessionManager:
    """
    Owns the current session and keeps its access token fresh.

    Every change of session value is announced exactly once through the
    ``session_changed`` event. Setting a session equal to the current one
    is a no-op.
    """

    def __init__(
        self,
        api_url: str,
        get_http: Callable[[], Awaitable[httpx.AsyncClient]],
        emitter: EventEmitter,
        session: Optional[Session] = None,
        logger: logging.Logger = _LOGGER,
    ):
        self.api_url = api_url
        self._get_http = get_http
        self._emitter = emitter
        self._session = session
        self._logger = logger

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def set_session(self, session: Optional[Session]) -> None:
        """Replace the session and notify observers if it changed."""
        if session == self._session:
            return
        self._session = session
        self._emitter.emit(SESSION_CHANGED, session)

    def clear(self) -> None:
        self.set_session(None)

    async def ensure_fresh_token(self) -> str:
        """
        Return an access token that is valid for at least 15 more minutes.

        Renews the token pair through the API when the current access token
        is about to expire.

        Raises:
            UnauthenticatedError: no session, or the access token is corrupt
                (the session is cleared in that case)
            APIError: the renewal request failed (the session is kept)
        """
        session = self._session
        if session is None:
            raise UnauthenticatedError(
                "An attempt was made to access a resource without a valid session."
            )

        self._logger.debug("Parsing access token to determine expiration time...")
        try:
            claims = decode_access_token(session.access_token)
        except ValueError as e:
            self.clear()
            raise UnauthenticatedError(
                f"An attempt was made to access a resource without a valid session: {e}"
            ) from e

        if claims.expires_at > time.time() + RENEWAL_LOOKAHEAD_SECONDS:
            self._logger.debug("Access token is still valid, not renewing.")
            return session.access_token

        self._logger.debug("Access token is expiring, renewing...")
        http = await self._get_http()
        resp = await http.post(
            f"{self.api_url}/renew",
            data={"user_id": claims.subject, "refresh_token": session.refresh_token},
        )

        if not resp.is_success:
            # Keep the session; this may be a transient failure
            self._logger.error("Failed to renew access token: %s", resp.reason_phrase)
            raise APIError.from_response(resp)

        data = resp.json()
        renewed = session.with_tokens(data["access_token"], data["refresh_token"])
        # Another task may have replaced the session while we were waiting
        if self._session is session:
            self.set_session(renewed)
        return renewed.access_token
