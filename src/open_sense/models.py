"""Data models for the Sense API client."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class Session:
    """
    Authenticated user session.

    This is the object an application must persist to stay logged in.
    It holds live credentials, so store it somewhere only trusted code
    can read.
    """
    user_id: int
    monitor_ids: tuple[int, ...]
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return {
            "user_id": self.user_id,
            "monitor_ids": list(self.monitor_ids),
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Rebuild a session previously produced by :meth:`to_dict`."""
        return cls(
            user_id=int(data["user_id"]),
            monitor_ids=tuple(int(m) for m in data.get("monitor_ids", [])),
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
        )

    def with_tokens(self, access_token: str, refresh_token: str) -> "Session":
        """Copy of this session carrying renewed tokens."""
        return Session(
            user_id=self.user_id,
            monitor_ids=self.monitor_ids,
            access_token=access_token,
            refresh_token=refresh_token,
        )


@dataclass(frozen=True)
class TokenClaims:
    """Claims read from an access token payload."""
    expires_at: float
    subject: str


@dataclass
class AuthenticationResult:
    """Identity and tokens returned by a successful login."""
    user_id: int
    monitor_ids: list[int]
    access_token: str
    refresh_token: str

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "AuthenticationResult":
        return cls(
            user_id=int(data["user_id"]),
            monitor_ids=[int(m["id"]) for m in data.get("monitors") or []],
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
        )

    def to_session(self) -> Session:
        return Session(
            user_id=self.user_id,
            monitor_ids=tuple(self.monitor_ids),
            access_token=self.access_token,
            refresh_token=self.refresh_token,
        )


class RealtimeState(str, Enum):
    """Lifecycle of the realtime feed connection."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"


class TrendScale(str, Enum):
    """Time scale for historical trends."""
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    YEAR = "YEAR"
    CYCLE = "CYCLE"


def parse_mfa_token(data: Optional[dict[str, Any]]) -> Optional[str]:
    """Pull the MFA challenge token out of a 401 authenticate response."""
    if not isinstance(data, dict):
        return None
    return data.get("mfa_token")
