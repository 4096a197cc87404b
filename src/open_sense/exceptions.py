"""Exceptions raised by the Sense API client."""

import httpx


class SenseError(Exception):
    """Base exception for Open Sense errors."""
    pass


class UnauthenticatedError(SenseError):
    """No session, or the session's access token is unusable."""
    pass


class APIError(SenseError):
    """The Sense API answered with a non-success status."""

    def __init__(self, status: int, status_text: str, url: str = ""):
        super().__init__(
            f"Failed to call the '{url}' Sense API endpoint. "
            f"The server responded with a status of {status} ({status_text})."
        )
        self.status = status
        self.status_text = status_text
        self.url = url

    @classmethod
    def from_response(cls, resp: httpx.Response) -> "APIError":
        return cls(resp.status_code, resp.reason_phrase, str(resp.request.url))
