"""
Open Sense - Modern async Python client for the Sense energy monitor API.

Supports:
- Email/password login with multi-factor authentication
- Automatic access token renewal
- Monitor overview, detected devices and usage trends
- Realtime power updates over the monitor's websocket feed

Example:
    >>> from open_sense import SenseClient, Session
    >>>
    >>> async with SenseClient(Session.from_dict(saved)) as client:
    ...     client.emitter.on("session_changed", persist)
    ...     client.emitter.on("realtime_update", lambda monitor_id, data: print(data["type"]))
    ...     await client.start_realtime_updates(client.session.monitor_ids[0])
"""

import logging

__version__ = "0.1.0"

from .client import SenseClient
from .events import EventEmitter
from .exceptions import (
    SenseError,
    UnauthenticatedError,
    APIError,
)
from .models import (
    Session,
    RealtimeState,
    TrendScale,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Client
    "SenseClient",
    "EventEmitter",
    # Exceptions
    "SenseError",
    "UnauthenticatedError",
    "APIError",
    # Models
    "Session",
    "RealtimeState",
    "TrendScale",
]
