"""Routing — users, connections, and where session events are delivered."""

from shellmux.routing.directory import UserDirectory, UserEntry, resolve_user
from shellmux.routing.router import (
    SHARED_OWNER,
    Connection,
    ConnectionRouter,
    RoutingMode,
)
from shellmux.routing.wire import EventType, Wire, WireEvent

__all__ = [
    "SHARED_OWNER",
    "Connection",
    "ConnectionRouter",
    "EventType",
    "RoutingMode",
    "UserDirectory",
    "UserEntry",
    "Wire",
    "WireEvent",
    "resolve_user",
]
