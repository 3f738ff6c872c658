"""
Prometheus metrics for the real-time relay.

HTTP request metrics come from prometheus-fastapi-instrumentator (see main.py);
these cover the Socket.IO side, which the instrumentator cannot see.
"""
from prometheus_client import Counter, Gauge

relay_connections_active = Gauge(
    "relay_connections_active",
    "Number of live relay connections"
)

relay_connections_total = Counter(
    "relay_connections_total",
    "Total number of relay connections accepted"
)

relay_connections_refused_total = Counter(
    "relay_connections_refused_total",
    "Relay handshakes refused",
    labelnames=["reason"]
)

relay_room_memberships = Gauge(
    "relay_room_memberships",
    "Number of (connection, room) memberships"
)

relay_events_received_total = Counter(
    "relay_events_received_total",
    "Client events received by the relay",
    labelnames=["event", "outcome"]
)

relay_deliveries_total = Counter(
    "relay_deliveries_total",
    "Events emitted to individual connections",
    labelnames=["channel"]
)


def update_relay_gauges(registry) -> None:
    """
    Refresh gauges from registry state.

    Args:
        registry: ConnectionRegistry instance
    """
    relay_connections_active.set(registry.connection_count())
    relay_room_memberships.set(registry.membership_count())
