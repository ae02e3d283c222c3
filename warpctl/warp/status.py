"""Connection status detection."""

from enum import Enum

CONNECTED_MARKER = "Connected"


class ConnectionState(Enum):
    """Connection states exposed by the controller."""

    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"

    def __str__(self) -> str:
        return self.value


def is_connected(output: str) -> bool:
    """Check ``warp-cli status`` output for an established connection.

    The match is a case-sensitive substring test, so "Disconnected" and
    empty output both count as not connected.
    """
    return CONNECTED_MARKER in output


def state_from_status(output: str) -> ConnectionState:
    if is_connected(output):
        return ConnectionState.CONNECTED
    return ConnectionState.DISCONNECTED
