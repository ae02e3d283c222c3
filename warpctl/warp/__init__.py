"""WARP control via warp-cli."""

from .account import AccountParseError, AccountSnapshot, format_bytes, parse_account
from .status import ConnectionState, is_connected
from .trace import TraceInfo, get_trace
from .warpcli import Mode, WarpCli

__all__ = [
    "AccountParseError",
    "AccountSnapshot",
    "ConnectionState",
    "Mode",
    "TraceInfo",
    "WarpCli",
    "format_bytes",
    "get_trace",
    "is_connected",
    "parse_account",
]
