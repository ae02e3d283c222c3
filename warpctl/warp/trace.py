"""Cloudflare trace lookup for verifying where traffic exits."""

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

TRACE_URL = "https://www.cloudflare.com/cdn-cgi/trace"


@dataclass
class TraceInfo:
    """Subset of the Cloudflare trace response."""

    ip: str | None = None
    loc: str | None = None
    colo: str | None = None
    warp: str | None = None

    @property
    def through_warp(self) -> bool:
        return self.warp in ("on", "plus")

    def __str__(self) -> str:
        parts = [f"WARP: {self.warp or 'unknown'}"]
        if self.ip:
            parts.append(f"| IP: {self.ip}")
        if self.loc:
            parts.append(f"| Location: {self.loc}")
        if self.colo:
            parts.append(f"| Colo: {self.colo}")
        return " ".join(parts)


def parse_trace(text: str) -> TraceInfo:
    """Parse the ``key=value`` lines returned by the trace endpoint."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()

    return TraceInfo(
        ip=values.get("ip"),
        loc=values.get("loc"),
        colo=values.get("colo"),
        warp=values.get("warp"),
    )


async def get_trace(
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TraceInfo | None:
    """Fetch the trace for the current network path.

    Returns None when the endpoint cannot be reached.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(TRACE_URL)
            response.raise_for_status()
            return parse_trace(response.text)
    except httpx.HTTPError as e:
        logger.warning("Trace lookup failed: %s", e)
    return None
