import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {
    code for code in (
        getattr(socket, "EAI_NONAME", None),
        getattr(socket, "EAI_NODATA", None),
    ) if code is not None
}


@dataclass(frozen=True)
class PrecheckResult:
    reachable: bool
    hostname: str
    reason: Optional[str] = None
    timed_out: bool = False


async def preflight_url_reachability(url: str, timeout_seconds: float = 5.0) -> PrecheckResult:
    """
    Cheap DNS check run before launching a browser for the URL.

    The lookup runs under asyncio.wait_for so a hung resolver cannot stall
    the queue; a timeout is reported with timed_out=True rather than as an
    unreachable host.
    """
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname or ""
    except ValueError:
        return PrecheckResult(reachable=False, hostname="", reason="Invalid URL format")

    if parsed.scheme not in ("http", "https") or not hostname:
        return PrecheckResult(reachable=False, hostname=hostname, reason="Invalid URL format")

    loop = asyncio.get_running_loop()
    try:
        await asyncio.wait_for(
            loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(f"DNS lookup for {hostname} timed out after {timeout_seconds}s")
        return PrecheckResult(
            reachable=False,
            hostname=hostname,
            reason=f"DNS lookup timed out after {timeout_seconds}s",
            timed_out=True,
        )
    except socket.gaierror as e:
        if e.errno in _NOT_FOUND_CODES:
            reason = "DNS resolution failed (ENOTFOUND)"
        elif e.errno == getattr(socket, "EAI_AGAIN", None):
            reason = "DNS resolution failed (EAI_AGAIN)"
        else:
            reason = f"DNS lookup error: {e.strerror or e}"
        return PrecheckResult(reachable=False, hostname=hostname, reason=reason)
    except (OSError, UnicodeError) as e:
        return PrecheckResult(reachable=False, hostname=hostname, reason=f"DNS lookup error: {e}")

    return PrecheckResult(reachable=True, hostname=hostname)
