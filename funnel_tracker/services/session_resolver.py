"""
Session and client identity resolution for tracking calls.

The HTTP layer builds a ClientContext from the request; nothing in here reads
global request state. Whether the session cookie is written is decided by the
caller based on consent, never by the resolver.
"""
import ipaddress
import re
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from funnel_tracker.core.config import settings

SESSION_COOKIE_NAME = "ft_session_id"
MAX_SESSION_ID_LENGTH = 255

# Checked in order; the first usable address wins
IP_HEADERS = ("x-forwarded-for", "x-real-ip", "client-ip")

_UNSAFE_SESSION_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")


@dataclass
class ClientContext:
    cookies: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)  # Lower-cased names
    remote_addr: str = ""
    posted_session_id: Optional[str] = None

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")


@dataclass
class SessionResolution:
    session_id: str
    is_new: bool


def sanitize_session_id(value: Optional[str]) -> str:
    if not value or not isinstance(value, str):
        return ""
    return _UNSAFE_SESSION_CHARS.sub("", value.strip())[:MAX_SESSION_ID_LENGTH]


def generate_session_id() -> str:
    return str(uuid.uuid4())


def resolve_session(ctx: ClientContext) -> SessionResolution:
    """Cookie first, then the posted session id, else a fresh uuid4."""
    cookie_value = sanitize_session_id(ctx.cookies.get(SESSION_COOKIE_NAME))
    if cookie_value:
        return SessionResolution(session_id=cookie_value, is_new=False)

    posted = sanitize_session_id(ctx.posted_session_id)
    if posted:
        return SessionResolution(session_id=posted, is_new=False)

    return SessionResolution(session_id=generate_session_id(), is_new=True)


def _parse_ip(value: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


def get_client_ip(ctx: ClientContext) -> str:
    """
    Best guess at the visitor's address.

    Proxy headers are consulted before the peer address. A public address is
    preferred; if none is found the first syntactically valid one is used.
    Returns '' when IP tracking is switched off.
    """
    if not settings.ENABLE_IP_TRACKING:
        return ""

    candidates = []
    for header in IP_HEADERS:
        raw = ctx.headers.get(header)
        if not raw:
            continue
        # X-Forwarded-For: client, proxy1, proxy2
        first_hop = raw.split(",")[0]
        parsed = _parse_ip(first_hop)
        if parsed is not None:
            candidates.append(parsed)

    if ctx.remote_addr:
        parsed = _parse_ip(ctx.remote_addr)
        if parsed is not None:
            candidates.append(parsed)

    for candidate in candidates:
        if candidate.is_global:
            return str(candidate)
    if candidates:
        return str(candidates[0])
    return ""


def get_user_agent(ctx: ClientContext) -> Optional[str]:
    if not settings.ENABLE_USER_AGENT_TRACKING:
        return None
    return ctx.user_agent or None
