"""
Client identity and rate-limit key derivation.
"""

import hashlib
import json
import re
from typing import Any, Collection, Optional

from storefront_core.ratelimit.models import RequestDescriptor

UNKNOWN_IP = "0.0.0.0"

_PATH_UNSAFE = re.compile(r"[^a-zA-Z0-9]")


def _strip_mapped(ip: str) -> str:
    ip = ip.strip()
    if ip.startswith("::ffff:"):
        ip = ip[len("::ffff:"):]
    return ip


def _client_hop(header: str, trusted_proxies: Optional[Collection[str]]) -> Optional[str]:
    hops = [_strip_mapped(hop) for hop in header.split(",") if hop.strip()]
    if not hops:
        return None
    if trusted_proxies is None:
        return hops[0]
    # Proxies append on the right: the client is the last hop no trusted proxy added
    for hop in reversed(hops):
        if hop not in trusted_proxies:
            return hop
    return hops[0]


def extract_real_ip(request: RequestDescriptor, trusted_proxies: Collection[str] = ()) -> str:
    """
    Client IP behind CDN / proxy hops.

    Forwarded headers are only read when the socket peer is a trusted
    proxy, or when the descriptor carries no peer at all (in-process
    callers). Otherwise the peer itself is the client.

    Header order: cf-connecting-ip, x-vercel-forwarded-for,
    x-forwarded-for, x-real-ip, then the socket peer.
    """
    peer = _strip_mapped(request.client_host) if request.client_host else None
    if peer and peer not in trusted_proxies:
        return peer

    hop_filter = trusted_proxies if peer else None
    ip = None

    cf_ip = request.header("cf-connecting-ip")
    vercel_forwarded = request.header("x-vercel-forwarded-for")
    forwarded = request.header("x-forwarded-for")
    real_ip = request.header("x-real-ip")

    if cf_ip:
        ip = _strip_mapped(cf_ip)
    elif vercel_forwarded:
        ip = _client_hop(vercel_forwarded, hop_filter)
    elif forwarded:
        ip = _client_hop(forwarded, hop_filter)
    elif real_ip:
        ip = _strip_mapped(real_ip)

    return ip or peer or UNKNOWN_IP


def anonymize_ip(ip: Optional[str]) -> str:
    """Mask the host part of an IP for logs and reports."""
    if not ip or not isinstance(ip, str):
        return UNKNOWN_IP

    if "." in ip:
        parts = ip.split(".")
        if len(parts) == 4:
            return ".".join(parts[:2] + ["xx", "xx"])
    elif ":" in ip:
        parts = ip.split(":")
        if len(parts) >= 4:
            return ":".join(parts[:3]) + "::xxx"

    return ip[:len(ip) // 3] + "xxx"


def hash_identifier(value: str, length: int) -> str:
    """Short stable hash of a submitted identifier (email, ...)."""
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()[:length]


def _submitted_email(body: Any) -> Optional[str]:
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="ignore")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return None
    if isinstance(body, dict):
        email = body.get("email")
        if isinstance(email, str) and email.strip():
            return email
    return None


def derive_key(request: RequestDescriptor, prefix: str, ip: Optional[str] = None) -> str:
    """
    Rate-limit key for a request.

    - order actions: ``order:email:<hash10>:ip:<ip>``
    - contact form: ``contact:contact:<hash8>:ip:<ip>``
    - template/application pages: ``<prefix>:resource:<id>:ip:<ip>``
    - everything else: ``<prefix>:ip:<ip>:path:<sanitized path>``
    """
    ip = ip or extract_real_ip(request)
    path = request.path

    if prefix == "order":
        email = _submitted_email(request.body)
        if email:
            return f"{prefix}:email:{hash_identifier(email, 10)}:ip:{ip}"

    if prefix == "contact":
        email = _submitted_email(request.body)
        if email:
            return f"{prefix}:contact:{hash_identifier(email, 8)}:ip:{ip}"

    if "/templates/" in path or "/applications/" in path:
        segments = [segment for segment in path.split("/") if segment]
        return f"{prefix}:resource:{segments[-1]}:ip:{ip}"

    return f"{prefix}:ip:{ip}:path:{_PATH_UNSAFE.sub('_', path)}"
