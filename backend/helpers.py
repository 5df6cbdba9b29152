# helpers.py
import re
import time
from datetime import datetime, timezone
from typing import Optional

TAG_RE = re.compile(r"<[^>]*>")


def _now() -> float:
    return time.time()


def day_key(ts: Optional[float] = None) -> str:
    """UTC calendar day, e.g. '2025-03-14'."""
    ts = _now() if ts is None else ts
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def identity_key(ip: str, day: str) -> str:
    return f"{ip}|{day}"


def client_ip(req, trust_proxy: bool = False) -> str:
    # CF-Connecting-IP is client-controlled unless Cloudflare sits in front;
    # ProxyFix handles X-Forwarded-For under the same flag
    if trust_proxy:
        forwarded = (req.headers.get("CF-Connecting-IP") or "").strip()
        if forwarded:
            return forwarded
    return (req.remote_addr or "").strip()


def strip_tags(s: str) -> str:
    return TAG_RE.sub("", s or "").strip()
