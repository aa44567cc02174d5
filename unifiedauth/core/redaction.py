from __future__ import annotations

import re
from typing import Any, Dict

_SECRET_KEYS = {
    "password",
    "current_password",
    "new_password",
    "passphrase",
    "token",
    "reset_token",
    "qr_code",
    "authorization",
    "secret",
    "bearer",
    "descriptor",
    "face_data",
}

_BEARER_RE = re.compile(r"(authorization:\s*bearer\s+)([A-Za-z0-9\-\._~\+/]+=*)", re.IGNORECASE)
_KV_RE = re.compile(r"(?i)\b(password|passphrase|token|secret)\s*=\s*([^\s,;]+)")
_JWT_RE = re.compile(r"\beyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+")


def mask_ip(ip: str) -> str:
    # keep /24 only for IPv4; otherwise return "ip"
    parts = str(ip).split(".")
    if len(parts) == 4:
        return ".".join(parts[:3] + ["x"])
    return "ip"


def redact_text(s: str, *, max_len: int = 300) -> str:
    s = _BEARER_RE.sub(r"\1<redacted>", s)
    s = _KV_RE.sub(r"\1=<redacted>", s)
    s = _JWT_RE.sub("<jwt>", s)
    if len(s) > max_len:
        s = s[:max_len] + "..."
    return s


def redact_value(v: Any) -> Any:
    if v is None:
        return None
    if isinstance(v, (int, float, bool)):
        return v
    if isinstance(v, (bytes, bytearray)):
        return "<bytes>"
    if isinstance(v, str):
        return redact_text(v)
    if isinstance(v, (list, tuple)):
        return [redact_value(x) for x in list(v)[:50]]
    if isinstance(v, dict):
        out: Dict[str, Any] = {}
        for k, vv in list(v.items())[:100]:
            kk = str(k)
            if kk.lower() in _SECRET_KEYS:
                out[kk] = "<redacted>"
                continue
            if kk.lower() in {"ip", "ip_address", "client_ip"} and isinstance(vv, str):
                out[kk] = mask_ip(vv)
                continue
            out[kk] = redact_value(vv)
        return out
    return redact_text(str(v))
