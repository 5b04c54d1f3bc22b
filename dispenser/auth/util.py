from __future__ import annotations

import hashlib
import re

_JWT_RE = re.compile(r"\beyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\b")
_GH_TOKEN_RE = re.compile(r"\b(ghp|gho|ghu|ghs|ghr)_[a-zA-Z0-9]{20,}\b")


def token_fingerprint(token: str | None) -> str:
    """Short stable identifier for a secret so it can be correlated in logs without being logged."""
    t = (token or "").strip()
    if not t:
        return "none"
    return hashlib.sha256(t.encode("utf-8")).hexdigest()[:12]


def redact_text(s: str) -> str:
    """Strip JWTs and GitHub tokens out of text before it hits a log line."""
    if not s:
        return s
    out = _JWT_RE.sub("[REDACTED]", s)
    return _GH_TOKEN_RE.sub("[REDACTED]", out)
