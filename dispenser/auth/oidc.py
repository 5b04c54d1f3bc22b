from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import jwt  # PyJWT
import requests

from dispenser.auth.util import token_fingerprint
from dispenser.config import DispenserConfig
from dispenser.errors import InvalidIssuer, VerificationError
from dispenser.policy.claims import GitHubClaims

logger = logging.getLogger(__name__)

_CACHE_TTL_SECONDS = 3600
# A forced JWKS refresh (unknown kid) is skipped while the cached copy is younger than this.
_FORCED_REFRESH_MIN_AGE_SECONDS = 60

_discovery_cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}
_jwks_cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}
_cache_lock = threading.Lock()


def _fetch_json_cached(
    cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]], url: str, timeout: float, max_age: float = _CACHE_TTL_SECONDS
) -> Dict[str, Any]:
    now = time.time()
    with _cache_lock:
        ts, cached = cache.get(url, (0.0, None))
        if cached is not None and now - ts < max_age:
            return cached
    r = requests.get(url, timeout=timeout)
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError(f"Invalid JSON document from {url}")
    with _cache_lock:
        cache[url] = (now, data)
    return data


def _get_discovery(discovery_url: str, timeout: float = 10.0) -> Dict[str, Any]:
    """
    Fetch OIDC discovery document from provider.
    Caches result for 1 hour per discovery URL.
    """
    return _fetch_json_cached(_discovery_cache, discovery_url, timeout)


def _get_jwks(jwks_uri: str, timeout: float = 10.0, force_refresh: bool = False) -> Dict[str, Any]:
    """
    Fetch JWKS (JSON Web Key Set) from provider.
    Caches result for 1 hour per JWKS URI; `force_refresh` re-fetches unless
    the cached copy is under a minute old (signing key rotation).
    """
    max_age = _FORCED_REFRESH_MIN_AGE_SECONDS if force_refresh else _CACHE_TTL_SECONDS
    return _fetch_json_cached(_jwks_cache, jwks_uri, timeout, max_age)


def clear_caches() -> None:
    with _cache_lock:
        _discovery_cache.clear()
        _jwks_cache.clear()


def _find_jwk(jwks: Dict[str, Any], kid: str) -> Optional[Dict[str, Any]]:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        raise VerificationError("invalid JWKS keys")
    for k in keys:
        if isinstance(k, dict) and str(k.get("kid") or "") == kid:
            return k
    return None


def verify_identity_token(cfg: DispenserConfig, raw_token: str) -> GitHubClaims:
    """
    Verify a GitHub Actions OIDC token and return its claims.

    - Verifies the RS256 signature against the issuer's published keys
    - Validates issuer, expiry (and audience when OIDC_AUDIENCE is set)
    """
    token = (raw_token or "").strip()
    if not token:
        raise VerificationError("missing OIDC token")
    fp = token_fingerprint(token)

    try:
        hdr = jwt.get_unverified_header(token)
    except jwt.PyJWTError as e:
        raise VerificationError(f"malformed OIDC token (fp={fp})", wrapped=e) from e
    kid = str(hdr.get("kid") or "")
    if not kid:
        raise VerificationError(f"OIDC token missing kid (fp={fp})")

    try:
        disc = _get_discovery(cfg.oidc_discovery_url, cfg.http_timeout_seconds)
        issuer = str(disc.get("issuer") or "")
        jwks_uri = str(disc.get("jwks_uri") or "")
        if not issuer or not jwks_uri:
            raise ValueError("OIDC discovery missing issuer/jwks_uri")
        jwks = _get_jwks(jwks_uri, cfg.http_timeout_seconds)
    except (requests.RequestException, ValueError) as e:
        raise VerificationError("couldn't load OIDC provider keys", wrapped=e) from e

    if issuer.rstrip("/") != cfg.oidc_issuer.rstrip("/"):
        raise InvalidIssuer(f"discovery issuer '{issuer}' doesn't match trusted issuer '{cfg.oidc_issuer}'")

    jwk = _find_jwk(jwks, kid)
    if jwk is None:
        logger.info("Signing key kid=%s not in cached JWKS; refreshing", kid)
        try:
            jwks = _get_jwks(jwks_uri, cfg.http_timeout_seconds, force_refresh=True)
        except (requests.RequestException, ValueError) as e:
            raise VerificationError("couldn't refresh OIDC provider keys", wrapped=e) from e
        jwk = _find_jwk(jwks, kid)
    if jwk is None:
        raise VerificationError(f"unknown signing key kid={kid} (fp={fp})")

    options: Dict[str, Any] = {"require": ["exp", "iat", "iss", "sub"]}
    if not cfg.oidc_audience:
        options["verify_aud"] = False

    try:
        key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))
        claims = jwt.decode(
            token,
            key=key,
            algorithms=["RS256"],
            audience=cfg.oidc_audience,
            issuer=issuer,
            options=options,
        )
    except jwt.InvalidIssuerError as e:
        raise InvalidIssuer(f"OIDC token has an untrusted issuer (fp={fp})", wrapped=e) from e
    except (jwt.PyJWTError, ValueError) as e:
        raise VerificationError(f"OIDC token rejected (fp={fp})", wrapped=e) from e
    if not isinstance(claims, dict):
        raise VerificationError(f"invalid OIDC token claims (fp={fp})")

    logger.info("Verified OIDC token fp=%s sub=%s", fp, claims.get("sub"))
    return GitHubClaims.from_mapping(claims)
