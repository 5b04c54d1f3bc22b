from __future__ import annotations

import os
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dispenser.errors import ConfigurationError

GITHUB_ACTIONS_ISSUER = "https://token.actions.githubusercontent.com"


@dataclass(frozen=True)
class DispenserConfig:
    # GitHub App credentials (used to mint installation tokens)
    app_id: Optional[str]
    private_key_file: Optional[str]
    private_key: Optional[str]  # Inline PEM; wins over private_key_file

    # Policy
    rules_file: Optional[str]  # None => empty in-memory policy (deny all)

    # OIDC verification
    oidc_issuer: str
    oidc_audience: Optional[str]  # None => `aud` is not checked

    # Outbound HTTP
    github_api_url: str
    http_timeout_seconds: float

    log_level: str

    @property
    def minting_configured(self) -> bool:
        return bool(self.app_id and (self.private_key or self.private_key_file))

    @property
    def oidc_discovery_url(self) -> str:
        return f"{self.oidc_issuer.rstrip('/')}/.well-known/openid-configuration"

    def with_overrides(self, **kwargs) -> "DispenserConfig":  # type: ignore[no-untyped-def]
        """Apply CLI overrides (None means "keep the env value")."""
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})

    def read_private_key(self) -> str:
        if self.private_key:
            return self.private_key
        if not self.private_key_file:
            raise ConfigurationError("GitHub App private key not configured (PRIVATE_KEY_FILE or GITHUB_APP_PRIVATE_KEY)")
        try:
            return Path(self.private_key_file).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"couldn't read private key file '{self.private_key_file}'", wrapped=e) from e


def _env(*names: str) -> Optional[str]:
    for name in names:
        v = (os.getenv(name, "") or "").strip()
        if v:
            return v
    return None


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@lru_cache(maxsize=1)
def load_config() -> DispenserConfig:
    """
    Load dispenser configuration from environment variables.

    Recommended vars:
    - APP_ID=123456
    - PRIVATE_KEY_FILE=/secrets/app.pem   (or GITHUB_APP_PRIVATE_KEY with `\\n` escapes)
    - RULES_FILE=/config/rules.yaml
    - OIDC_AUDIENCE=https://github.com/my-org
    """
    private_key = _env("GITHUB_APP_PRIVATE_KEY")
    timeout = _env_float("HTTP_TIMEOUT_SECONDS", 10.0)
    if timeout <= 0:
        timeout = 10.0

    return DispenserConfig(
        app_id=_env("APP_ID", "GITHUB_APP_ID"),
        private_key_file=_env("PRIVATE_KEY_FILE"),
        private_key=private_key.replace("\\n", "\n") if private_key else None,
        rules_file=_env("RULES_FILE"),
        oidc_issuer=_env("OIDC_ISSUER") or GITHUB_ACTIONS_ISSUER,
        oidc_audience=_env("OIDC_AUDIENCE"),
        github_api_url=(_env("GITHUB_API_URL") or "https://api.github.com").rstrip("/"),
        http_timeout_seconds=timeout,
        log_level=(_env("LOG_LEVEL") or "info").lower(),
    )
