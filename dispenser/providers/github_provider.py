"""
GitHub App credential minting.

Mints installation tokens scoped to a single repository and to exactly the
approved permissions.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional, Protocol

import jwt
import requests

from dispenser.config import DispenserConfig
from dispenser.errors import ConfigurationError, MintError
from dispenser.policy.permissions import AccessLevel, grant_to_wire
from dispenser.rules.repository import Repository

logger = logging.getLogger(__name__)

_GITHUB_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}


class CredentialMinter(Protocol):
    """Protocol for minting scoped repository credentials."""

    def mint_scoped_credential(self, repo: Repository, approved: Mapping[str, AccessLevel]) -> str:
        """
        Create a short-lived token for `repo` limited to `approved`.

        Raises:
            MintError on any downstream failure (not retried)
        """
        ...


class GitHubAppMinter:
    """
    Mints installation tokens via GitHub App authentication.

    Flow: app JWT -> GET /repos/{owner}/{repo}/installation -> POST
    /app/installations/{id}/access_tokens with `repositories` and `permissions`.
    """

    def __init__(self, cfg: DispenserConfig) -> None:
        self.app_id = cfg.app_id or ""
        self.api_url = cfg.github_api_url
        self.timeout = cfg.http_timeout_seconds
        self._cfg = cfg
        self._private_key: Optional[str] = None

    def _get_private_key(self) -> str:
        if self._private_key is None:
            self._private_key = self._cfg.read_private_key()
        return self._private_key

    def _generate_jwt(self) -> str:
        """
        Generate JWT for GitHub App authentication.

        Raises:
            ConfigurationError if credentials are missing
        """
        if not self.app_id:
            raise ConfigurationError("APP_ID required to mint tokens")

        now = int(time.time())
        payload = {
            "iat": now - 60,  # Issued 60 seconds in the past to allow for clock drift
            "exp": now + (10 * 60),  # GitHub caps app JWTs at 10 minutes
            "iss": self.app_id,
        }

        return jwt.encode(payload, self._get_private_key(), algorithm="RS256")

    def _app_request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        headers = dict(kwargs.pop("headers", {}) or {})
        headers.update(_GITHUB_HEADERS)
        headers["Authorization"] = f"Bearer {self._generate_jwt()}"
        kwargs["headers"] = headers
        kwargs.setdefault("timeout", self.timeout)

        response = requests.request(method, f"{self.api_url}{path}", **kwargs)
        response.raise_for_status()
        return response

    def find_installation_id(self, repo: Repository) -> int:
        response = self._app_request("GET", f"/repos/{repo.owner}/{repo.name}/installation")
        data = response.json()
        install_id = data.get("id") if isinstance(data, dict) else None
        if not install_id:
            raise MintError(f"installation lookup for {repo} returned no id")
        return int(install_id)

    def mint_scoped_credential(self, repo: Repository, approved: Mapping[str, AccessLevel]) -> str:
        try:
            install_id = self.find_installation_id(repo)
            body: Dict[str, Any] = {
                "repositories": [repo.name],
                "permissions": grant_to_wire(approved),
            }
            response = self._app_request("POST", f"/app/installations/{install_id}/access_tokens", json=body)
            data = response.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise MintError(f"GitHub API rejected token request for {repo} (status={status})", wrapped=e) from e
        except requests.RequestException as e:
            raise MintError(f"couldn't reach GitHub API for {repo}", wrapped=e) from e

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise MintError(f"GitHub API returned no token for {repo}")

        logger.info(
            "Minted installation token for %s (installation=%s, expires_at=%s, permissions=%s)",
            repo,
            install_id,
            data.get("expires_at"),
            grant_to_wire(approved),
        )
        return str(token)

