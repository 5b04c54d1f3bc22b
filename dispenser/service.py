"""
Token service: one inbound request -> one decision -> (maybe) one minted token.

Order of checks:
1. parse the target repository and the requested permissions
2. verify the OIDC token (issuer/signature/expiry)
3. the token's repository_owner must own the target repository
4. the target's rules must authorize the requested permissions
5. mint a token scoped to the target and the approved permissions
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Mapping

from pydantic import BaseModel, Field

from dispenser.auth.util import token_fingerprint
from dispenser.config import DispenserConfig
from dispenser.errors import ConfigurationError, DispenserError, InvalidRequest, NotAuthorized, RuleLookupError
from dispenser.policy.claims import GitHubClaims
from dispenser.policy.decision import authorize
from dispenser.policy.permissions import AccessLevel, PermissionGrant, grant_to_wire, parse_grant
from dispenser.providers.github_provider import CredentialMinter
from dispenser.rules.repository import RuleRepository, parse_repository

logger = logging.getLogger(__name__)

TokenVerifier = Callable[[str], GitHubClaims]


class TokenRequest(BaseModel):
    repository: str
    token: str = Field(default="", repr=False)
    permissions: Dict[str, str] = Field(default_factory=dict)


@dataclass(frozen=True)
class TokenResponse:
    token: str
    repository: str
    permissions: Mapping[str, AccessLevel]

    def to_json_dict(self) -> Dict[str, object]:
        return {
            "ok": True,
            "token": self.token,
            "repository": self.repository,
            "permissions": grant_to_wire(self.permissions),
        }


def parse_requested_permissions(raw: Mapping[str, str]) -> PermissionGrant:
    try:
        return parse_grant(raw or {})
    except ConfigurationError as e:
        # A bad level name in a request is the caller's fault, not ours.
        raise InvalidRequest(str(e), external_message=str(e)) from e


class TokenService:
    def __init__(self, *, verifier: TokenVerifier, rules: RuleRepository, minter: CredentialMinter) -> None:
        self._verify = verifier
        self._rules = rules
        self._minter = minter

    @classmethod
    def from_config(cls, cfg: DispenserConfig, *, rules: RuleRepository, minter: CredentialMinter) -> "TokenService":
        from dispenser.auth.oidc import verify_identity_token

        return cls(verifier=lambda raw: verify_identity_token(cfg, raw), rules=rules, minter=minter)

    def generate_token(self, req: TokenRequest) -> TokenResponse:
        repo = parse_repository(req.repository)
        requested = parse_requested_permissions(req.permissions)
        if not req.token.strip():
            raise InvalidRequest("request has no OIDC token", external_message="missing OIDC token")

        claims = self._verify(req.token)

        if claims.repository_owner.lower() != repo.owner.lower():
            raise NotAuthorized(
                f"token owner '{claims.repository_owner}' doesn't own target repository '{repo}' (sub='{claims.sub}')"
            )

        try:
            rules = self._rules.get_rules_for_repo(repo)
        except DispenserError:
            raise
        except Exception as e:
            raise RuleLookupError(f"couldn't load rules for {repo}", wrapped=e) from e
        approved = authorize(rules, claims, requested)

        logger.info(
            "Authorized %s for %s (sub=%s, token_fp=%s)",
            grant_to_wire(approved),
            repo,
            claims.sub,
            token_fingerprint(req.token),
        )

        token = self._minter.mint_scoped_credential(repo, approved)
        return TokenResponse(token=token, repository=repo.full_name, permissions=approved)
