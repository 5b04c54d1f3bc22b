from __future__ import annotations

from typing import List, Mapping, Tuple

import pytest

from dispenser.errors import (
    InvalidRequest,
    MintError,
    NoPermissionsRequested,
    NotAuthorized,
    PermissionCeilingExceeded,
    RuleLookupError,
    VerificationError,
)
from dispenser.policy.claims import GitHubClaims
from dispenser.policy.permissions import AccessLevel
from dispenser.policy.rules import AuthorizationRule
from dispenser.rules.repository import InMemoryRuleRepository, Repository
from dispenser.service import TokenRequest, TokenService, parse_requested_permissions

CLAIMS = GitHubClaims(
    sub="repo:my-org/app:environment:prod",
    repository="my-org/app",
    repository_owner="my-org",
    environment="prod",
)


class _FakeMinter:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: List[Tuple[Repository, dict]] = []
        self._fail = fail

    def mint_scoped_credential(self, repo: Repository, approved: Mapping[str, AccessLevel]) -> str:
        self.calls.append((repo, dict(approved)))
        if self._fail:
            raise MintError("installation not found")
        return "ghs_minted"


def _verifier(claims: GitHubClaims = CLAIMS):  # type: ignore[no-untyped-def]
    seen: List[str] = []

    def verify(raw: str) -> GitHubClaims:
        seen.append(raw)
        if raw != "good-token":
            raise VerificationError("bad signature")
        return claims

    verify.seen = seen  # type: ignore[attr-defined]
    return verify


def _rules() -> InMemoryRuleRepository:
    return InMemoryRuleRepository(
        {
            "my-org/app": [
                AuthorizationRule.build({"sub": "repo:my-org/*"}, {"contents": "read", "issues": "write"}),
                AuthorizationRule.build({"environment": "prod"}, {"contents": "write"}),
            ],
            "my-org/tools": [AuthorizationRule.build({"sub": "repo:my-org/app:*"}, {"contents": "read"})],
        }
    )


def _service(minter: _FakeMinter, verifier=None) -> TokenService:  # type: ignore[no-untyped-def]
    return TokenService(verifier=verifier or _verifier(), rules=_rules(), minter=minter)


def test_generate_token_mints_exactly_the_request() -> None:
    minter = _FakeMinter()
    res = _service(minter).generate_token(
        TokenRequest(repository="my-org/app", token="good-token", permissions={"contents": "write"})
    )

    assert res.token == "ghs_minted"
    assert res.repository == "my-org/app"
    assert res.to_json_dict() == {
        "ok": True,
        "token": "ghs_minted",
        "repository": "my-org/app",
        "permissions": {"contents": "write"},
    }
    # issues:write is allowed but was not asked for, so it is not minted.
    assert minter.calls == [(Repository("my-org", "app"), {"contents": AccessLevel.WRITE})]


def test_cross_repository_in_same_org() -> None:
    minter = _FakeMinter()
    res = _service(minter).generate_token(
        TokenRequest(repository="my-org/tools", token="good-token", permissions={"contents": "read"})
    )
    assert res.repository == "my-org/tools"
    assert minter.calls[0][0] == Repository("my-org", "tools")


def test_owner_mismatch_is_not_authorized() -> None:
    minter = _FakeMinter()
    with pytest.raises(NotAuthorized):
        _service(minter).generate_token(
            TokenRequest(repository="other-org/app", token="good-token", permissions={"contents": "read"})
        )
    assert minter.calls == []


def test_owner_check_ignores_case() -> None:
    minter = _FakeMinter()
    _service(minter).generate_token(
        TokenRequest(repository="My-Org/app", token="good-token", permissions={"contents": "read"})
    )
    assert len(minter.calls) == 1


def test_denied_request_never_mints() -> None:
    minter = _FakeMinter()
    svc = _service(minter)
    with pytest.raises(PermissionCeilingExceeded):
        svc.generate_token(TokenRequest(repository="my-org/app", token="good-token", permissions={"contents": "admin"}))
    with pytest.raises(NotAuthorized):
        svc.generate_token(TokenRequest(repository="my-org/unknown", token="good-token", permissions={"contents": "read"}))
    with pytest.raises(NoPermissionsRequested):
        svc.generate_token(TokenRequest(repository="my-org/app", token="good-token", permissions={}))
    assert minter.calls == []


def test_bad_input_is_rejected_before_verification() -> None:
    verifier = _verifier()
    svc = _service(_FakeMinter(), verifier)
    with pytest.raises(InvalidRequest):
        svc.generate_token(TokenRequest(repository="not-a-repo", token="good-token", permissions={"contents": "read"}))
    with pytest.raises(InvalidRequest):
        svc.generate_token(TokenRequest(repository="my-org/app", token="good-token", permissions={"contents": "owner"}))
    with pytest.raises(InvalidRequest):
        svc.generate_token(TokenRequest(repository="my-org/app", token="  ", permissions={"contents": "read"}))
    assert verifier.seen == []


def test_rule_backend_failure_is_rule_lookup_error() -> None:
    class _BrokenRules:
        def get_rules_for_repo(self, repo: Repository):  # type: ignore[no-untyped-def]
            raise OSError("connection reset")

    minter = _FakeMinter()
    svc = TokenService(verifier=_verifier(), rules=_BrokenRules(), minter=minter)
    with pytest.raises(RuleLookupError) as ei:
        svc.generate_token(TokenRequest(repository="my-org/app", token="good-token", permissions={"contents": "read"}))
    assert ei.value.status_code == 500
    assert minter.calls == []


def test_verification_failure_propagates() -> None:
    minter = _FakeMinter()
    with pytest.raises(VerificationError):
        _service(minter).generate_token(
            TokenRequest(repository="my-org/app", token="forged", permissions={"contents": "read"})
        )
    assert minter.calls == []


def test_mint_failure_propagates() -> None:
    with pytest.raises(MintError):
        _service(_FakeMinter(fail=True)).generate_token(
            TokenRequest(repository="my-org/app", token="good-token", permissions={"contents": "read"})
        )


def test_token_not_in_request_repr() -> None:
    req = TokenRequest(repository="my-org/app", token="secret-oidc-token", permissions={"contents": "read"})
    assert "secret-oidc-token" not in repr(req)


def test_parse_requested_permissions() -> None:
    assert parse_requested_permissions({"contents": "read"}) == {"contents": AccessLevel.READ}
    assert parse_requested_permissions({}) == {}
    with pytest.raises(InvalidRequest) as ei:
        parse_requested_permissions({"contents": "Write"})
    assert ei.value.status_code == 400
