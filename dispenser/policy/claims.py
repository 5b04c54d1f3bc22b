"""
GitHub Actions OIDC claim set and the field registry rules are validated against.

The registry is the single list of claim names a rule may reference. Lookups
fail closed: a rule that names a field outside the registry is a configuration
error, never a rule that silently never matches.
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Mapping

from dispenser.errors import UnknownField


@dataclass(frozen=True)
class GitHubClaims:
    """Verified claims from a GitHub Actions OIDC token (missing claims are empty strings)."""

    sub: str = ""
    aud: str = ""
    iss: str = ""
    ref: str = ""
    ref_type: str = ""
    ref_protected: str = ""
    sha: str = ""
    repository: str = ""
    repository_id: str = ""
    repository_owner: str = ""
    repository_owner_id: str = ""
    repository_visibility: str = ""
    run_id: str = ""
    run_number: str = ""
    run_attempt: str = ""
    runner_environment: str = ""
    actor: str = ""
    actor_id: str = ""
    workflow: str = ""
    workflow_ref: str = ""
    workflow_sha: str = ""
    head_ref: str = ""
    base_ref: str = ""
    event_name: str = ""
    environment: str = ""
    job_workflow_ref: str = ""
    job_workflow_sha: str = ""
    enterprise: str = ""

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "GitHubClaims":
        """Build a claim set from decoded JWT claims; undeclared claims are dropped."""
        values = {name: _claim_str(raw.get(name)) for name in CLAIM_FIELDS if name in raw}
        return cls(**values)


def _claim_str(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (list, tuple)):
        return ",".join(_claim_str(x) for x in v)
    return str(v)


def _extractor(name: str) -> Callable[[GitHubClaims], str]:
    return lambda claims: getattr(claims, name)


# Built once at import; the only way rules reach into a claim set.
CLAIM_FIELDS: Dict[str, Callable[[GitHubClaims], str]] = {f.name: _extractor(f.name) for f in fields(GitHubClaims)}


def get_value(claims: GitHubClaims, field: str) -> str:
    extract = CLAIM_FIELDS.get(str(field))
    if extract is None:
        raise UnknownField(str(field))
    return extract(claims)


class ClaimField(str):
    """A claim field name that is known to exist in the registry."""

    __slots__ = ()

    @classmethod
    def parse(cls, name: str) -> "ClaimField":
        n = (name or "").strip() if isinstance(name, str) else ""
        if n not in CLAIM_FIELDS:
            raise UnknownField(str(name))
        return cls(n)
