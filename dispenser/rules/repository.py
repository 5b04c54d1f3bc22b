"""
Rule repositories: where a target repository's authorization rules come from.

File format (YAML), keyed by `owner/name`:

    my-org/my-repo:
      - claims:
          sub: "repo:my-org/my-repo:*"
          environment: [staging, prod]
        permissions:
          contents: write

`fields:` is accepted as an alias of `claims:`, and the whole mapping may be
nested under a top-level `repo_rules:` key.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import yaml

from dispenser.errors import ConfigurationError, InvalidRequest
from dispenser.policy.rules import AuthorizationRule, describe_rule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Repository:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.full_name


def parse_repository(org_and_repo: str) -> Repository:
    raw = (org_and_repo or "").strip()
    parts = raw.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidRequest(
            f"invalid repository '{raw}'",
            external_message=f"invalid format for repository '{raw}'; must use 'org/name' format",
        )
    return Repository(owner=parts[0], name=parts[1])


class RuleRepository(Protocol):
    """Source of authorization rules per target repository (read-only)."""

    def get_rules_for_repo(self, repo: Repository) -> List[AuthorizationRule]:
        """
        Return the rules attached to `repo`.

        An unknown repository yields an empty list (deny by default).
        Backend failures raise RuleLookupError.
        """
        ...


class InMemoryRuleRepository:
    """Rules held in a dict; used for tests and as the empty deny-all default."""

    def __init__(self, repo_rules: Optional[Mapping[str, Sequence[AuthorizationRule]]] = None) -> None:
        rules: Dict[str, tuple] = {}
        for k, v in (repo_rules or {}).items():
            key = k.lower()
            if key in rules:
                raise ConfigurationError(f"duplicate repository '{k}' (names are case-insensitive)")
            rules[key] = tuple(v)
        self._rules: Mapping[str, tuple] = MappingProxyType(rules)

    @property
    def repositories(self) -> List[str]:
        return sorted(self._rules.keys())

    def get_rules_for_repo(self, repo: Repository) -> List[AuthorizationRule]:
        # GitHub owner/repo names are case-insensitive.
        return list(self._rules.get(repo.full_name.lower(), ()))


class FileRuleRepository(InMemoryRuleRepository):
    """Rules loaded once from a YAML file; any invalid rule fails the whole load."""

    def __init__(self, repo_rules: Mapping[str, Sequence[AuthorizationRule]], *, path: Optional[str] = None) -> None:
        super().__init__(repo_rules)
        self.path = path

    @classmethod
    def from_file(cls, path: str) -> "FileRuleRepository":
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"couldn't read rules file '{path}'", wrapped=e) from e
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"couldn't parse rules file '{path}'", wrapped=e) from e

        repo_rules = parse_rules_config(raw, source=path)
        total = sum(len(v) for v in repo_rules.values())
        logger.info("Loaded %d rule(s) for %d repo(s) from %s", total, len(repo_rules), path)
        return cls(repo_rules, path=path)


def parse_rules_config(raw: Any, *, source: str = "<config>") -> Dict[str, List[AuthorizationRule]]:
    """Validate and build rules from decoded YAML/JSON config."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{source}: rules config must be a mapping of 'owner/name' -> list of rules")
    if set(raw.keys()) == {"repo_rules"}:
        return parse_rules_config(raw["repo_rules"], source=source)

    out: Dict[str, List[AuthorizationRule]] = {}
    seen: Dict[str, str] = {}
    for repo_name, rules in raw.items():
        try:
            repo = parse_repository(str(repo_name))
        except InvalidRequest as e:
            raise ConfigurationError(f"{source}: {e.external_message}") from e
        previous = seen.get(repo.full_name.lower())
        if previous is not None:
            raise ConfigurationError(
                f"{source}: duplicate repository '{repo}' (also listed as '{previous}'; names are case-insensitive)"
            )
        seen[repo.full_name.lower()] = repo.full_name
        if isinstance(rules, dict):
            rules = [rules]
        if not isinstance(rules, list):
            raise ConfigurationError(f"{source}: rules for '{repo}' must be a list")

        built: List[AuthorizationRule] = []
        for i, rule in enumerate(rules):
            built.append(_parse_rule(rule, where=f"{source}: {repo}[{i}]"))
        out[repo.full_name] = built
    return out


def _parse_rule(raw: Any, *, where: str) -> AuthorizationRule:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}: rule must be a mapping with 'claims' and 'permissions'")
    unknown_keys = set(raw.keys()) - {"claims", "fields", "permissions", "name"}
    if unknown_keys:
        raise ConfigurationError(f"{where}: unknown rule key(s): {', '.join(sorted(map(str, unknown_keys)))}")

    fields = raw.get("claims")
    if fields is None:
        fields = raw.get("fields")
    if fields is None:
        fields = {}
    if not isinstance(fields, dict):
        raise ConfigurationError(f"{where}: 'claims' must be a mapping of claim name -> pattern(s)")
    for name, value in fields.items():
        if not (isinstance(value, str) or (isinstance(value, list) and all(isinstance(v, str) for v in value))):
            raise ConfigurationError(f"{where}: claim '{name}' must be a string or a list of strings")

    try:
        rule = AuthorizationRule.build(fields, raw.get("permissions") or {}, name=str(raw.get("name") or ""))
    except ConfigurationError as e:
        raise ConfigurationError(f"{where}: {e}") from e

    if rule.is_unconstrained:
        logger.warning("%s: rule has no claim constraints and matches every caller", where)
    if not rule.permissions:
        logger.warning("%s: rule grants no permissions (%s)", where, describe_rule(rule))
    return rule
