from __future__ import annotations

from dispenser.rules.repository import (
    FileRuleRepository,
    InMemoryRuleRepository,
    Repository,
    RuleRepository,
    parse_repository,
    parse_rules_config,
)

__all__ = [
    "FileRuleRepository",
    "InMemoryRuleRepository",
    "Repository",
    "RuleRepository",
    "parse_repository",
    "parse_rules_config",
]
