from __future__ import annotations

import json
from pathlib import Path

import pytest

import main

RULES = """
my-org/app:
  - name: main-branch
    claims:
      ref: refs/heads/main
    permissions:
      contents: write
"""


def _files(tmp_path: Path, claims: dict) -> tuple[str, str]:
    rules = tmp_path / "rules.yaml"
    rules.write_text(RULES, encoding="utf-8")
    claims_file = tmp_path / "claims.json"
    claims_file.write_text(json.dumps(claims), encoding="utf-8")
    return str(rules), str(claims_file)


def test_parse_permission_args() -> None:
    assert main.parse_permission_args(["contents=write", " issues = read "]) == {"contents": "write", "issues": "read"}
    assert main.parse_permission_args([]) == {}
    for bad in ("contents", "=read", "contents="):
        with pytest.raises(ValueError):
            main.parse_permission_args([bad])


def test_check_rules_valid(tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    rules, _ = _files(tmp_path, {})
    assert main.check_rules(rules) == 0
    out = capsys.readouterr().out
    assert "my-org/app: 1 rule(s)" in out
    assert "main-branch" in out


def test_check_rules_invalid(tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    bad = tmp_path / "bad.yaml"
    bad.write_text("my-org/app:\n  - claims:\n      sub: x\n    permissions:\n      contents: owner\n", encoding="utf-8")
    assert main.check_rules(str(bad)) == 1
    assert "Invalid rules file" in capsys.readouterr().err


def test_evaluate_approves_and_denies(tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    rules, claims = _files(tmp_path, {"ref": "refs/heads/main", "repository_owner": "my-org"})
    assert main.evaluate(rules, "my-org/app", claims, {"contents": "write"}) == 0
    assert "Approved" in capsys.readouterr().out

    assert main.evaluate(rules, "my-org/app", claims, {"contents": "admin"}) == 1
    assert "PermissionCeilingExceeded" in capsys.readouterr().out
