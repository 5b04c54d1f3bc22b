#!/usr/bin/env python3
"""
GitHub Actions token dispenser.
Exchanges GitHub Actions OIDC tokens for repository-scoped GitHub App installation tokens.
"""

import argparse
import logging
import sys
from typing import Dict, List

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep dispenser imports lazy (inside functions) so `--help` stays fast.
#


def parse_permission_args(values: List[str]) -> Dict[str, str]:
    """Parse repeated `--permission contents=write` flags."""
    out: Dict[str, str] = {}
    for v in values or []:
        name, sep, level = (v or "").partition("=")
        if not sep or not name.strip() or not level.strip():
            raise ValueError(f"invalid --permission '{v}'; expected NAME=LEVEL (e.g. contents=read)")
        out[name.strip()] = level.strip()
    return out


def check_rules(path: str) -> int:
    """Validate a rules file and print a summary. Returns a process exit code."""
    from dispenser.errors import ConfigurationError
    from dispenser.policy.permissions import grant_to_wire
    from dispenser.policy.rules import describe_rule
    from dispenser.rules.repository import FileRuleRepository, parse_repository

    try:
        repo = FileRuleRepository.from_file(path)
    except ConfigurationError as e:
        print(f"❌ Invalid rules file: {e}", file=sys.stderr)
        return 1

    for name in repo.repositories:
        rules = repo.get_rules_for_repo(parse_repository(name))
        print(f"{name}: {len(rules)} rule(s)")
        for i, rule in enumerate(rules):
            label = f" {rule.name}" if rule.name else ""
            print(f"  [{i}]{label} {describe_rule(rule)} -> {grant_to_wire(rule.permissions)}")
    print("✅ Rules file is valid")
    return 0


def evaluate(path: str, repository: str, claims_file: str, permissions: Dict[str, str]) -> int:
    """
    Dry-run a decision against a rules file with claims from a JSON file (no token, no minting).
    """
    import json

    from dispenser.errors import DispenserError
    from dispenser.policy.claims import GitHubClaims
    from dispenser.policy.decision import allowed_permissions, authorize
    from dispenser.policy.permissions import grant_to_wire
    from dispenser.rules.repository import FileRuleRepository, parse_repository
    from dispenser.service import parse_requested_permissions

    with open(claims_file, "r", encoding="utf-8") as f:
        claims = GitHubClaims.from_mapping(json.load(f))

    try:
        repo = parse_repository(repository)
        rules = FileRuleRepository.from_file(path).get_rules_for_repo(repo)
        print(f"Ceiling for {repo}: {grant_to_wire(allowed_permissions(rules, claims))}")
        approved = authorize(rules, claims, parse_requested_permissions(permissions))
    except DispenserError as e:
        print(f"❌ Denied ({type(e).__name__}): {e}")
        return 1

    print(f"✅ Approved: {grant_to_wire(approved)}")
    return 0


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Exchange GitHub Actions OIDC tokens for scoped GitHub App installation tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the HTTP server
  APP_ID=123 PRIVATE_KEY_FILE=app.pem python main.py --serve --rules-file rules.yaml

  # Validate a rules file
  python main.py --check-rules rules.yaml

  # Dry-run a decision
  python main.py --evaluate --rules-file rules.yaml --repository org/repo \\
      --claims-file claims.json --permission contents=write
        """,
    )

    parser.add_argument("--serve", action="store_true", help="Run the HTTP token server")
    parser.add_argument("--check-rules", metavar="FILE", help="Validate a rules file and exit")
    parser.add_argument(
        "--evaluate", action="store_true", help="Dry-run an authorization decision (needs --rules-file, --claims-file)"
    )
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=9999, help="Server listen port (default: 9999)")
    parser.add_argument("--app-id", help="GitHub App ID (env: APP_ID)")
    parser.add_argument("--private-key-file", help="GitHub App private key PEM file (env: PRIVATE_KEY_FILE)")
    parser.add_argument("--rules-file", help="YAML rules file (env: RULES_FILE)")
    parser.add_argument("--oidc-audience", help="Expected OIDC token audience (env: OIDC_AUDIENCE)")
    parser.add_argument("--repository", help="Target repository in org/name format (for --evaluate)")
    parser.add_argument("--claims-file", help="JSON file with token claims (for --evaluate)")
    parser.add_argument(
        "--permission",
        action="append",
        default=[],
        metavar="NAME=LEVEL",
        help="Requested permission, repeatable (for --evaluate)",
    )

    args = parser.parse_args()

    if args.check_rules:
        sys.exit(check_rules(args.check_rules))

    if args.evaluate:
        if not (args.rules_file and args.repository and args.claims_file):
            parser.error("--evaluate requires --rules-file, --repository and --claims-file")
        try:
            permissions = parse_permission_args(args.permission)
        except ValueError as e:
            parser.error(str(e))
        sys.exit(evaluate(args.rules_file, args.repository, args.claims_file, permissions))

    if args.serve:
        from dispenser.api.server import build_token_service, run, set_token_service
        from dispenser.config import load_config
        from dispenser.errors import ConfigurationError

        cfg = load_config().with_overrides(
            app_id=args.app_id,
            private_key_file=args.private_key_file,
            rules_file=args.rules_file,
            oidc_audience=args.oidc_audience,
        )
        try:
            set_token_service(build_token_service(cfg))
        except ConfigurationError as e:
            print(f"❌ Refusing to start: {e}", file=sys.stderr)
            sys.exit(1)

        run(host=args.host, port=args.port)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
