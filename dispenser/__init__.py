"""
Short-lived GitHub token dispenser for GitHub Actions workflows.

A workflow presents its OIDC token plus the permissions it needs; if the
repository's policy allows it, we mint a scoped GitHub App installation token.
"""
