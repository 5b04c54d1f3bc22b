"""
Identity-token verification for GitHub Actions callers.

Design goals:
- Trust only the configured OIDC issuer and its published signing keys.
- Never log raw tokens (fingerprints only).
"""
