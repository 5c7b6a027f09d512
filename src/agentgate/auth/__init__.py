"""Authentication and authorization.

Learn: Two ways in, one way to check:
1. Operators → username/password → session token (origin "local")
2. SSO users → OAuth2 Authorization Code flow → session token (origin "federated")

Both are the same signed JWT, verified by the same dependencies, and
resolve to a CurrentIdentity for scope checks.
"""
