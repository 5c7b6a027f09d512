"""agentgate — authentication gateway for the agent dashboard.

Dual-mode auth: OAuth2 Authorization Code flow against an external
SSO provider, plus local username/password accounts. Both paths end
in the same signed session token, checked by one set of FastAPI
dependencies in front of the agent and task APIs.
"""

__version__ = "0.1.0"
