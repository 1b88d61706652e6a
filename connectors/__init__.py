"""
connectors — OAuth integration module for external services.

Provides a generic connector framework that handles:
  • OAuth2 authorize-URL generation (with optional CSRF state)
  • Callback handling (code → token exchange)
  • Per-user token storage, refresh and revocation (logout)

Each provider (Slack, Linear, GitHub) is a ProviderDescriptor plus a
small BaseConnector subclass for its token-response shape.
"""
