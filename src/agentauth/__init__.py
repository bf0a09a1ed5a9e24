"""agentauth - OAuth 2.1 authorization server for AI-agent tool access.

Grants agent clients scoped, time-limited access to a single workspace's
task-management tools. See ``agentauth.api.serve`` for the HTTP surface.
"""

__version__ = "0.1.0"
