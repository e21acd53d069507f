"""GitHub remote client — environments, variables and secrets over the REST API."""

from envsync.github.client import GitHubEnvClient
from envsync.github.crypto import seal_secret

__all__ = ["GitHubEnvClient", "seal_secret"]
