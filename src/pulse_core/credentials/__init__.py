"""Credential refresh collaborators."""
from .refresh import (
    CredentialRefresher,
    OAuthCredentialRefresher,
    oauth_clients_from_env,
)

__all__ = [
    "CredentialRefresher",
    "OAuthCredentialRefresher",
    "oauth_clients_from_env",
]
