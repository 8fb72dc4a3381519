"""Resilient outbound HTTP layer."""
from .client import ResilientFetchClient, classify_response

__all__ = ["ResilientFetchClient", "classify_response"]
