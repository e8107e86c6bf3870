"""
Outbound API client with retry and GET response caching.
"""

from masterguard.core.api.cache import ResponseCache
from masterguard.core.api.client import APIClientError, ApiClient

__all__ = ["APIClientError", "ApiClient", "ResponseCache"]
