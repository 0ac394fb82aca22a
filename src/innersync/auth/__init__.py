"""Authentication helpers."""

from .token_cache import TokenCache

__all__ = ["TokenCache"]
