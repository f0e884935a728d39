"""
Content Provider API Layer.

This package handles all communication with the remote content provider.
"""

from .client import ContentProviderClient
from .rate_limiter import AdaptiveRateLimiter

__all__ = ["AdaptiveRateLimiter", "ContentProviderClient"]
