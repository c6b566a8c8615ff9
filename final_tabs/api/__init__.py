"""
API clients for external services.

ESPN provides scoreboards and box scores; X receives the receipt posts.
"""

from .espn_client import ESPNClient, ProviderError
from .x_client import PostingClient, PostingError, TweepyPostingClient

__all__ = [
    "ESPNClient",
    "ProviderError",
    "PostingClient",
    "PostingError",
    "TweepyPostingClient",
]
