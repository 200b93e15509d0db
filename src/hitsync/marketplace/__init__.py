"""Marketplace client contracts and implementations."""

from hitsync.marketplace.base import (
    Assignment,
    MarketplaceClient,
    MarketplaceError,
    MarketplaceUnavailableError,
    Posting,
    PostingNotFoundError,
)
from hitsync.marketplace.memory import InMemoryMarketplace, MemoryAssignment, MemoryPosting

__all__ = [
    "Assignment",
    "InMemoryMarketplace",
    "MarketplaceClient",
    "MarketplaceError",
    "MarketplaceUnavailableError",
    "MemoryAssignment",
    "MemoryPosting",
    "Posting",
    "PostingNotFoundError",
]
