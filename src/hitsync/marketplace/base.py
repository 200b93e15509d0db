"""Marketplace client contracts consumed by the reconciler."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class MarketplaceError(Exception):
    """Base marketplace error."""

    message: str
    code: str = "marketplace_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class MarketplaceUnavailableError(MarketplaceError):
    """Transient failure talking to the marketplace."""

    code: str = "marketplace_unavailable"


@dataclass(slots=True)
class PostingNotFoundError(MarketplaceError):
    """The marketplace does not know the requested posting."""

    code: str = "posting_not_found"


class Assignment(Protocol):
    """One worker's submission against a posting."""

    id: str
    status: str
    worker_id: str | None

    @property
    def answers(self) -> Sequence[tuple[str, str]]:
        """Flat answer key/value pairs as submitted by the worker's form."""
        raise NotImplementedError

    def approve(self, message: str) -> None:
        raise NotImplementedError

    def reject(self, message: str) -> None:
        raise NotImplementedError


class Posting(Protocol):
    """A marketplace unit of work with assignable slots."""

    id: str
    url: str | None

    @property
    def assignments(self) -> Sequence[Assignment]:
        raise NotImplementedError

    def dispose(self) -> None:
        """Remove the posting from the marketplace."""
        raise NotImplementedError


class MarketplaceClient(Protocol):
    """Interface for marketplace access."""

    sandbox: bool

    def get_posting(self, posting_id: str) -> Posting:
        """Fetch one posting with its current assignments."""
        raise NotImplementedError
