"""In-memory marketplace used for offline runs and tests.

State can be loaded from and written back to a JSON snapshot::

    {
      "postings": [
        {
          "id": "HIT1",
          "url": "https://workersandbox.example.com/HIT1",
          "disposed": false,
          "assignments": [
            {
              "id": "A1",
              "status": "Submitted",
              "worker_id": "W1",
              "answers": [["widget[name]", "x"]]
            }
          ]
        }
      ]
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hitsync.marketplace.base import MarketplaceError, PostingNotFoundError
from hitsync.reconcile.models import AssignmentStatus


@dataclass(slots=True)
class MemoryAssignment:
    """Assignment whose approve/reject calls only change local state."""

    id: str
    status: str = AssignmentStatus.SUBMITTED.value
    worker_id: str | None = None
    answers: list[tuple[str, str]] = field(default_factory=list)
    feedback: str | None = None

    def approve(self, message: str) -> None:
        self._review(AssignmentStatus.APPROVED, message)

    def reject(self, message: str) -> None:
        self._review(AssignmentStatus.REJECTED, message)

    def _review(self, status: AssignmentStatus, message: str) -> None:
        if self.status != AssignmentStatus.SUBMITTED.value:
            raise MarketplaceError(
                f"Assignment {self.id} cannot move from {self.status} to {status.value}",
                code="invalid_assignment_state",
            )
        self.status = status.value
        self.feedback = message


@dataclass(slots=True)
class MemoryPosting:
    """Posting that records disposal instead of calling a remote service."""

    id: str
    url: str | None = None
    assignments: list[MemoryAssignment] = field(default_factory=list)
    disposed: bool = False

    def dispose(self) -> None:
        self.disposed = True


class InMemoryMarketplace:
    """Marketplace client holding postings in a dict."""

    def __init__(self, *, sandbox: bool = True) -> None:
        self.sandbox = sandbox
        self._postings: dict[str, MemoryPosting] = {}
        self.fetch_count = 0

    def add_posting(self, posting: MemoryPosting) -> MemoryPosting:
        self._postings[posting.id] = posting
        return posting

    def get_posting(self, posting_id: str) -> MemoryPosting:
        self.fetch_count += 1
        posting = self._postings.get(posting_id)
        if posting is None:
            raise PostingNotFoundError(f"Posting not found: {posting_id}")
        return posting

    def postings(self) -> list[MemoryPosting]:
        return list(self._postings.values())

    @classmethod
    def from_snapshot(cls, path: Path, *, sandbox: bool) -> InMemoryMarketplace:
        """Load postings and assignments from a JSON snapshot file."""

        payload = json.loads(path.read_text("utf-8"))
        if not isinstance(payload, dict) or not isinstance(payload.get("postings"), list):
            raise ValueError(f"Marketplace snapshot must contain a 'postings' list: {path}")

        marketplace = cls(sandbox=sandbox)
        for raw_posting in payload["postings"]:
            marketplace.add_posting(
                MemoryPosting(
                    id=str(raw_posting["id"]),
                    url=raw_posting.get("url"),
                    disposed=bool(raw_posting.get("disposed", False)),
                    assignments=[
                        _assignment_from_json(raw) for raw in raw_posting.get("assignments", [])
                    ],
                ),
            )
        return marketplace

    def write_snapshot(self, path: Path) -> None:
        """Write the current state back so reviews and disposals survive the run."""

        payload = {
            "postings": [
                {
                    "id": posting.id,
                    "url": posting.url,
                    "disposed": posting.disposed,
                    "assignments": [
                        {
                            "id": assignment.id,
                            "status": assignment.status,
                            "worker_id": assignment.worker_id,
                            "answers": [list(pair) for pair in assignment.answers],
                            "feedback": assignment.feedback,
                        }
                        for assignment in posting.assignments
                    ],
                }
                for posting in self._postings.values()
            ],
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2) + "\n", "utf-8")


def _assignment_from_json(raw: dict[str, Any]) -> MemoryAssignment:
    answers_raw = raw.get("answers", [])
    if isinstance(answers_raw, dict):
        answers = [(str(key), str(value)) for key, value in answers_raw.items()]
    else:
        answers = [(str(key), str(value)) for key, value in answers_raw]
    return MemoryAssignment(
        id=str(raw["id"]),
        status=str(raw.get("status", AssignmentStatus.SUBMITTED.value)),
        worker_id=raw.get("worker_id"),
        answers=answers,
        feedback=raw.get("feedback"),
    )
