"""Approve or reject imported assignments and count them toward completion."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from hitsync.marketplace.base import Assignment
from hitsync.reconcile.entities import ApprovalCriteria, BuiltResult
from hitsync.reconcile.models import HitTaskView
from hitsync.reconcile.repository import HitRepository

logger = logging.getLogger(__name__)

INVALID_DATA_MESSAGE = "Failed to enter proper data."
CRITERIA_REJECTED_MESSAGE = "Rejected criteria."
APPROVED_MESSAGE = ""


class Decision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(slots=True)
class ReviewOutcome:
    """What happened to one assignment and the task state after it."""

    decision: Decision
    counted: bool
    message: str
    task: HitTaskView


class ApprovalPolicy:
    """Decides approve vs. reject for an imported result.

    Invalid results are rejected and not counted. Results that carry their own
    approval criteria are approved or rejected by them and counted either way.
    Everything else is approved and counted.
    """

    def __init__(self, *, repository: HitRepository) -> None:
        self.repository = repository

    def review(
        self,
        *,
        task: HitTaskView,
        assignment: Assignment,
        result: BuiltResult,
    ) -> ReviewOutcome:
        if not result.is_valid:
            logger.info(
                "Rejecting assignment with invalid data (assignment_id=%s type=%s errors=%s).",
                assignment.id,
                result.entity_type.__name__,
                "; ".join(result.errors) or "-",
            )
            assignment.reject(INVALID_DATA_MESSAGE)
            return ReviewOutcome(
                decision=Decision.REJECTED,
                counted=False,
                message=INVALID_DATA_MESSAGE,
                task=task,
            )

        updated = self.repository.increment_completed_assignments(task_id=task.id)
        record = result.record
        if isinstance(record, ApprovalCriteria):
            logger.debug(
                "Evaluating approval criteria (assignment_id=%s type=%s).",
                assignment.id,
                result.entity_type.__name__,
            )
            if not record.should_approve():
                assignment.reject(CRITERIA_REJECTED_MESSAGE)
                return ReviewOutcome(
                    decision=Decision.REJECTED,
                    counted=True,
                    message=CRITERIA_REJECTED_MESSAGE,
                    task=updated,
                )

        assignment.approve(APPROVED_MESSAGE)
        return ReviewOutcome(
            decision=Decision.APPROVED,
            counted=True,
            message=APPROVED_MESSAGE,
            task=updated,
        )
