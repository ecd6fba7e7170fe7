"""Peer review assignment for a whole challenge, one match setting at a time."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from review_engine.core.config import MIN_EXPECTED_REVIEWS
from review_engine.core.errors import (
    ConcurrencyPendingError,
    NotFoundError,
    StateError,
    ValidationError,
)
from review_engine.models import (
    REVIEWABLE_STATUSES,
    ChallengeStatus,
    PeerReviewAssignment,
    Submission,
)

from .planner import AssignmentFailure, ReviewTarget, plan_assignments

if TYPE_CHECKING:
    from review_engine.services.finalization import FinalizationCoordinator
    from review_engine.services.storage import ReviewStore

logger = structlog.get_logger()

INSUFFICIENT_TEACHER_MESSAGE = (
    "Peer review cannot be assigned because there are not enough valid submissions."
)
INSUFFICIENT_STUDENT_MESSAGE = (
    "Peer review is not available for this match because there are not enough valid submissions."
)
GENERATION_FAILED_MESSAGE = "Peer review assignments could not be generated for this match."
SAVE_FAILED_MESSAGE = "Peer review assignments could not be saved for this match."
ALREADY_ASSIGNED_MESSAGE = (
    "Peer review assignments already exist for this match. Re-run with overwrite to regenerate."
)


class PlanningStatus(StrEnum):
    OK = "ok"
    INVALID_EXPECTED_REVIEWS = "invalid_expected_reviews"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    INVALID_STATUS = "invalid_status"
    FINALIZATION_PENDING = "finalization_pending"
    NO_MATCHES = "no_matches"


class GroupStatus(StrEnum):
    ASSIGNED = "assigned"
    INSUFFICIENT_VALID_SUBMISSIONS = "insufficient_valid_submissions"
    ASSIGNMENT_FAILED = "assignment_failed"
    ALREADY_ASSIGNED = "already_assigned"
    NO_REVIEWERS = "no_reviewers"


@dataclass
class GroupResult:
    """Outcome for the matches sharing one match setting."""

    match_setting_id: str
    status: GroupStatus
    valid_submissions_count: int
    reviewer_count: int
    reviews_per_reviewer: int | None = None
    base_reviews_per_submission: int | None = None
    extra_reviews: int | None = None
    total_assignments: int | None = None
    teacher_message: str | None = None
    student_message: str | None = None


@dataclass
class PlanningReport:
    status: PlanningStatus
    expected_reviews_per_submission: int | None = None
    challenge_status: str | None = None
    in_flight: int = 0
    results: list[GroupResult] = field(default_factory=list)

    def raise_for_status(self, challenge_id: str = "") -> None:
        """Raise the matching ReviewEngineError for a non-ok status."""
        if self.status == PlanningStatus.INVALID_EXPECTED_REVIEWS:
            raise ValidationError(
                "expected_reviews_per_submission",
                f"Must be an integer of at least {MIN_EXPECTED_REVIEWS}.",
            )
        if self.status == PlanningStatus.CHALLENGE_NOT_FOUND:
            raise NotFoundError("Challenge", challenge_id)
        if self.status == PlanningStatus.INVALID_STATUS:
            raise StateError(
                f"Challenge '{challenge_id}' is in status '{self.challenge_status}'",
                "Peer reviews can only be assigned after the coding phase has ended.",
            )
        if self.status == PlanningStatus.FINALIZATION_PENDING:
            raise ConcurrencyPendingError(challenge_id, self.in_flight)


@dataclass
class _Group:
    match_setting_id: str
    reviewer_ids: list[str] = field(default_factory=list)
    submissions: list[Submission] = field(default_factory=list)


def _coerce_expected_reviews(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        expected = value
    elif isinstance(value, float) and value.is_integer():
        expected = int(value)
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        expected = int(value.strip())
    else:
        return None
    return expected if expected >= MIN_EXPECTED_REVIEWS else None


def _reduced_message(base: int) -> str:
    return (
        f"Expected reviews per submission reduced to {base} due to insufficient valid submissions."
    )


class AssignmentService:
    """Create peer review assignments for every match setting of a challenge."""

    def __init__(
        self,
        store: ReviewStore,
        coordinator: FinalizationCoordinator,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._rng = rng or random.Random()  # noqa: S311

    async def plan_challenge(
        self,
        challenge_id: str,
        expected_reviews_per_submission: object,
        overwrite: bool = True,
    ) -> PlanningReport:
        """Plan and persist assignments for a challenge whose coding phase ended.

        Args:
            challenge_id: Challenge to assign.
            expected_reviews_per_submission: Desired reviews per submission (>= 2).
            overwrite: Replace existing assignments of a group. When False a
                group that already has assignments is left as is.

        Returns:
            PlanningReport with one GroupResult per match setting.
        """
        expected = _coerce_expected_reviews(expected_reviews_per_submission)
        if expected is None:
            return PlanningReport(PlanningStatus.INVALID_EXPECTED_REVIEWS)

        challenge = await self._store.challenges.get(challenge_id)
        if challenge is None:
            return PlanningReport(PlanningStatus.CHALLENGE_NOT_FOUND)
        if challenge.status != ChallengeStatus.ENDED_CODING:
            return PlanningReport(PlanningStatus.INVALID_STATUS, challenge_status=challenge.status)

        in_flight = self._coordinator.in_flight_count(challenge_id)
        if in_flight > 0:
            return PlanningReport(PlanningStatus.FINALIZATION_PENDING, in_flight=in_flight)

        if challenge.finalization_completed_at is None:
            finalization = await self._coordinator.maybe_complete_finalization(challenge_id)
            if not finalization.is_completed:
                return PlanningReport(
                    PlanningStatus.FINALIZATION_PENDING, in_flight=finalization.in_flight
                )

        matches = await self._store.challenges.get_matches(challenge_id)
        if not matches:
            return PlanningReport(PlanningStatus.NO_MATCHES)

        if challenge.expected_reviews_per_submission != expected:
            await self._store.challenges.set_expected_reviews(challenge_id, expected)

        groups = await self._build_groups(challenge_id, matches)
        results = [await self._plan_group(group, expected, overwrite) for group in groups]

        logger.info(
            "assignments_planned",
            challenge_id=challenge_id,
            expected_reviews=expected,
            groups=len(results),
            assigned=sum(1 for r in results if r.status == GroupStatus.ASSIGNED),
        )
        return PlanningReport(
            PlanningStatus.OK,
            expected_reviews_per_submission=expected,
            challenge_status=challenge.status,
            results=results,
        )

    async def _build_groups(self, challenge_id: str, matches) -> list[_Group]:
        groups: dict[str, _Group] = {}
        setting_by_match: dict[str, str] = {}
        for match in matches:
            group = groups.setdefault(match.match_setting_id, _Group(match.match_setting_id))
            if match.participant_id not in group.reviewer_ids:
                group.reviewer_ids.append(match.participant_id)
            setting_by_match[match.id] = match.match_setting_id

        finals = await self._store.submissions.get_final_submissions(challenge_id)
        for submission in finals:
            if submission.status not in REVIEWABLE_STATUSES:
                continue
            setting_id = setting_by_match.get(submission.match_id)
            if setting_id is not None:
                groups[setting_id].submissions.append(submission)
        return list(groups.values())

    async def _plan_group(self, group: _Group, expected: int, overwrite: bool) -> GroupResult:
        valid_count = len(group.submissions)
        reviewer_count = len(group.reviewer_ids)
        log = logger.bind(match_setting_id=group.match_setting_id)

        if valid_count <= 1:
            log.info("assignment_skipped", reason="insufficient_valid_submissions")
            return GroupResult(
                group.match_setting_id,
                GroupStatus.INSUFFICIENT_VALID_SUBMISSIONS,
                valid_count,
                reviewer_count,
                teacher_message=INSUFFICIENT_TEACHER_MESSAGE,
                student_message=INSUFFICIENT_STUDENT_MESSAGE,
            )

        submission_ids = [s.id for s in group.submissions]
        if not overwrite and await self._store.reviews.count_assignments(submission_ids) > 0:
            return GroupResult(
                group.match_setting_id,
                GroupStatus.ALREADY_ASSIGNED,
                valid_count,
                reviewer_count,
                teacher_message=ALREADY_ASSIGNED_MESSAGE,
            )

        targets = [ReviewTarget(s.id, s.participant_id) for s in group.submissions]
        # Max flow is CPU bound; keep it off the event loop.
        plan = await asyncio.to_thread(
            plan_assignments, group.reviewer_ids, targets, expected, self._rng
        )

        if isinstance(plan, AssignmentFailure):
            log.warning("assignment_generation_failed", reason=plan.reason)
            return GroupResult(
                group.match_setting_id,
                GroupStatus(plan.reason.value),
                valid_count,
                reviewer_count,
                teacher_message=GENERATION_FAILED_MESSAGE,
            )

        rows = [
            PeerReviewAssignment(
                reviewer_id=a.reviewer_id, submission_id=a.submission_id, is_extra=a.is_extra
            )
            for a in plan.assignments
        ]
        try:
            await self._store.reviews.replace_assignments(submission_ids, rows)
        except Exception as e:
            log.error("assignment_save_failed", error=str(e))
            return GroupResult(
                group.match_setting_id,
                GroupStatus.ASSIGNMENT_FAILED,
                valid_count,
                reviewer_count,
                teacher_message=SAVE_FAILED_MESSAGE,
            )

        reduced = plan.base_reviews_per_submission < expected
        message = _reduced_message(plan.base_reviews_per_submission) if reduced else None
        log.info(
            "group_assigned",
            assignments=len(rows),
            reviews_per_reviewer=plan.reviews_per_reviewer,
            base=plan.base_reviews_per_submission,
        )
        return GroupResult(
            group.match_setting_id,
            GroupStatus.ASSIGNED,
            valid_count,
            reviewer_count,
            reviews_per_reviewer=plan.reviews_per_reviewer,
            base_reviews_per_submission=plan.base_reviews_per_submission,
            extra_reviews=plan.extra_reviews,
            total_assignments=plan.total_assigned,
            teacher_message=message,
            student_message=message,
        )
