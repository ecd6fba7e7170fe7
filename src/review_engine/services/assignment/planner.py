"""Review quota computation and max-flow assignment of reviewers to submissions."""

from __future__ import annotations

import math
import random
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from review_engine.core.errors import InfeasibleAssignmentError

from .flow import FlowGraph


class PlanFailure(StrEnum):
    NO_REVIEWERS = "no_reviewers"
    INSUFFICIENT_VALID_SUBMISSIONS = "insufficient_valid_submissions"
    ASSIGNMENT_FAILED = "assignment_failed"


@dataclass(frozen=True)
class ReviewTarget:
    """A submission eligible for review and the participant who wrote it."""

    id: str
    author_id: str


@dataclass(frozen=True)
class PlannedAssignment:
    submission_id: str
    reviewer_id: str
    is_extra: bool = False


@dataclass
class AssignmentPlan:
    """A saturating assignment plus the numbers it was built from.

    Attributes:
        assignments: One entry per (reviewer, submission) pair.
        reviews_per_reviewer: Submissions each reviewer must review.
        base_reviews_per_submission: Reviews every submission receives at least.
        extra_reviews: Submissions receiving one review above the base.
        total_assigned: ``reviews_per_reviewer * len(reviewers)``.
    """

    assignments: list[PlannedAssignment]
    reviews_per_reviewer: int
    base_reviews_per_submission: int
    extra_reviews: int
    total_assigned: int
    target_counts: dict[str, int] = field(default_factory=dict)


@dataclass
class AssignmentFailure:
    reason: PlanFailure

    def to_error(self) -> InfeasibleAssignmentError:
        return InfeasibleAssignmentError(
            f"Peer review assignments could not be generated ({self.reason})",
            "Check that the group has at least two valid submissions and enough reviewers.",
        )


def plan_assignments(
    reviewers: Sequence[str],
    submissions: Sequence[ReviewTarget],
    expected_reviews_per_submission: int,
    rng: random.Random | None = None,
) -> AssignmentPlan | AssignmentFailure:
    """Assign reviewers to submissions so that every reviewer has the same load.

    Quotas:

    1. ``total_desired = len(submissions) * k``
    2. ``reviews_per_reviewer = min(ceil(total_desired / len(reviewers)),
       len(submissions) - 1)`` since nobody reviews their own submission
    3. ``total_assigned = reviews_per_reviewer * len(reviewers)``
    4. every submission gets ``base`` reviews (``k`` when capacity allows,
       otherwise ``total_assigned // len(submissions)``) and the leftover
       ``total_assigned - base * len(submissions)`` units go one each to
       randomly chosen submissions

    The quotas are then realized as a maximum flow
    source -> reviewer -> submission -> sink. Reviewer and submission order,
    and each reviewer's edge order, are shuffled so ties do not favour
    anyone. Assignments above a submission's base are flagged ``is_extra``
    at random.

    Args:
        reviewers: Participant ids that must review.
        submissions: Eligible submissions with their author.
        expected_reviews_per_submission: Desired reviews per submission (k).
        rng: Random source; a fresh unseeded one when omitted.

    Returns:
        AssignmentPlan, or AssignmentFailure when no reviewer exists, there
        are too few submissions, or the network cannot be saturated.
    """
    rng = rng or random.Random()  # noqa: S311
    if not reviewers:
        return AssignmentFailure(PlanFailure.NO_REVIEWERS)

    submission_count = len(submissions)
    total_desired = submission_count * expected_reviews_per_submission
    reviews_per_reviewer = min(
        math.ceil(total_desired / len(reviewers)),
        submission_count - 1,
    )
    if reviews_per_reviewer <= 0:
        return AssignmentFailure(PlanFailure.INSUFFICIENT_VALID_SUBMISSIONS)

    total_assigned = reviews_per_reviewer * len(reviewers)
    if total_assigned >= total_desired:
        base = expected_reviews_per_submission
    else:
        base = total_assigned // submission_count
    extra_reviews = total_assigned - base * submission_count

    target_counts = _build_target_counts(submissions, base, extra_reviews, rng)
    pairs = _match_with_max_flow(
        reviewers, submissions, target_counts, reviews_per_reviewer, total_assigned, rng
    )
    if pairs is None:
        return AssignmentFailure(PlanFailure.ASSIGNMENT_FAILED)

    return AssignmentPlan(
        assignments=_mark_extra(pairs, base, rng),
        reviews_per_reviewer=reviews_per_reviewer,
        base_reviews_per_submission=base,
        extra_reviews=extra_reviews,
        total_assigned=total_assigned,
        target_counts=target_counts,
    )


def _build_target_counts(
    submissions: Sequence[ReviewTarget],
    base: int,
    extra_reviews: int,
    rng: random.Random,
) -> dict[str, int]:
    """Per-submission review quota: ``base`` plus one for randomly chosen submissions."""
    counts = {submission.id: base for submission in submissions}
    if extra_reviews > 0 and submissions:
        order = list(submissions)
        rng.shuffle(order)
        for i in range(extra_reviews):
            counts[order[i % len(order)].id] += 1
    return counts


def _match_with_max_flow(
    reviewers: Sequence[str],
    submissions: Sequence[ReviewTarget],
    target_counts: dict[str, int],
    reviews_per_reviewer: int,
    total_assigned: int,
    rng: random.Random,
) -> list[tuple[str, str]] | None:
    """Return (submission_id, reviewer_id) pairs, or None if not saturated."""
    reviewer_order = list(reviewers)
    rng.shuffle(reviewer_order)
    submission_order = list(submissions)
    rng.shuffle(submission_order)

    # Node layout: source, reviewers, submissions, sink.
    source = 0
    reviewer_offset = 1
    submission_offset = reviewer_offset + len(reviewer_order)
    sink = submission_offset + len(submission_order)
    graph = FlowGraph(sink + 1)

    review_edges: list[tuple[int, str, str]] = []
    for r_index, reviewer_id in enumerate(reviewer_order):
        reviewer_node = reviewer_offset + r_index
        graph.add_edge(source, reviewer_node, reviews_per_reviewer)
        eligible = list(enumerate(submission_order))
        rng.shuffle(eligible)
        for s_index, submission in eligible:
            if submission.author_id == reviewer_id:
                continue
            edge = graph.add_edge(reviewer_node, submission_offset + s_index, 1)
            review_edges.append((edge, submission.id, reviewer_id))

    for s_index, submission in enumerate(submission_order):
        target = target_counts.get(submission.id, 0)
        if target > 0:
            graph.add_edge(submission_offset + s_index, sink, target)

    if graph.max_flow(source, sink) != total_assigned:
        return None

    return [
        (submission_id, reviewer_id)
        for edge, submission_id, reviewer_id in review_edges
        if graph.flow_on(edge) > 0
    ]


def _mark_extra(
    pairs: list[tuple[str, str]],
    base: int,
    rng: random.Random,
) -> list[PlannedAssignment]:
    grouped: dict[str, list[str]] = defaultdict(list)
    for submission_id, reviewer_id in pairs:
        grouped[submission_id].append(reviewer_id)

    assignments: list[PlannedAssignment] = []
    for submission_id, reviewer_ids in grouped.items():
        extra_count = max(0, len(reviewer_ids) - base)
        shuffled = list(reviewer_ids)
        rng.shuffle(shuffled)
        assignments.extend(
            PlannedAssignment(submission_id, reviewer_id, is_extra=index < extra_count)
            for index, reviewer_id in enumerate(shuffled)
        )
    return assignments
