"""Bounded code review and implementation scores."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass

from review_engine.models import PeerReviewVote, VoteType

MAX_COMPONENT_SCORE = 50.0
MAX_PEER_PENALTY = MAX_COMPONENT_SCORE / 3


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class ReviewTally:
    """Vote outcome counts for one reviewer.

    Attributes:
        E: INCORRECT votes backed by a valid counter-example that proved a bug.
        C: CORRECT votes on submissions that really were correct.
        W: Every other non-abstain vote.
        I_total: Assigned submissions whose ground truth is incorrect.
        C_total: Assigned submissions whose ground truth is correct.
        total_reviewed: Assigned submissions.
    """

    E: int = 0
    C: int = 0
    W: int = 0
    I_total: int = 0
    C_total: int = 0
    total_reviewed: int = 0

    def add(self, vote: PeerReviewVote | None, submission_correct: bool) -> None:
        """Count one assignment: its vote (None when missing) and the submission's verdict."""
        self.total_reviewed += 1
        if submission_correct:
            self.C_total += 1
        else:
            self.I_total += 1

        if vote is None or vote.vote == VoteType.ABSTAIN:
            return
        if (
            vote.vote == VoteType.INCORRECT
            and vote.is_expected_output_correct is True
            and vote.is_vote_correct is True
        ):
            self.E += 1
        elif vote.vote == VoteType.CORRECT and vote.is_vote_correct is True:
            self.C += 1
        else:
            self.W += 1

    def as_stats(self) -> dict[str, int]:
        return asdict(self)


def tally_votes(outcomes: Iterable[tuple[PeerReviewVote | None, bool]]) -> ReviewTally:
    tally = ReviewTally()
    for vote, submission_correct in outcomes:
        tally.add(vote, submission_correct)
    return tally


def code_review_score(tally: ReviewTally) -> float:
    """``50 * (2E + C - 0.5W) / (2 * I_total + C_total)`` clamped to [0, 50].

    A reviewer with nothing to review (zero denominator) scores 0.
    """
    denominator = 2 * tally.I_total + tally.C_total
    if denominator == 0:
        return 0.0
    raw = MAX_COMPONENT_SCORE * (2 * tally.E + tally.C - 0.5 * tally.W) / denominator
    return round(clamp(raw, 0.0, MAX_COMPONENT_SCORE), 2)


def implementation_score(
    passed_teacher: bool,
    failed_killer_tests: int,
    valid_counter_examples: int,
) -> float:
    """Score of a submission's author.

    50 when every teacher test passed (0 otherwise), minus a penalty for the
    share of distinct valid counter-examples the submission failed. The
    penalty is at most a third of the maximum.
    """
    base = MAX_COMPONENT_SCORE if passed_teacher else 0.0
    penalty = 0.0
    if valid_counter_examples > 0:
        penalty = min(
            MAX_PEER_PENALTY,
            MAX_COMPONENT_SCORE * failed_killer_tests / valid_counter_examples,
        )
    return round(clamp(base - penalty, 0.0, MAX_COMPONENT_SCORE), 2)


def total_score(review_score: float, impl_score: float) -> float:
    return round(review_score + impl_score, 2)
