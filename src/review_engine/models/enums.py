"""Closed status vocabularies shared by the models and services."""

from __future__ import annotations

from enum import StrEnum


class ChallengeStatus(StrEnum):
    """Challenge phase, in lifecycle order."""

    ASSIGNED = "assigned"
    STARTED_CODING = "started_coding"
    ENDED_CODING = "ended_coding"
    STARTED_PEER_REVIEW = "started_peer_review"
    ENDED_PEER_REVIEW = "ended_peer_review"


class ScoringStatus(StrEnum):
    PENDING = "pending"
    COMPUTING = "computing"
    COMPLETED = "completed"
    FAILED = "failed"


class SubmissionStatus(StrEnum):
    """Automatic correctness estimate of a submission.

    The declaration order is a total order (WRONG < IMPROVABLE <
    PROBABLY_CORRECT) used when choosing between candidate final submissions.
    """

    WRONG = "wrong"
    IMPROVABLE = "improvable"
    PROBABLY_CORRECT = "probably_correct"

    @property
    def rank(self) -> int:
        return _SUBMISSION_RANKS[self]

    @classmethod
    def rank_of(cls, value: str | None) -> int:
        """Rank of a raw status value; unknown values rank as WRONG."""
        try:
            return cls(value).rank
        except ValueError:
            return 0


_SUBMISSION_RANKS = {status: index for index, status in enumerate(SubmissionStatus)}

# Final submissions with these statuses are eligible for peer review.
REVIEWABLE_STATUSES = (SubmissionStatus.IMPROVABLE, SubmissionStatus.PROBABLY_CORRECT)


class VoteType(StrEnum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    ABSTAIN = "abstain"


class EvaluationStatus(StrEnum):
    """How a counter-example fared when the reviewed code was executed."""

    NO_BUG = "no_bug"
    BUG_PROVEN = "bug_proven"
    INVALID_OUTPUT = "invalid_output"
    COMPILE_ERROR = "compile_error"
    RUNTIME_ERROR = "runtime_error"
    TIMEOUT = "timeout"
