from review_engine.models.challenge import Challenge, Match, MatchSetting, Participant
from review_engine.models.enums import (
    REVIEWABLE_STATUSES,
    ChallengeStatus,
    EvaluationStatus,
    ScoringStatus,
    SubmissionStatus,
    VoteType,
)
from review_engine.models.review import PeerReviewAssignment, PeerReviewVote
from review_engine.models.score import ScoreBreakdown
from review_engine.models.submission import Submission

__all__ = [
    "REVIEWABLE_STATUSES",
    "Challenge",
    "ChallengeStatus",
    "EvaluationStatus",
    "Match",
    "MatchSetting",
    "Participant",
    "PeerReviewAssignment",
    "PeerReviewVote",
    "ScoreBreakdown",
    "ScoringStatus",
    "Submission",
    "SubmissionStatus",
    "VoteType",
]
