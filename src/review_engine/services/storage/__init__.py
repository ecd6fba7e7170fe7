from .challenge_repository import ChallengeRepository
from .database import create_database
from .review_repository import AssignmentContext, ReviewRepository
from .score_repository import ScoreRepository
from .store import ReviewStore
from .submission_repository import SubmissionRepository

__all__ = [
    "AssignmentContext",
    "ChallengeRepository",
    "ReviewRepository",
    "ReviewStore",
    "ScoreRepository",
    "SubmissionRepository",
    "create_database",
]
