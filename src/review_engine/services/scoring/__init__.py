from .formula import (
    MAX_PEER_PENALTY,
    ReviewTally,
    clamp,
    code_review_score,
    implementation_score,
    tally_votes,
    total_score,
)
from .service import ScoringService

__all__ = [
    "MAX_PEER_PENALTY",
    "ReviewTally",
    "ScoringService",
    "clamp",
    "code_review_score",
    "implementation_score",
    "tally_votes",
    "total_score",
]
