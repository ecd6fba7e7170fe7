from .engine import (
    ProblemGroup,
    ReviewedSubmission,
    SubmissionTruth,
    TruthEngine,
    TruthReport,
    teacher_test_counts,
)

__all__ = [
    "ProblemGroup",
    "ReviewedSubmission",
    "SubmissionTruth",
    "TruthEngine",
    "TruthReport",
    "teacher_test_counts",
]
