import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from review_engine.core.clock import utc_now


class PeerReviewAssignment(SQLModel, table=True):
    """A reviewer asked to judge one submission they did not author."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    reviewer_id: str = Field(foreign_key="participant.id", index=True)
    submission_id: str = Field(foreign_key="submission.id", index=True)
    is_extra: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class PeerReviewVote(SQLModel, table=True):
    """A reviewer's verdict on an assignment (one per assignment).

    The fields after ``expected_output`` are derived by the truth engine and
    stay null until a scoring pass resolves them.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    assignment_id: str = Field(foreign_key="peerreviewassignment.id", unique=True, index=True)
    vote: str
    test_case_input: str | None = None
    expected_output: str | None = None
    reference_output: str | None = None
    is_expected_output_correct: bool | None = None
    actual_output: str | None = None
    is_bug_proven: bool | None = None
    is_vote_correct: bool | None = None
    evaluation_status: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def clear_evaluation(self) -> None:
        self.reference_output = None
        self.is_expected_output_correct = None
        self.actual_output = None
        self.is_bug_proven = None
        self.is_vote_correct = None
        self.evaluation_status = None
