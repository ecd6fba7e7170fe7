import uuid
from datetime import datetime

from sqlalchemy import Column
from sqlmodel import JSON, Field, SQLModel

from review_engine.core.clock import utc_now
from review_engine.models.enums import SubmissionStatus


class Submission(SQLModel, table=True):
    """Code submitted for a match.

    At most one submission per match carries ``is_final = True``.
    ``private_test_results`` holds the teacher test outcome as a list of
    ``{"passed": bool, ...}`` entries; missing or malformed results count as
    failed teacher tests.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    match_id: str = Field(foreign_key="match.id", index=True)
    participant_id: str = Field(foreign_key="participant.id", index=True)
    code: str = ""
    status: str = Field(default=SubmissionStatus.WRONG)
    is_final: bool = False
    is_automatic_submission: bool = False
    private_test_results: list[dict] | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
