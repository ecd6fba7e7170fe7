import uuid
from datetime import datetime

from sqlalchemy import Column
from sqlmodel import JSON, Field, SQLModel

from review_engine.core.clock import utc_now
from review_engine.models.enums import ChallengeStatus, ScoringStatus


class Challenge(SQLModel, table=True):
    """A timed coding challenge followed by a peer review phase."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    title: str = ""
    status: str = Field(default=ChallengeStatus.ASSIGNED, index=True)
    coding_duration_minutes: int = 0
    peer_review_duration_minutes: int = 0
    started_coding_at: datetime | None = None
    ended_coding_at: datetime | None = None
    started_peer_review_at: datetime | None = None
    ended_peer_review_at: datetime | None = None
    # Set exactly once per coding phase end, by a conditional update.
    finalization_completed_at: datetime | None = None
    expected_reviews_per_submission: int | None = None
    scoring_status: str = ScoringStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)


class MatchSetting(SQLModel, table=True):
    """A problem used within a challenge, with its reference solution."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    challenge_id: str = Field(foreign_key="challenge.id", index=True)
    name: str = ""
    reference_solution: str | None = None
    language: str | None = None
    public_tests: list[dict] = Field(default_factory=list, sa_column=Column(JSON))


class Participant(SQLModel, table=True):
    """A student enrolled in one challenge."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    challenge_id: str = Field(foreign_key="challenge.id", index=True)
    student_id: str = Field(index=True)


class Match(SQLModel, table=True):
    """One participant assigned to one match setting."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    challenge_id: str = Field(foreign_key="challenge.id", index=True)
    match_setting_id: str = Field(foreign_key="matchsetting.id", index=True)
    participant_id: str = Field(foreign_key="participant.id", index=True)
