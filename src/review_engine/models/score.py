import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Column
from sqlmodel import JSON, Field, SQLModel

from review_engine.core.clock import utc_now


class ScoreBreakdown(SQLModel, table=True):
    """Scores for one participant after a scoring pass (one row per participant)."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    participant_id: str = Field(foreign_key="participant.id", unique=True, index=True)
    challenge_id: str = Field(foreign_key="challenge.id", index=True)
    submission_id: str | None = None
    code_review_score: float = 0.0
    implementation_score: float = 0.0
    total_score: float = 0.0
    stats: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=utc_now)
