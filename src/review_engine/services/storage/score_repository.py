"""Database persistence for score breakdowns."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlmodel import Session, col, select

from review_engine.core.clock import utc_now
from review_engine.models import ScoreBreakdown

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine


class ScoreRepository(AsyncRepository):
    """Persist and query per-participant score breakdowns."""

    def __init__(self, engine: Engine) -> None:
        super().__init__(engine)

    async def save_breakdown(self, breakdown_data: Any) -> ScoreBreakdown:
        """Save or update the breakdown of one participant."""
        data = (
            breakdown_data.model_dump(exclude={"id"})
            if hasattr(breakdown_data, "model_dump")
            else dict(breakdown_data)
        )
        data["updated_at"] = utc_now()

        def _save(session: Session) -> ScoreBreakdown:
            statement = select(ScoreBreakdown).where(
                ScoreBreakdown.participant_id == data["participant_id"]
            )
            existing = session.exec(statement).first()
            if existing:
                if data.get("submission_id") is None:
                    data["submission_id"] = existing.submission_id
                for key, value in data.items():
                    setattr(existing, key, value)
                session.add(existing)
                record = existing
            else:
                record = ScoreBreakdown.model_validate(data)
                session.add(record)
            session.commit()
            return record

        return await self._run_session(_save)

    async def get_leaderboard(self, challenge_id: str) -> list[ScoreBreakdown]:
        """Breakdowns of a challenge sorted by total score."""

        def _get(session: Session) -> list[ScoreBreakdown]:
            statement = (
                select(ScoreBreakdown)
                .where(ScoreBreakdown.challenge_id == challenge_id)
                .order_by(col(ScoreBreakdown.total_score).desc())
            )
            return list(session.exec(statement).all())

        return await self._run_session(_get)
