"""Database persistence for challenges and their match structure."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import update
from sqlmodel import Session, col, select

from review_engine.models import (
    Challenge,
    ChallengeStatus,
    Match,
    MatchSetting,
    Participant,
)

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

ACTIVE_STATUSES = (
    ChallengeStatus.STARTED_CODING,
    ChallengeStatus.ENDED_CODING,
    ChallengeStatus.STARTED_PEER_REVIEW,
)


def conditional_update(session: Session, statement) -> bool:
    """Execute an UPDATE and report whether exactly one row changed."""
    result = session.connection().execute(statement)
    return result.rowcount == 1


class ChallengeRepository(AsyncRepository):
    """Persist and query challenges, match settings, participants and matches."""

    def __init__(self, engine: Engine) -> None:
        super().__init__(engine)

    async def get(self, challenge_id: str) -> Challenge | None:
        def _get(session: Session) -> Challenge | None:
            return session.get(Challenge, challenge_id)

        return await self._run_session(_get)

    async def list_active(self) -> list[Challenge]:
        """Challenges whose phase timers may still need to fire."""

        def _get(session: Session) -> list[Challenge]:
            statement = select(Challenge).where(col(Challenge.status).in_(ACTIVE_STATUSES))
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def get_match_settings(self, challenge_id: str) -> dict[str, MatchSetting]:
        def _get(session: Session) -> dict[str, MatchSetting]:
            statement = select(MatchSetting).where(MatchSetting.challenge_id == challenge_id)
            return {setting.id: setting for setting in session.exec(statement).all()}

        return await self._run_session(_get)

    async def get_participants(self, challenge_id: str) -> list[Participant]:
        def _get(session: Session) -> list[Participant]:
            statement = (
                select(Participant)
                .where(Participant.challenge_id == challenge_id)
                .order_by(col(Participant.id))
            )
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def get_matches(self, challenge_id: str) -> list[Match]:
        def _get(session: Session) -> list[Match]:
            statement = (
                select(Match).where(Match.challenge_id == challenge_id).order_by(col(Match.id))
            )
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def save(self, challenge: Challenge) -> Challenge:
        def _save(session: Session) -> Challenge:
            merged = session.merge(challenge)
            session.commit()
            return merged

        return await self._run_session(_save)

    async def set_expected_reviews(self, challenge_id: str, expected: int) -> None:
        def _save(session: Session) -> None:
            session.connection().execute(
                update(Challenge)
                .where(col(Challenge.id) == challenge_id)
                .values(expected_reviews_per_submission=expected)
            )
            session.commit()

        await self._run_session(_save)

    async def set_scoring_status(self, challenge_id: str, status: str) -> None:
        def _save(session: Session) -> None:
            session.connection().execute(
                update(Challenge)
                .where(col(Challenge.id) == challenge_id)
                .values(scoring_status=status)
            )
            session.commit()

        await self._run_session(_save)

    async def mark_coding_ended(self, challenge_id: str, ended_at: datetime) -> bool:
        """Move a challenge from started_coding to ended_coding.

        Resets ``finalization_completed_at`` so the new phase end is finalized
        exactly once. Returns False when another caller already moved it.
        """

        def _update(session: Session) -> bool:
            updated = conditional_update(
                session,
                update(Challenge)
                .where(
                    col(Challenge.id) == challenge_id,
                    col(Challenge.status) == ChallengeStatus.STARTED_CODING,
                )
                .values(
                    status=ChallengeStatus.ENDED_CODING,
                    ended_coding_at=ended_at,
                    finalization_completed_at=None,
                ),
            )
            session.commit()
            return updated

        return await self._run_session(_update)

    async def complete_finalization(self, challenge_id: str, completed_at: datetime) -> bool:
        """Set ``finalization_completed_at`` only if it is still unset.

        Exactly one concurrent caller observes True.
        """

        def _update(session: Session) -> bool:
            updated = conditional_update(
                session,
                update(Challenge)
                .where(
                    col(Challenge.id) == challenge_id,
                    col(Challenge.status) == ChallengeStatus.ENDED_CODING,
                    col(Challenge.finalization_completed_at).is_(None),
                )
                .values(finalization_completed_at=completed_at),
            )
            session.commit()
            return updated

        return await self._run_session(_update)
