"""Database persistence for submissions."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

import structlog
from sqlmodel import Session, col, select

from review_engine.core.clock import utc_now
from review_engine.models import Match, Submission, SubmissionStatus

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

FinalChooser = Callable[[Sequence[Submission]], Submission | None]


class SubmissionRepository(AsyncRepository):
    """Persist and query submissions of a challenge."""

    def __init__(self, engine: Engine) -> None:
        super().__init__(engine)

    async def save(self, submission: Submission) -> Submission:
        def _save(session: Session) -> Submission:
            submission.updated_at = utc_now()
            merged = session.merge(submission)
            session.commit()
            return merged

        return await self._run_session(_save)

    async def get_final_submissions(self, challenge_id: str) -> list[Submission]:
        """Final submissions for every match of the challenge."""

        def _get(session: Session) -> list[Submission]:
            statement = (
                select(Submission)
                .join(Match, col(Match.id) == col(Submission.match_id))
                .where(Match.challenge_id == challenge_id, col(Submission.is_final).is_(True))
                .order_by(col(Submission.id))
            )
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def get_for_match(self, match_id: str) -> list[Submission]:
        def _get(session: Session) -> list[Submission]:
            statement = select(Submission).where(Submission.match_id == match_id)
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def finalize_missing(self, challenge_id: str, choose_final: FinalChooser) -> list[str]:
        """Ensure every match of the challenge has exactly one final submission.

        Matches with no submissions get a placeholder WRONG automatic
        submission marked final. Matches with submissions but no final one get
        the submission picked by ``choose_final``. Runs in one transaction.

        Returns:
            Ids of the matches whose final submission was set.
        """

        def _finalize(session: Session) -> list[str]:
            matches = session.exec(
                select(Match).where(Match.challenge_id == challenge_id).order_by(col(Match.id))
            ).all()
            match_ids = [match.id for match in matches]
            by_match: dict[str, list[Submission]] = defaultdict(list)
            if match_ids:
                rows = session.exec(
                    select(Submission).where(col(Submission.match_id).in_(match_ids))
                ).all()
                for row in rows:
                    by_match[row.match_id].append(row)

            finalized: list[str] = []
            for match in matches:
                submissions = by_match.get(match.id, [])
                if not submissions:
                    now = utc_now()
                    session.add(
                        Submission(
                            match_id=match.id,
                            participant_id=match.participant_id,
                            code="",
                            status=SubmissionStatus.WRONG,
                            is_final=True,
                            is_automatic_submission=True,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                    finalized.append(match.id)
                    logger.debug("placeholder_submission_created", match_id=match.id)
                    continue

                if any(submission.is_final for submission in submissions):
                    continue

                winner = choose_final(submissions)
                if winner is None:
                    continue
                for submission in submissions:
                    submission.is_final = submission.id == winner.id
                    session.add(submission)
                finalized.append(match.id)
                logger.debug(
                    "final_submission_selected",
                    match_id=match.id,
                    submission_id=winner.id,
                    automatic=winner.is_automatic_submission,
                )

            return finalized

        return await self._run_transaction(_finalize)
