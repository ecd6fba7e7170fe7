"""Database persistence for peer review assignments and votes."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, update
from sqlmodel import Session, col, select

from review_engine.core.clock import utc_now
from review_engine.core.errors import StateError
from review_engine.models import (
    Challenge,
    ChallengeStatus,
    Match,
    MatchSetting,
    Participant,
    PeerReviewAssignment,
    PeerReviewVote,
    Submission,
    VoteType,
)

from .challenge_repository import conditional_update
from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

EVALUATION_FIELDS = (
    "reference_output",
    "is_expected_output_correct",
    "actual_output",
    "is_bug_proven",
    "is_vote_correct",
    "evaluation_status",
)


@dataclass
class AssignmentContext:
    """An assignment with everything needed to authorize and validate a vote."""

    assignment: PeerReviewAssignment
    reviewer: Participant
    submission: Submission
    challenge: Challenge
    match_setting: MatchSetting | None


def _challenge_assignments(challenge_id: str):
    return (
        select(PeerReviewAssignment)
        .join(Submission, col(Submission.id) == col(PeerReviewAssignment.submission_id))
        .join(Match, col(Match.id) == col(Submission.match_id))
        .where(Match.challenge_id == challenge_id)
    )


def _assignment_challenge_status(assignment_id: str):
    return (
        select(Challenge.status)
        .join(Match, col(Match.challenge_id) == col(Challenge.id))
        .join(Submission, col(Submission.match_id) == col(Match.id))
        .join(PeerReviewAssignment, col(PeerReviewAssignment.submission_id) == col(Submission.id))
        .where(PeerReviewAssignment.id == assignment_id)
    )


class ReviewRepository(AsyncRepository):
    """Persist and query review assignments and the votes cast on them."""

    def __init__(self, engine: Engine) -> None:
        super().__init__(engine)

    async def count_assignments(self, submission_ids: Sequence[str]) -> int:
        def _count(session: Session) -> int:
            if not submission_ids:
                return 0
            statement = select(PeerReviewAssignment.id).where(
                col(PeerReviewAssignment.submission_id).in_(submission_ids)
            )
            return len(session.exec(statement).all())

        return await self._run_session(_count)

    async def replace_assignments(
        self,
        submission_ids: Sequence[str],
        assignments: Sequence[PeerReviewAssignment],
    ) -> int:
        """Destroy the assignments (and votes) of these submissions, then insert new ones.

        Both steps run in one transaction: either every new assignment is
        visible or the previous set is left untouched.
        """

        def _replace(session: Session) -> int:
            if submission_ids:
                stale_ids = select(PeerReviewAssignment.id).where(
                    col(PeerReviewAssignment.submission_id).in_(submission_ids)
                )
                session.connection().execute(
                    delete(PeerReviewVote).where(col(PeerReviewVote.assignment_id).in_(stale_ids))
                )
                session.connection().execute(
                    delete(PeerReviewAssignment).where(
                        col(PeerReviewAssignment.submission_id).in_(submission_ids)
                    )
                )
            session.add_all(assignments)
            return len(assignments)

        return await self._run_transaction(_replace)

    async def get_challenge_assignments(self, challenge_id: str) -> list[PeerReviewAssignment]:
        def _get(session: Session) -> list[PeerReviewAssignment]:
            statement = _challenge_assignments(challenge_id).order_by(
                col(PeerReviewAssignment.id)
            )
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def get_votes(self, assignment_ids: Sequence[str]) -> dict[str, PeerReviewVote]:
        """Votes keyed by assignment id."""

        def _get(session: Session) -> dict[str, PeerReviewVote]:
            if not assignment_ids:
                return {}
            statement = select(PeerReviewVote).where(
                col(PeerReviewVote.assignment_id).in_(assignment_ids)
            )
            return {vote.assignment_id: vote for vote in session.exec(statement).all()}

        return await self._run_session(_get)

    async def get_assignment_context(self, assignment_id: str) -> AssignmentContext | None:
        def _get(session: Session) -> AssignmentContext | None:
            assignment = session.get(PeerReviewAssignment, assignment_id)
            if assignment is None:
                return None
            submission = session.get(Submission, assignment.submission_id)
            reviewer = session.get(Participant, assignment.reviewer_id)
            match = session.get(Match, submission.match_id) if submission else None
            challenge = session.get(Challenge, match.challenge_id) if match else None
            if submission is None or reviewer is None or challenge is None:
                return None
            return AssignmentContext(
                assignment=assignment,
                reviewer=reviewer,
                submission=submission,
                challenge=challenge,
                match_setting=session.get(MatchSetting, match.match_setting_id),
            )

        return await self._run_session(_get)

    async def upsert_vote(
        self,
        assignment_id: str,
        vote: str,
        test_case_input: str | None,
        expected_output: str | None,
    ) -> PeerReviewVote:
        """Create or replace the vote of an assignment.

        Replacing a vote clears everything a previous scoring pass derived
        from it. The challenge phase is checked after the write, inside the
        same transaction, so a vote never lands once peer review has closed.

        Raises:
            StateError: The challenge is no longer in its peer review phase.
        """

        def _save(session: Session) -> PeerReviewVote:
            statement = select(PeerReviewVote).where(
                PeerReviewVote.assignment_id == assignment_id
            )
            existing = session.exec(statement).first()
            if existing:
                existing.vote = vote
                existing.test_case_input = test_case_input
                existing.expected_output = expected_output
                existing.clear_evaluation()
                existing.updated_at = utc_now()
                session.add(existing)
                record = existing
            else:
                record = PeerReviewVote(
                    assignment_id=assignment_id,
                    vote=vote,
                    test_case_input=test_case_input,
                    expected_output=expected_output,
                )
                session.add(record)
            session.flush()

            status = session.exec(_assignment_challenge_status(assignment_id)).first()
            if status != ChallengeStatus.STARTED_PEER_REVIEW:
                raise StateError(
                    "Peer review phase has ended", f"Challenge is in status '{status}'."
                )
            return record

        return await self._run_transaction_retrying(_save)

    async def save_evaluations(self, votes: Sequence[PeerReviewVote]) -> None:
        """Persist the fields a scoring pass derived for each vote."""

        def _save(session: Session) -> None:
            now = utc_now()
            for vote in votes:
                values = {field: getattr(vote, field) for field in EVALUATION_FIELDS}
                session.connection().execute(
                    update(PeerReviewVote)
                    .where(col(PeerReviewVote.id) == vote.id)
                    .values(updated_at=now, **values)
                )

        await self._run_transaction(_save)

    async def close_peer_review(self, challenge_id: str, ended_at: datetime) -> int | None:
        """End the peer review phase and fill ABSTAIN votes.

        The status move ``started_peer_review -> ended_peer_review`` is
        conditional; when another caller already made it nothing is written
        and None is returned. Otherwise returns the number of ABSTAIN votes
        created.
        """

        def _close(session: Session) -> int | None:
            moved = conditional_update(
                session,
                update(Challenge)
                .where(
                    col(Challenge.id) == challenge_id,
                    col(Challenge.status) == ChallengeStatus.STARTED_PEER_REVIEW,
                )
                .values(status=ChallengeStatus.ENDED_PEER_REVIEW, ended_peer_review_at=ended_at),
            )
            if not moved:
                return None

            assignments = session.exec(_challenge_assignments(challenge_id)).all()
            voted = set(
                session.exec(
                    select(PeerReviewVote.assignment_id).where(
                        col(PeerReviewVote.assignment_id).in_([a.id for a in assignments])
                    )
                ).all()
            )
            missing = [a for a in assignments if a.id not in voted]
            session.add_all(
                PeerReviewVote(assignment_id=a.id, vote=VoteType.ABSTAIN) for a in missing
            )
            return len(missing)

        return await self._run_transaction_retrying(_close)
