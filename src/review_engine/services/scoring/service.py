"""Scoring pass orchestration: truth inference, vote annotation and score persistence."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Any

import structlog

from review_engine.core.errors import NotFoundError
from review_engine.models import ScoreBreakdown, ScoringStatus
from review_engine.services.events import CHALLENGE_UPDATED, EventBroadcaster
from review_engine.services.truth import (
    ProblemGroup,
    ReviewedSubmission,
    TruthEngine,
    TruthReport,
)

from .formula import code_review_score, implementation_score, tally_votes, total_score

if TYPE_CHECKING:
    from review_engine.models import Challenge, PeerReviewAssignment, PeerReviewVote
    from review_engine.services.storage import ReviewStore

logger = structlog.get_logger()


class ScoringService:
    """Run scoring passes for challenges whose peer review has ended."""

    def __init__(
        self,
        store: ReviewStore,
        truth_engine: TruthEngine,
        events: EventBroadcaster | None = None,
    ) -> None:
        self._store = store
        self._truth = truth_engine
        self._events = events or EventBroadcaster()

    async def _set_status(self, challenge: Challenge, status: ScoringStatus) -> None:
        await self._store.challenges.set_scoring_status(challenge.id, status)
        self._events.publish(
            CHALLENGE_UPDATED,
            {"challenge_id": challenge.id, "status": challenge.status, "scoring_status": status},
        )

    async def run_scoring_pass(self, challenge_id: str) -> list[ScoreBreakdown]:
        """Resolve ground truth and (re)compute every participant's scores.

        Raises:
            NotFoundError: If the challenge does not exist.
        """
        challenge = await self._store.challenges.get(challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge", challenge_id)

        await self._set_status(challenge, ScoringStatus.COMPUTING)
        try:
            breakdowns = await self._score(challenge)
        except Exception:
            logger.exception("scoring_pass_failed", challenge_id=challenge_id)
            await self._set_status(challenge, ScoringStatus.FAILED)
            raise
        await self._set_status(challenge, ScoringStatus.COMPLETED)
        return breakdowns

    async def _score(self, challenge: Challenge) -> list[ScoreBreakdown]:
        store = self._store
        participants = await store.challenges.get_participants(challenge.id)
        matches = await store.challenges.get_matches(challenge.id)
        settings = await store.challenges.get_match_settings(challenge.id)
        finals = await store.submissions.get_final_submissions(challenge.id)
        assignments = await store.reviews.get_challenge_assignments(challenge.id)
        votes = await store.reviews.get_votes([a.id for a in assignments])

        groups = _build_groups(matches, settings, finals, assignments, votes)
        report = await self._truth.resolve(groups)
        await store.reviews.save_evaluations(list(votes.values()))

        final_by_author = {s.participant_id: s for s in finals}
        by_reviewer: dict[str, list[PeerReviewAssignment]] = defaultdict(list)
        for assignment in assignments:
            by_reviewer[assignment.reviewer_id].append(assignment)

        breakdowns: list[ScoreBreakdown] = []
        for participant in participants:
            data = _breakdown_data(
                challenge.id,
                participant.id,
                final_by_author.get(participant.id),
                by_reviewer.get(participant.id, []),
                votes,
                report,
            )
            try:
                breakdowns.append(await store.scores.save_breakdown(data))
            except Exception as e:
                logger.error(
                    "score_breakdown_save_failed",
                    challenge_id=challenge.id,
                    participant_id=participant.id,
                    error=str(e),
                )

        logger.info(
            "scores_computed",
            challenge_id=challenge.id,
            participants=len(participants),
            saved=len(breakdowns),
            failed_groups=report.failed_groups,
        )
        return breakdowns


def _build_groups(matches, settings, finals, assignments, votes) -> list[ProblemGroup]:
    setting_by_match = {m.id: m.match_setting_id for m in matches}
    votes_by_submission: dict[str, list[PeerReviewVote]] = defaultdict(list)
    for assignment in assignments:
        vote = votes.get(assignment.id)
        if vote is not None:
            votes_by_submission[assignment.submission_id].append(vote)

    groups: dict[str, ProblemGroup] = {}
    for submission in finals:
        setting_id = setting_by_match.get(submission.match_id)
        if setting_id is None:
            continue
        group = groups.get(setting_id)
        if group is None:
            group = ProblemGroup(setting_id, settings.get(setting_id))
            groups[setting_id] = group
        group.submissions.append(
            ReviewedSubmission(submission, votes_by_submission.get(submission.id, []))
        )
    return list(groups.values())


def _breakdown_data(
    challenge_id: str,
    participant_id: str,
    submission,
    assignments: list[PeerReviewAssignment],
    votes: dict[str, PeerReviewVote],
    report: TruthReport,
) -> dict[str, Any]:
    tally = tally_votes((votes.get(a.id), report.is_correct(a.submission_id)) for a in assignments)
    review = code_review_score(tally)

    truth = report.submissions.get(submission.id) if submission else None
    if truth is None:
        impl = 0.0
        impl_stats = {"teacher_passed": 0, "teacher_total": 0, "peer_penalties": 0, "peer_total": 0}
    else:
        impl = implementation_score(
            truth.passed_teacher, truth.proven_killer_tests, truth.valid_counter_examples
        )
        impl_stats = {
            "teacher_passed": truth.teacher_passed_count,
            "teacher_total": truth.teacher_total,
            "peer_penalties": truth.proven_killer_tests,
            "peer_total": truth.valid_counter_examples,
        }

    return {
        "participant_id": participant_id,
        "challenge_id": challenge_id,
        "submission_id": submission.id if submission else None,
        "code_review_score": review,
        "implementation_score": impl,
        "total_score": total_score(review, impl),
        "stats": {"code_review": tally.as_stats(), "implementation": impl_stats},
    }
