"""Pipeline orchestration for the review engine."""

from __future__ import annotations

import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

import structlog

from review_engine.core.clock import utc_now
from review_engine.core.config import EngineConfig
from review_engine.models import ChallengeStatus, PeerReviewVote, ScoreBreakdown, ScoringStatus
from review_engine.services.assignment import AssignmentService, PlanningReport
from review_engine.services.events import CHALLENGE_UPDATED, EventBroadcaster
from review_engine.services.execution import ExecutionClient
from review_engine.services.finalization import (
    FinalizationCoordinator,
    FinalizationResult,
    PhaseScheduler,
    peer_review_end,
)
from review_engine.services.review import VotePayload, VoteService
from review_engine.services.scoring import ScoringService
from review_engine.services.storage import ReviewStore
from review_engine.services.truth import TruthEngine

logger = structlog.get_logger()


class PeerReviewEndStatus(StrEnum):
    OK = "ok"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    PEER_REVIEW_NOT_ENDED = "peer_review_not_ended"
    ALREADY_FINALIZED = "already_finalized"
    INVALID_STATUS = "invalid_status"
    NO_PARTICIPANTS = "no_participants"


@dataclass
class PeerReviewEndResult:
    status: PeerReviewEndStatus
    abstain_votes: int = 0
    breakdowns: list[ScoreBreakdown] = field(default_factory=list)
    scoring_error: str | None = None
    ends_at: datetime | None = None


class ReviewPipeline:
    """Entry point wiring assignment, voting, finalization and scoring together.

    One instance per process: it owns the finalization coordinator and the
    phase timers. Call ``start`` after construction to restore timers and
    ``close`` at shutdown.
    """

    def __init__(
        self,
        config: EngineConfig,
        client: ExecutionClient,
        store: ReviewStore,
        events: EventBroadcaster | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Engine configuration.
            client: Code execution client used by the truth engine.
            store: Persistence facade.
            events: Broadcaster for UI notifications.
            rng: Random source for assignment shuffles (seeded from config when omitted).
            clock: Current time provider.
        """
        self.config = config
        self.client = client
        self.store = store
        self.events = events or EventBroadcaster()
        self.clock = clock

        self.coordinator = FinalizationCoordinator(store, self.events, config.finalization, clock)
        self.assignment_service = AssignmentService(
            store,
            self.coordinator,
            rng or random.Random(config.assignment.seed),  # noqa: S311
        )
        self.vote_service = VoteService(store)
        self.scoring_service = ScoringService(
            store, TruthEngine(client, config.execution.default_language), self.events
        )
        self.scheduler = PhaseScheduler(
            store, self.coordinator, self.end_peer_review, self.events, config.finalization, clock
        )

    async def start(self) -> int:
        """Restore phase timers for challenges that are still running."""
        return await self.scheduler.restore(await self.store.challenges.list_active())

    async def plan_assignments(
        self,
        challenge_id: str,
        expected_reviews_per_submission: object = None,
        overwrite: bool = True,
    ) -> PlanningReport:
        expected = expected_reviews_per_submission
        if expected is None:
            expected = self.config.assignment.default_expected_reviews
        return await self.assignment_service.plan_challenge(challenge_id, expected, overwrite)

    async def submit_vote(
        self,
        user_id: str,
        assignment_id: str,
        payload: VotePayload | Mapping[str, Any],
    ) -> PeerReviewVote:
        return await self.vote_service.submit_vote(user_id, assignment_id, payload)

    async def run_scoring_pass(self, challenge_id: str) -> list[ScoreBreakdown]:
        return await self.scoring_service.run_scoring_pass(challenge_id)

    async def maybe_complete_finalization(self, challenge_id: str) -> FinalizationResult:
        return await self.coordinator.maybe_complete_finalization(challenge_id)

    async def end_peer_review(
        self, challenge_id: str, allow_early: bool = False
    ) -> PeerReviewEndResult:
        """Close the peer review phase and score the challenge.

        Unvoted assignments receive an ABSTAIN vote and the challenge moves to
        ended_peer_review in one transaction; the scoring pass follows. A
        failing scoring pass is logged and reported in ``scoring_error``.
        """
        challenge = await self.store.challenges.get(challenge_id)
        if challenge is None:
            return PeerReviewEndResult(PeerReviewEndStatus.CHALLENGE_NOT_FOUND)
        if challenge.status == ChallengeStatus.ENDED_PEER_REVIEW:
            return PeerReviewEndResult(PeerReviewEndStatus.ALREADY_FINALIZED)
        if challenge.status != ChallengeStatus.STARTED_PEER_REVIEW:
            return PeerReviewEndResult(PeerReviewEndStatus.INVALID_STATUS)

        ends_at = peer_review_end(challenge, self.config.finalization.phase_end_buffer_seconds)
        if not allow_early and ends_at is not None and self.clock() < ends_at:
            return PeerReviewEndResult(PeerReviewEndStatus.PEER_REVIEW_NOT_ENDED, ends_at=ends_at)

        if not await self.store.challenges.get_participants(challenge_id):
            return PeerReviewEndResult(PeerReviewEndStatus.NO_PARTICIPANTS)

        abstained = await self.store.reviews.close_peer_review(challenge_id, self.clock())
        if abstained is None:
            return PeerReviewEndResult(PeerReviewEndStatus.ALREADY_FINALIZED)

        self.scheduler.cancel(challenge_id)
        self.events.publish(
            CHALLENGE_UPDATED,
            {
                "challenge_id": challenge_id,
                "status": ChallengeStatus.ENDED_PEER_REVIEW.value,
                "scoring_status": ScoringStatus.PENDING.value,
            },
        )
        logger.info("peer_review_ended", challenge_id=challenge_id, abstain_votes=abstained)

        result = PeerReviewEndResult(PeerReviewEndStatus.OK, abstain_votes=abstained)
        try:
            result.breakdowns = await self.run_scoring_pass(challenge_id)
        except Exception as e:
            logger.error("scoring_after_review_failed", challenge_id=challenge_id, error=str(e))
            result.scoring_error = str(e)
        return result

    async def close(self) -> None:
        await self.scheduler.close()
        await self.coordinator.close()
        await self.client.close()


def create_pipeline(
    config: EngineConfig,
    client: ExecutionClient,
    store: ReviewStore | None = None,
    events: EventBroadcaster | None = None,
) -> ReviewPipeline:
    """Convenience function to build a pipeline over the configured database.

    Args:
        config: Engine configuration.
        client: Code execution client.
        store: Existing store (opened from ``config.database_url`` when omitted).
        events: Broadcaster for UI notifications.

    Returns:
        ReviewPipeline ready to use.
    """
    store = store or ReviewStore.from_url(config.database_url)
    return ReviewPipeline(config, client, store, events)
