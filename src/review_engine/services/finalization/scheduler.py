"""Phase-end timers for running challenges."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from review_engine.core.clock import ensure_utc, utc_now
from review_engine.core.config import FinalizationConfig
from review_engine.models import Challenge, ChallengeStatus
from review_engine.services.events import CHALLENGE_UPDATED, EventBroadcaster

from .timers import TimerRegistry

if TYPE_CHECKING:
    from review_engine.services.storage import ReviewStore

    from .coordinator import FinalizationCoordinator

logger = structlog.get_logger()

CODING_PHASE = "coding"
PEER_REVIEW_PHASE = "peer_review"


def _phase_end(
    explicit_end: datetime | None,
    started_at: datetime | None,
    duration_minutes: int | None,
    buffer_seconds: float,
) -> datetime | None:
    if explicit_end is not None:
        return ensure_utc(explicit_end)
    if started_at is None:
        return None
    return ensure_utc(started_at) + timedelta(
        minutes=duration_minutes or 0, seconds=buffer_seconds
    )


def coding_phase_end(challenge: Challenge, buffer_seconds: float = 5.0) -> datetime | None:
    """When the coding phase ends: explicit end, or start + duration + buffer."""
    return _phase_end(
        challenge.ended_coding_at,
        challenge.started_coding_at,
        challenge.coding_duration_minutes,
        buffer_seconds,
    )


def peer_review_end(challenge: Challenge, buffer_seconds: float = 5.0) -> datetime | None:
    """When the peer review phase ends: explicit end, or start + duration + buffer."""
    return _phase_end(
        challenge.ended_peer_review_at,
        challenge.started_peer_review_at,
        challenge.peer_review_duration_minutes,
        buffer_seconds,
    )


class PhaseScheduler:
    """Fire phase-end actions for challenges at the right time.

    At most one timer per (phase, challenge) exists; scheduling again replaces
    it. Every action re-reads the challenge and only acts when it is still in
    the expected phase, and the status changes themselves are conditional
    updates.
    """

    def __init__(
        self,
        store: ReviewStore,
        coordinator: FinalizationCoordinator,
        end_peer_review: Callable[[str], Awaitable[object]],
        events: EventBroadcaster | None = None,
        config: FinalizationConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._end_peer_review = end_peer_review
        self._events = events or EventBroadcaster()
        self._config = config or FinalizationConfig()
        self._clock = clock
        self._timers = TimerRegistry()

    def _delay_until(self, moment: datetime) -> float:
        return (moment - self._clock()).total_seconds()

    def is_scheduled(self, phase: str, challenge_id: str) -> bool:
        return (phase, challenge_id) in self._timers

    def schedule_coding_phase_end(self, challenge: Challenge) -> bool:
        end = coding_phase_end(challenge, self._config.phase_end_buffer_seconds)
        if end is None:
            logger.warning("coding_phase_end_unknown", challenge_id=challenge.id)
            return False
        challenge_id = challenge.id
        self._timers.schedule(
            (CODING_PHASE, challenge_id),
            self._delay_until(end),
            lambda: self.end_coding_phase(challenge_id),
        )
        logger.debug("coding_phase_end_scheduled", challenge_id=challenge_id, at=end.isoformat())
        return True

    def schedule_peer_review_end(self, challenge: Challenge) -> bool:
        end = peer_review_end(challenge, self._config.phase_end_buffer_seconds)
        if end is None:
            logger.warning("peer_review_end_unknown", challenge_id=challenge.id)
            return False
        challenge_id = challenge.id
        self._timers.schedule(
            (PEER_REVIEW_PHASE, challenge_id),
            self._delay_until(end),
            lambda: self.end_peer_review_phase(challenge_id),
        )
        logger.debug("peer_review_end_scheduled", challenge_id=challenge_id, at=end.isoformat())
        return True

    def cancel(self, challenge_id: str) -> None:
        self._timers.cancel((CODING_PHASE, challenge_id))
        self._timers.cancel((PEER_REVIEW_PHASE, challenge_id))

    async def end_coding_phase(self, challenge_id: str) -> bool:
        """Move the challenge to ended_coding and start finalization."""
        self._timers.cancel((CODING_PHASE, challenge_id))
        if not await self._store.challenges.mark_coding_ended(challenge_id, self._clock()):
            logger.debug("coding_phase_end_skipped", challenge_id=challenge_id)
            return False

        self._events.publish(
            CHALLENGE_UPDATED,
            {"challenge_id": challenge_id, "status": ChallengeStatus.ENDED_CODING.value},
        )
        logger.info("coding_phase_ended", challenge_id=challenge_id)
        try:
            await self._coordinator.maybe_complete_finalization(challenge_id)
        except Exception as e:
            logger.error(
                "coding_phase_finalization_failed", challenge_id=challenge_id, error=str(e)
            )
        return True

    async def end_peer_review_phase(self, challenge_id: str) -> object | None:
        self._timers.cancel((PEER_REVIEW_PHASE, challenge_id))
        challenge = await self._store.challenges.get(challenge_id)
        if challenge is None or challenge.status != ChallengeStatus.STARTED_PEER_REVIEW:
            return None
        return await self._end_peer_review(challenge_id)

    async def restore(self, challenges: Iterable[Challenge]) -> int:
        """Reschedule timers for challenges that were active before a restart."""
        restored = 0
        for challenge in challenges:
            if challenge.status == ChallengeStatus.STARTED_CODING:
                restored += self.schedule_coding_phase_end(challenge)
            elif challenge.status == ChallengeStatus.STARTED_PEER_REVIEW:
                restored += self.schedule_peer_review_end(challenge)
            elif (
                challenge.status == ChallengeStatus.ENDED_CODING
                and challenge.finalization_completed_at is None
            ):
                await self._coordinator.maybe_complete_finalization(challenge.id)
                restored += 1
        logger.info("phase_timers_restored", count=restored)
        return restored

    async def close(self) -> None:
        await self._timers.close()
