"""Coding phase finalization gate.

The coordinator tracks how many submission writes are in flight per challenge
and completes the coding phase finalization once none are left and the grace
period after the phase end has passed. Completion is a conditional update of
``finalization_completed_at``, so it happens exactly once per phase end even
with concurrent callers.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from review_engine.core.clock import ensure_utc, utc_now
from review_engine.core.config import FinalizationConfig
from review_engine.models import ChallengeStatus
from review_engine.services.events import CHALLENGE_UPDATED, FINALIZATION_UPDATED, EventBroadcaster

from .selection import choose_final_submission
from .timers import TimerRegistry

if TYPE_CHECKING:
    from review_engine.services.storage import ReviewStore

logger = structlog.get_logger()


class FinalizationStatus(StrEnum):
    PENDING_IN_FLIGHT = "pending_in_flight"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    NOT_IN_CODING_PHASE_END = "not_in_coding_phase_end"
    ALREADY_COMPLETED = "already_completed"
    WITHIN_GRACE_PERIOD = "within_grace_period"
    COMPLETED = "completed"
    NOT_UPDATED = "not_updated"


@dataclass
class FinalizationResult:
    status: FinalizationStatus
    in_flight: int = 0
    challenge_status: str | None = None
    remaining_seconds: float | None = None
    completed_at: datetime | None = None
    finalized_matches: list[str] = field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.status in (FinalizationStatus.COMPLETED, FinalizationStatus.ALREADY_COMPLETED)


# Outcomes after which a challenge needs no completion lock.
_SETTLED = frozenset(
    {
        FinalizationStatus.COMPLETED,
        FinalizationStatus.ALREADY_COMPLETED,
        FinalizationStatus.CHALLENGE_NOT_FOUND,
    }
)

class FinalizationCoordinator:
    """Process-wide finalization state for every challenge.

    Construct one per process and ``close`` it at shutdown.
    """

    def __init__(
        self,
        store: ReviewStore,
        events: EventBroadcaster | None = None,
        config: FinalizationConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._events = events or EventBroadcaster()
        self._config = config or FinalizationConfig()
        self._clock = clock
        self._in_flight: dict[str, int] = {}
        self._counter_lock = threading.Lock()
        self._challenge_locks: dict[str, asyncio.Lock] = {}
        self._rechecks = TimerRegistry()

    # ==================== In-flight tracking ====================

    def in_flight_count(self, challenge_id: str) -> int:
        with self._counter_lock:
            return self._in_flight.get(challenge_id, 0)

    def mark_submission_in_flight(self, challenge_id: str) -> int:
        with self._counter_lock:
            count = self._in_flight.get(challenge_id, 0) + 1
            self._in_flight[challenge_id] = count
        return count

    async def unmark_submission_in_flight(self, challenge_id: str) -> FinalizationResult:
        """Decrement the counter and try to complete finalization."""
        with self._counter_lock:
            count = max(0, self._in_flight.get(challenge_id, 0) - 1)
            if count == 0:
                self._in_flight.pop(challenge_id, None)
            else:
                self._in_flight[challenge_id] = count
        return await self.maybe_complete_finalization(challenge_id)

    @asynccontextmanager
    async def track_submission(self, challenge_id: str) -> AsyncIterator[None]:
        """Hold the challenge's finalization open while a submission is written."""
        self.mark_submission_in_flight(challenge_id)
        try:
            yield
        finally:
            await self.unmark_submission_in_flight(challenge_id)

    # ==================== Completion ====================

    def _lock_for(self, challenge_id: str) -> asyncio.Lock:
        with self._counter_lock:
            lock = self._challenge_locks.get(challenge_id)
            if lock is None:
                lock = asyncio.Lock()
                self._challenge_locks[challenge_id] = lock
            return lock

    def _release_lock(self, challenge_id: str, lock: asyncio.Lock) -> None:
        # Late waiters on a dropped lock only observe the settled state.
        with self._counter_lock:
            if self._challenge_locks.get(challenge_id) is lock:
                del self._challenge_locks[challenge_id]

    async def maybe_complete_finalization(self, challenge_id: str) -> FinalizationResult:
        """Complete the coding phase finalization if nothing blocks it.

        Blocked while submissions are in flight, outside the ended_coding
        phase, or within the grace period (a recheck is scheduled for when it
        runs out). Otherwise placeholders and final submissions are settled
        and ``finalization_completed_at`` is set by a conditional update.
        """
        in_flight = self.in_flight_count(challenge_id)
        if in_flight > 0:
            return FinalizationResult(FinalizationStatus.PENDING_IN_FLIGHT, in_flight=in_flight)

        lock = self._lock_for(challenge_id)
        async with lock:
            result = await self._complete_locked(challenge_id)
        if result.status in _SETTLED:
            self._release_lock(challenge_id, lock)
        return result

    async def _complete_locked(self, challenge_id: str) -> FinalizationResult:
        challenge = await self._store.challenges.get(challenge_id)
        if challenge is None:
            return FinalizationResult(FinalizationStatus.CHALLENGE_NOT_FOUND)
        if challenge.status != ChallengeStatus.ENDED_CODING:
            return FinalizationResult(
                FinalizationStatus.NOT_IN_CODING_PHASE_END, challenge_status=challenge.status
            )
        if challenge.finalization_completed_at is not None:
            return FinalizationResult(
                FinalizationStatus.ALREADY_COMPLETED,
                challenge_status=challenge.status,
                completed_at=ensure_utc(challenge.finalization_completed_at),
            )

        ended_at = ensure_utc(challenge.ended_coding_at)
        if ended_at is not None:
            elapsed = (self._clock() - ended_at).total_seconds()
            remaining = self._config.grace_period_seconds - elapsed
            if remaining > 0:
                self._rechecks.schedule_if_absent(
                    challenge_id, remaining, lambda: self.maybe_complete_finalization(challenge_id)
                )
                logger.debug(
                    "finalization_grace_period", challenge_id=challenge_id, remaining=remaining
                )
                return FinalizationResult(
                    FinalizationStatus.WITHIN_GRACE_PERIOD,
                    challenge_status=challenge.status,
                    remaining_seconds=remaining,
                )

        finalized_matches: list[str] = []
        try:
            finalized_matches = await self._store.submissions.finalize_missing(
                challenge_id, choose_final_submission
            )
        except Exception as e:
            logger.error(
                "finalize_missing_submissions_failed", challenge_id=challenge_id, error=str(e)
            )

        for match_id in finalized_matches:
            self._events.publish(
                FINALIZATION_UPDATED, {"challenge_id": challenge_id, "match_id": match_id}
            )

        completed_at = self._clock()
        if not await self._store.challenges.complete_finalization(challenge_id, completed_at):
            return FinalizationResult(
                FinalizationStatus.NOT_UPDATED,
                challenge_status=challenge.status,
                finalized_matches=finalized_matches,
            )

        self._rechecks.cancel(challenge_id)
        self._events.publish(
            CHALLENGE_UPDATED,
            {
                "challenge_id": challenge_id,
                "status": ChallengeStatus.ENDED_CODING.value,
                "finalization_completed_at": completed_at.isoformat(),
            },
        )
        logger.info(
            "coding_phase_finalized",
            challenge_id=challenge_id,
            finalized_matches=len(finalized_matches),
        )
        return FinalizationResult(
            FinalizationStatus.COMPLETED,
            challenge_status=ChallengeStatus.ENDED_CODING,
            completed_at=completed_at,
            finalized_matches=finalized_matches,
        )

    async def close(self) -> None:
        await self._rechecks.close()
