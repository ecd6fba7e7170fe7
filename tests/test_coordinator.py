"""Tests for coding phase finalization."""

import asyncio
from datetime import timedelta

import pytest

from conftest import add_rows, seed_challenge
from review_engine.core.config import FinalizationConfig
from review_engine.models import ChallengeStatus, Submission, SubmissionStatus
from review_engine.services.events import (
    CHALLENGE_UPDATED,
    FINALIZATION_UPDATED,
    EventBroadcaster,
    RecordingSubscriber,
)
from review_engine.services.finalization import FinalizationCoordinator, FinalizationStatus


@pytest.fixture
def recorder():
    return RecordingSubscriber()


@pytest.fixture
async def coordinator(store, clock, recorder):
    events = EventBroadcaster()
    events.subscribe(recorder)
    instance = FinalizationCoordinator(store, events, FinalizationConfig(), clock)
    yield instance
    await instance.close()


def _unfinalized(store, statuses):
    return seed_challenge(
        store, len(statuses), submission_statuses=statuses, finalization_completed=False
    )


class TestInFlightTracking:
    """Tests for the in-flight submission counter."""

    async def test_counter(self, coordinator):
        """Test mark and unmark adjust the count per challenge."""
        assert coordinator.mark_submission_in_flight("c1") == 1
        assert coordinator.mark_submission_in_flight("c1") == 2
        assert coordinator.in_flight_count("c2") == 0

        await coordinator.unmark_submission_in_flight("c1")
        assert coordinator.in_flight_count("c1") == 1

    async def test_unmark_never_negative(self, coordinator):
        """Test unmarking an idle challenge keeps the count at zero."""
        await coordinator.unmark_submission_in_flight("c1")
        assert coordinator.in_flight_count("c1") == 0

    async def test_blocks_completion(self, store, coordinator):
        """Test completion waits while a submission write is in flight."""
        seeded = _unfinalized(store, [SubmissionStatus.PROBABLY_CORRECT] * 2)
        coordinator.mark_submission_in_flight(seeded.id)

        result = await coordinator.maybe_complete_finalization(seeded.id)

        assert result.status == FinalizationStatus.PENDING_IN_FLIGHT
        assert result.in_flight == 1
        challenge = await store.challenges.get(seeded.id)
        assert challenge.finalization_completed_at is None

    async def test_track_submission_completes_on_exit(self, store, coordinator):
        """Test leaving the last tracked write triggers completion."""
        seeded = _unfinalized(store, [SubmissionStatus.PROBABLY_CORRECT] * 2)

        async with coordinator.track_submission(seeded.id):
            blocked = await coordinator.maybe_complete_finalization(seeded.id)
            assert blocked.status == FinalizationStatus.PENDING_IN_FLIGHT

        challenge = await store.challenges.get(seeded.id)
        assert challenge.finalization_completed_at is not None


class TestMaybeCompleteFinalization:
    """Tests for FinalizationCoordinator.maybe_complete_finalization."""

    async def test_unknown_challenge(self, coordinator):
        result = await coordinator.maybe_complete_finalization("missing")
        assert result.status == FinalizationStatus.CHALLENGE_NOT_FOUND

    async def test_wrong_phase(self, store, coordinator):
        """Test a challenge still in its coding phase is not finalized."""
        seeded = seed_challenge(store, 2, status=ChallengeStatus.STARTED_CODING)

        result = await coordinator.maybe_complete_finalization(seeded.id)

        assert result.status == FinalizationStatus.NOT_IN_CODING_PHASE_END
        assert result.challenge_status == ChallengeStatus.STARTED_CODING

    async def test_already_completed(self, store, coordinator):
        """Test a finalized challenge reports completion without changes."""
        seeded = seed_challenge(store, 2)

        result = await coordinator.maybe_complete_finalization(seeded.id)

        assert result.status == FinalizationStatus.ALREADY_COMPLETED
        assert result.is_completed

    async def test_completes_with_placeholders_and_selection(self, store, coordinator, recorder):
        """Test empty matches get placeholders and matches without a final get one chosen."""
        seeded = _unfinalized(store, [SubmissionStatus.PROBABLY_CORRECT, None, None])
        empty_match, open_match = seeded.matches[1], seeded.matches[2]
        author = seeded.participants[2].id
        manual = Submission(
            match_id=open_match.id,
            participant_id=author,
            status=SubmissionStatus.IMPROVABLE,
            updated_at=seeded.challenge.ended_coding_at,
        )
        automatic = Submission(
            match_id=open_match.id,
            participant_id=author,
            status=SubmissionStatus.PROBABLY_CORRECT,
            is_automatic_submission=True,
            updated_at=seeded.challenge.ended_coding_at - timedelta(minutes=1),
        )
        add_rows(store, manual, automatic)

        result = await coordinator.maybe_complete_finalization(seeded.id)

        assert result.status == FinalizationStatus.COMPLETED
        assert sorted(result.finalized_matches) == sorted([empty_match.id, open_match.id])

        placeholder = await store.submissions.get_for_match(empty_match.id)
        assert len(placeholder) == 1
        assert placeholder[0].is_final
        assert placeholder[0].is_automatic_submission
        assert placeholder[0].status == SubmissionStatus.WRONG

        finals = {s.match_id: s for s in await store.submissions.get_final_submissions(seeded.id)}
        assert len(finals) == 3
        assert finals[open_match.id].id == automatic.id

        names = recorder.names()
        assert names.count(FINALIZATION_UPDATED) == 2
        assert names[-1] == CHALLENGE_UPDATED

    async def test_exactly_once_under_concurrency(self, store, coordinator):
        """Test concurrent callers complete finalization exactly once."""
        seeded = _unfinalized(store, [SubmissionStatus.PROBABLY_CORRECT, None, None])

        results = await asyncio.gather(
            *(coordinator.maybe_complete_finalization(seeded.id) for _ in range(6))
        )

        statuses = [r.status for r in results]
        assert statuses.count(FinalizationStatus.COMPLETED) == 1
        assert set(statuses) == {
            FinalizationStatus.COMPLETED,
            FinalizationStatus.ALREADY_COMPLETED,
        }
        for match in seeded.matches[1:]:
            assert len(await store.submissions.get_for_match(match.id)) == 1
        assert seeded.id not in coordinator._challenge_locks

    async def test_completion_lock_dropped_once_settled(self, store, clock, coordinator):
        """Test the per-challenge lock lives only until finalization settles."""
        seeded = _unfinalized(store, [SubmissionStatus.PROBABLY_CORRECT] * 2)
        seeded.challenge.ended_coding_at = clock() - timedelta(seconds=5)
        await store.challenges.save(seeded.challenge)

        waiting = await coordinator.maybe_complete_finalization(seeded.id)
        assert waiting.status == FinalizationStatus.WITHIN_GRACE_PERIOD
        assert seeded.id in coordinator._challenge_locks

        clock.advance(60)
        done = await coordinator.maybe_complete_finalization(seeded.id)
        assert done.status == FinalizationStatus.COMPLETED
        assert seeded.id not in coordinator._challenge_locks

        again = await coordinator.maybe_complete_finalization(seeded.id)
        assert again.status == FinalizationStatus.ALREADY_COMPLETED
        assert coordinator._challenge_locks == {}

    async def test_within_grace_period(self, store, clock, coordinator):
        """Test completion waits for the grace period after the phase end."""
        seeded = _unfinalized(store, [SubmissionStatus.PROBABLY_CORRECT] * 2)
        seeded.challenge.ended_coding_at = clock() - timedelta(seconds=5)
        await store.challenges.save(seeded.challenge)

        result = await coordinator.maybe_complete_finalization(seeded.id)

        assert result.status == FinalizationStatus.WITHIN_GRACE_PERIOD
        assert result.remaining_seconds == pytest.approx(15.0)
        challenge = await store.challenges.get(seeded.id)
        assert challenge.finalization_completed_at is None

    async def test_recheck_after_grace_period(self, store, clock, recorder):
        """Test the scheduled recheck completes finalization once the grace period ends."""
        seeded = _unfinalized(store, [SubmissionStatus.PROBABLY_CORRECT] * 2)
        seeded.challenge.ended_coding_at = clock()
        await store.challenges.save(seeded.challenge)
        events = EventBroadcaster()
        events.subscribe(recorder)
        coordinator = FinalizationCoordinator(
            store, events, FinalizationConfig(grace_period_seconds=0.05), clock
        )

        first = await coordinator.maybe_complete_finalization(seeded.id)
        assert first.status == FinalizationStatus.WITHIN_GRACE_PERIOD

        clock.advance(1)
        await asyncio.sleep(0.3)
        await coordinator.close()

        challenge = await store.challenges.get(seeded.id)
        assert challenge.finalization_completed_at is not None
        assert CHALLENGE_UPDATED in recorder.names()
