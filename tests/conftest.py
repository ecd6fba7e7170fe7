"""Shared fixtures: a file-backed SQLite store and challenge seeding helpers."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest
from sqlmodel import Session

from review_engine.models import (
    Challenge,
    ChallengeStatus,
    Match,
    MatchSetting,
    Participant,
    Submission,
    SubmissionStatus,
)
from review_engine.services.storage import ReviewStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

REFERENCE = "reference"
PASSING_TESTS = [{"passed": True}, {"passed": True}]
FAILING_TESTS = [{"passed": True}, {"passed": False}]


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class SeededChallenge:
    challenge: Challenge
    setting: MatchSetting
    participants: list[Participant] = field(default_factory=list)
    matches: list[Match] = field(default_factory=list)
    submissions: list[Submission] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.challenge.id


def add_rows(store: ReviewStore, *rows) -> None:
    with Session(store.engine, expire_on_commit=False) as session:
        for row in rows:
            session.add(row)
        session.commit()


def seed_challenge(
    store: ReviewStore,
    participant_count: int,
    status: str = ChallengeStatus.ENDED_CODING,
    submission_statuses: list[str | None] | None = None,
    finalization_completed: bool = True,
    reference_solution: str | None = REFERENCE,
) -> SeededChallenge:
    """Create one challenge with one match setting and a match per participant.

    ``submission_statuses[i]`` is the status of participant ``i``'s final
    submission, or None for no submission at all. Defaults to every
    participant holding a PROBABLY_CORRECT final submission.
    """
    challenge = Challenge(
        title="Sorting",
        status=status,
        coding_duration_minutes=30,
        peer_review_duration_minutes=20,
        started_coding_at=T0 - timedelta(minutes=40),
        ended_coding_at=T0 - timedelta(minutes=10),
        finalization_completed_at=T0 - timedelta(minutes=9) if finalization_completed else None,
    )
    setting = MatchSetting(
        challenge_id=challenge.id,
        name="Sort an array",
        reference_solution=reference_solution,
        language="python",
        public_tests=[{"input": "[3,1,2]", "output": "[1,2,3]"}],
    )
    seeded = SeededChallenge(challenge, setting)
    rows: list = [challenge, setting]

    if submission_statuses is None:
        submission_statuses = [SubmissionStatus.PROBABLY_CORRECT] * participant_count

    for index in range(participant_count):
        participant = Participant(challenge_id=challenge.id, student_id=f"student-{index}")
        match = Match(
            challenge_id=challenge.id,
            match_setting_id=setting.id,
            participant_id=participant.id,
        )
        seeded.participants.append(participant)
        seeded.matches.append(match)
        rows.extend([participant, match])

        status_value = submission_statuses[index]
        if status_value is None:
            continue
        submission = Submission(
            match_id=match.id,
            participant_id=participant.id,
            code=f"code-{index}",
            status=status_value,
            is_final=True,
            private_test_results=PASSING_TESTS,
        )
        seeded.submissions.append(submission)
        rows.append(submission)

    add_rows(store, *rows)
    return seeded


@pytest.fixture
def store(tmp_path):
    """Fresh SQLite-backed store per test."""
    review_store = ReviewStore.from_url(f"sqlite:///{tmp_path / 'review.db'}")
    yield review_store
    review_store.close()


@pytest.fixture
def clock():
    return FixedClock()
