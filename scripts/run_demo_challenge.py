#!/usr/bin/env python
"""Run a complete peer review cycle on a small demo challenge.

Seeds a sorting challenge with four students into a local SQLite database,
assigns reviews, casts a few votes, closes the peer review phase and prints
the leaderboard. Code execution is simulated, so no execution service is
needed.
"""

import asyncio
import json
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from sqlmodel import Session

from review_engine.core.clock import utc_now
from review_engine.core.config import EngineConfig
from review_engine.models import (
    Challenge,
    ChallengeStatus,
    Match,
    MatchSetting,
    Participant,
    Submission,
    SubmissionStatus,
)
from review_engine.pipeline import create_pipeline
from review_engine.services.execution import FakeExecutionClient
from review_engine.services.storage import ReviewStore

load_dotenv()

DATABASE_PATH = Path("./runs/demo_challenge.db")

# Student code is a label the fake execution client maps to a behaviour.
STUDENT_CODE = {
    "alice": "sorted",
    "bob": "identity",
    "carol": "sorted",
    "dave": "sorted",
}

console = Console()


def _sorted(test_input: str) -> str:
    return json.dumps(sorted(json.loads(test_input)))


def _identity(test_input: str) -> str:
    return test_input


def seed_demo(store: ReviewStore) -> str:
    """Insert a challenge whose coding phase is over and finalized."""
    now = utc_now()
    challenge = Challenge(
        title="Sort an array",
        status=ChallengeStatus.ENDED_CODING,
        coding_duration_minutes=30,
        peer_review_duration_minutes=20,
        started_coding_at=now - timedelta(minutes=35),
        ended_coding_at=now - timedelta(minutes=5),
        finalization_completed_at=now - timedelta(minutes=4),
    )
    setting = MatchSetting(
        challenge_id=challenge.id,
        name="Ascending sort",
        reference_solution="sorted",
        language="python",
        public_tests=[{"input": "[3,1,2]", "output": "[1,2,3]"}],
    )
    rows: list = [challenge, setting]
    for student_id, code in STUDENT_CODE.items():
        participant = Participant(challenge_id=challenge.id, student_id=student_id)
        match = Match(
            challenge_id=challenge.id,
            match_setting_id=setting.id,
            participant_id=participant.id,
        )
        # Every student passed the visible tests; bob fails a hidden one.
        results = [{"passed": True}, {"passed": code != "identity"}]
        submission = Submission(
            match_id=match.id,
            participant_id=participant.id,
            code=code,
            status=SubmissionStatus.PROBABLY_CORRECT,
            is_final=True,
            private_test_results=results,
        )
        rows.extend([participant, match, submission])

    with Session(store.engine, expire_on_commit=False) as session:
        session.add_all(rows)
        session.commit()
    return challenge.id


async def main() -> None:
    """Run the demo challenge end to end."""
    DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
    DATABASE_PATH.unlink(missing_ok=True)

    config = EngineConfig(database_url=f"sqlite:///{DATABASE_PATH}")
    client = FakeExecutionClient(programs={"sorted": _sorted, "identity": _identity})
    store = ReviewStore.from_url(config.database_url)
    challenge_id = seed_demo(store)
    console.print(f"Seeded demo challenge: {challenge_id}")

    pipeline = create_pipeline(config, client, store)
    try:
        report = await pipeline.plan_assignments(challenge_id, 2)
        report.raise_for_status()
        console.print(f"Planned {report.results[0].total_assignments} review assignments")

        challenge = await store.challenges.get(challenge_id)
        challenge.status = ChallengeStatus.STARTED_PEER_REVIEW
        challenge.started_peer_review_at = utc_now()
        await store.challenges.save(challenge)

        participants = {p.id: p for p in await store.challenges.get_participants(challenge_id)}
        submissions = {s.id: s for s in await store.submissions.get_final_submissions(challenge_id)}
        for assignment in await store.reviews.get_challenge_assignments(challenge_id):
            reviewer = participants[assignment.reviewer_id]
            if reviewer.student_id == "dave":
                continue
            if submissions[assignment.submission_id].code == "identity":
                payload = {
                    "vote": "incorrect",
                    "test_case_input": "[5,4]",
                    "expected_output": "[4,5]",
                }
            else:
                payload = {"vote": "correct"}
            await pipeline.submit_vote(reviewer.student_id, assignment.id, payload)

        result = await pipeline.end_peer_review(challenge_id, allow_early=True)
        console.print(f"Peer review ended ({result.abstain_votes} abstain votes)")
        if result.scoring_error:
            console.print(f"[red]Scoring failed:[/red] {result.scoring_error}")
            return

        table = Table(title="Leaderboard")
        table.add_column("Student")
        table.add_column("Review", justify="right")
        table.add_column("Implementation", justify="right")
        table.add_column("Total", justify="right")
        for row in await store.scores.get_leaderboard(challenge_id):
            table.add_row(
                participants[row.participant_id].student_id,
                f"{row.code_review_score:.2f}",
                f"{row.implementation_score:.2f}",
                f"{row.total_score:.2f}",
            )
        console.print(table)
        console.print(f"Results stored in: {DATABASE_PATH}")
    finally:
        await pipeline.close()
        store.close()


if __name__ == "__main__":
    asyncio.run(main())
