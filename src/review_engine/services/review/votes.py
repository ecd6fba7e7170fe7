"""Peer review vote submission."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict

from review_engine.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from review_engine.models import ChallengeStatus, MatchSetting, PeerReviewVote, VoteType
from review_engine.services.execution import parse_array

if TYPE_CHECKING:
    from review_engine.services.storage import ReviewStore

logger = structlog.get_logger()


class VotePayload(BaseModel):
    """A reviewer's vote as submitted."""

    model_config = ConfigDict(extra="ignore")

    vote: VoteType
    test_case_input: str | None = None
    expected_output: str | None = None

    @classmethod
    def parse(cls, data: VotePayload | Mapping[str, Any]) -> VotePayload:
        if isinstance(data, VotePayload):
            return data
        try:
            return cls.model_validate(dict(data))
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "payload"
            reason = "Invalid vote type" if field == "vote" else first["msg"]
            raise ValidationError(field, reason) from e


def _canonical(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def _is_public_input(setting: MatchSetting | None, test_input: list) -> bool:
    if setting is None:
        return False
    target = _canonical(test_input)
    for test in setting.public_tests or []:
        raw = test.get("input") if isinstance(test, dict) else None
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                continue
        if raw is not None and _canonical(raw) == target:
            return True
    return False


def validate_counter_example(
    test_case_input: str | None,
    expected_output: str | None,
    setting: MatchSetting | None,
) -> None:
    """Check the counter-example attached to an INCORRECT vote.

    Raises:
        ValidationError: Missing values, non-array values, an empty input, or
            an input that is one of the problem's public tests.
    """
    if not (test_case_input or "").strip() or not (expected_output or "").strip():
        raise ValidationError(
            "test_case_input",
            "This vote won't count until you provide both input and expected output",
        )

    parsed_input = parse_array(test_case_input)
    parsed_output = parse_array(expected_output)
    if parsed_input is None or parsed_output is None:
        raise ValidationError(
            "test_case_input", "Input and output must be valid array values (e.g., [1,2])."
        )
    if not parsed_input:
        raise ValidationError("test_case_input", "Input array cannot be empty.")
    if _is_public_input(setting, parsed_input):
        raise ValidationError(
            "test_case_input",
            "You cannot use public test cases. Please provide a different test case.",
        )


class VoteService:
    """Accept votes from assigned reviewers during the peer review phase."""

    def __init__(self, store: ReviewStore) -> None:
        self._store = store

    async def submit_vote(
        self,
        user_id: str,
        assignment_id: str,
        payload: VotePayload | Mapping[str, Any],
    ) -> PeerReviewVote:
        """Create or replace the requester's vote on an assignment.

        Raises:
            ValidationError: Malformed payload or counter-example.
            NotFoundError: Unknown assignment.
            StateError: The challenge is not in its peer review phase.
            PermissionDeniedError: The requester is not the assigned reviewer.
        """
        data = VotePayload.parse(payload)

        context = await self._store.reviews.get_assignment_context(assignment_id)
        if context is None:
            raise NotFoundError("Assignment", assignment_id)
        if context.challenge.status != ChallengeStatus.STARTED_PEER_REVIEW:
            raise StateError(
                "Peer review phase has ended",
                f"Challenge is in status '{context.challenge.status}'.",
            )
        if str(context.reviewer.student_id) != str(user_id):
            raise PermissionDeniedError("You are not the assigned reviewer for this solution")

        test_case_input = expected_output = None
        if data.vote == VoteType.INCORRECT:
            validate_counter_example(
                data.test_case_input, data.expected_output, context.match_setting
            )
            test_case_input = data.test_case_input
            expected_output = data.expected_output

        vote = await self._store.reviews.upsert_vote(
            assignment_id, data.vote, test_case_input, expected_output
        )
        logger.info(
            "vote_submitted",
            assignment_id=assignment_id,
            reviewer_id=context.reviewer.id,
            vote=data.vote,
        )
        return vote
