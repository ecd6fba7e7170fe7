"""Choosing the final submission of a match."""

from __future__ import annotations

from collections.abc import Sequence

from review_engine.core.clock import ensure_utc
from review_engine.models import Submission, SubmissionStatus


def _latest(submissions: Sequence[Submission]) -> Submission | None:
    if not submissions:
        return None
    return max(submissions, key=lambda s: (ensure_utc(s.updated_at), s.id))


def choose_final_submission(submissions: Sequence[Submission]) -> Submission | None:
    """Pick the submission that becomes final for a match.

    The latest manual submission is compared with the latest automatic one
    (by ``updated_at``). The automatic one wins only when its status strictly
    outranks the manual one's; equal ranks keep the manual submission.
    """
    manual = _latest([s for s in submissions if not s.is_automatic_submission])
    automatic = _latest([s for s in submissions if s.is_automatic_submission])

    if manual is None:
        return automatic
    if automatic is None:
        return manual
    if SubmissionStatus.rank_of(automatic.status) > SubmissionStatus.rank_of(manual.status):
        return automatic
    return manual
