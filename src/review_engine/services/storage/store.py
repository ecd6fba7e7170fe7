"""Unified review engine storage layer."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from .challenge_repository import ChallengeRepository
from .database import create_database
from .review_repository import ReviewRepository
from .score_repository import ScoreRepository
from .submission_repository import SubmissionRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()


class ReviewStore:
    """Persistence facade grouping the repositories over one engine.

    Handles:
    - Challenges, match settings, participants, matches
    - Submissions and final-submission selection
    - Review assignments and votes
    - Score breakdowns
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.challenges = ChallengeRepository(engine)
        self.submissions = SubmissionRepository(engine)
        self.reviews = ReviewRepository(engine)
        self.scores = ScoreRepository(engine)

    @classmethod
    def from_url(cls, database_url: str) -> ReviewStore:
        """Open (and create tables for) the database at ``database_url``."""
        store = cls(create_database(database_url))
        logger.info("store_init", url=store.engine.url.render_as_string(hide_password=True))
        return store

    def close(self) -> None:
        self.engine.dispose()
