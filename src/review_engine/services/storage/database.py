"""Engine construction for the review engine database."""

from __future__ import annotations

import structlog
from sqlalchemy import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel, create_engine

# Table registration.
import review_engine.models  # noqa: F401

logger = structlog.get_logger()


def create_database(database_url: str, *, create_tables: bool = True) -> Engine:
    """Create an engine for ``database_url`` and optionally its tables.

    Connections are not pooled; each repository call opens its own
    connection on the worker thread that runs it.
    """
    engine = create_engine(database_url, poolclass=NullPool)
    if create_tables:
        SQLModel.metadata.create_all(engine)
    logger.debug("database_ready", url=engine.url.render_as_string(hide_password=True))
    return engine
