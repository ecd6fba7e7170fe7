"""Shared async repository helpers for SQLModel session work."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING, Generic, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

if TYPE_CHECKING:
    from sqlalchemy import Engine

T = TypeVar("T")


class AsyncRepository(Generic[T]):
    """Wrap sync SQLModel session work for async callers.

    Sessions never expire loaded objects on commit, so rows returned from a
    worker thread stay readable after the session closes.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    async def _run_session(self, fn: Callable[[Session], T]) -> T:
        """Run a sync function inside a Session on a worker thread."""

        def _run() -> T:
            with Session(self._engine, expire_on_commit=False) as session:
                return fn(session)

        return await asyncio.to_thread(_run)

    async def _run_transaction(self, fn: Callable[[Session], T]) -> T:
        """Run a sync function inside one transaction on a worker thread.

        The transaction commits when ``fn`` returns and rolls back when it
        raises.
        """

        def _run() -> T:
            with Session(self._engine, expire_on_commit=False) as session, session.begin():
                return fn(session)

        return await asyncio.to_thread(_run)

    async def _run_transaction_retrying(
        self, fn: Callable[[Session], T], attempts: int = 3
    ) -> T:
        """Like ``_run_transaction``, re-running ``fn`` after a unique-key conflict.

        A concurrent writer that inserted the same row first makes the
        transaction roll back; the next attempt sees that row.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            retry=retry_if_exception_type(IntegrityError),
            reraise=True,
        ):
            with attempt:
                return await self._run_transaction(fn)
        msg = "Transaction was not attempted"
        raise RuntimeError(msg)
