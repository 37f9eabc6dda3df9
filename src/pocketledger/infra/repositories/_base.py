"""Session plumbing shared by the SQLModel repositories."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlmodel import Session

from ..database import SessionFactory


class SessionScopedRepository:
    """Base for repositories that join a caller's session or open their own.

    Mutations always run inside the caller's unit of work so that a record
    change and its balance delta commit together; reads may open a short-lived
    session and detach the returned rows.
    """

    def __init__(self, session_factory: SessionFactory):
        """Initialize with a session factory."""
        self.session_factory = session_factory

    @contextmanager
    def _session(self, session: Optional[Session]) -> Iterator[tuple[Session, bool]]:
        if session is not None:
            yield session, False
            return
        with self.session_factory() as own:
            yield own, True
