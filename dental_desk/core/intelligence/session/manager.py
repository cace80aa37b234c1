"""In-memory session store with idle expiry."""

import asyncio
import logging
from dataclasses import fields
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from dental_desk.config import settings
from .models import Session


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


logger = logging.getLogger(__name__)

_SESSION_FIELDS = {f.name for f in fields(Session)}


class SessionStore:
    """
    Process-memory session store keyed by conversation id.

    Sessions idle for longer than the timeout are removed by a background
    sweep task; ``get`` also replaces an expired session it happens to find.
    Nothing survives a restart.
    """

    def __init__(
        self,
        timeout_minutes: Optional[int] = None,
        sweep_interval_seconds: Optional[int] = None,
        max_history: Optional[int] = None,
    ):
        """Initialize session store.

        Args:
            timeout_minutes: Idle minutes before a session expires
            sweep_interval_seconds: Seconds between background sweeps
            max_history: Conversation turns kept per session
        """
        self._sessions: dict[str, Session] = {}
        self._timeout = timedelta(
            minutes=timeout_minutes if timeout_minutes is not None else settings.session_timeout_minutes
        )
        self._sweep_interval = (
            sweep_interval_seconds
            if sweep_interval_seconds is not None
            else settings.session_sweep_interval_seconds
        )
        self._max_history = max_history or settings.session_max_history
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._sessions

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def is_expired(self, session: Session, now: Optional[datetime] = None) -> bool:
        """Check whether a session has been idle longer than the timeout."""
        return (now or _utcnow()) - session.last_activity > self._timeout

    def get(self, conversation_id: str) -> Session:
        """
        Get the session for a conversation, creating it if needed.

        Args:
            conversation_id: Conversation identifier

        Returns:
            Existing live session, or a fresh one when absent or expired
        """
        session = self._sessions.get(conversation_id)

        if session is not None and self.is_expired(session):
            logger.info(f"Session {conversation_id} expired, starting fresh")
            session = None

        if session is None:
            session = Session(conversation_id=conversation_id, max_history=self._max_history)
            self._sessions[conversation_id] = session
            logger.debug(f"Session created: {conversation_id}")

        session.last_activity = _utcnow()
        return session

    def update(self, conversation_id: str, **changes: Any) -> Session:
        """
        Shallow-merge fields into a session and refresh its activity time.

        Raises:
            AttributeError: If a field name is not a session field
        """
        unknown = set(changes) - _SESSION_FIELDS
        if unknown:
            raise AttributeError(f"Unknown session fields: {sorted(unknown)}")

        session = self._sessions.get(conversation_id)
        if session is None:
            session = self.get(conversation_id)

        for name, value in changes.items():
            setattr(session, name, value)
        session.last_activity = _utcnow()
        return session

    def save(self, session: Session) -> None:
        """Store a session object and refresh its activity time."""
        session.last_activity = _utcnow()
        self._sessions[session.conversation_id] = session

    def end(self, conversation_id: str) -> bool:
        """Remove a session immediately.

        Returns:
            True if a session was removed
        """
        removed = self._sessions.pop(conversation_id, None)
        if removed is not None:
            logger.info(f"Session ended: {conversation_id}")
        return removed is not None

    def peek(self, conversation_id: str) -> Optional[Session]:
        """Look at a session without creating or touching it."""
        return self._sessions.get(conversation_id)

    def sweep(self) -> int:
        """Remove every idle-expired session.

        Returns:
            Number of sessions removed
        """
        now = _utcnow()
        expired = [
            conversation_id
            for conversation_id, session in list(self._sessions.items())
            if self.is_expired(session, now)
        ]
        for conversation_id in expired:
            self._sessions.pop(conversation_id, None)

        if expired:
            logger.info(f"Swept {len(expired)} idle session(s), {len(self._sessions)} active")
        return len(expired)

    async def start(self) -> None:
        """Start the background sweep task."""
        if self.is_sweeping:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"Session sweeper started (timeout={self._timeout}, every {self._sweep_interval}s)"
        )

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
        logger.info("Session sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Session sweep failed: {e}", exc_info=True)


# Singleton
_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Get singleton SessionStore."""
    global _store
    if _store is None:
        _store = SessionStore()
    return _store
