"""In-process registry of live relay sessions."""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voicerelay.session import RelaySession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Process-wide mapping of session ID to live session.

    Sessions never share state through the registry; it exists so the
    server can count them and close them all at shutdown.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, RelaySession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def add(self, session: "RelaySession") -> None:
        """Register a session.

        Raises:
            ValueError: If a session with the same ID is already registered
        """
        if session.session_id in self._sessions:
            raise ValueError(f"Session already registered: {session.session_id}")
        self._sessions[session.session_id] = session
        logger.debug(
            "Session registered",
            extra={"session_id": session.session_id, "active_sessions": len(self._sessions)},
        )

    def remove(self, session_id: str) -> "RelaySession | None":
        """Unregister a session. Unknown IDs are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug(
                "Session unregistered",
                extra={"session_id": session_id, "active_sessions": len(self._sessions)},
            )
        return session

    def get(self, session_id: str) -> "RelaySession | None":
        return self._sessions.get(session_id)

    def sessions(self) -> list["RelaySession"]:
        """Snapshot of registered sessions."""
        return list(self._sessions.values())

    async def close_all(self, reason: str = "server_shutdown") -> None:
        """Close every registered session and clear the registry."""
        sessions = self.sessions()
        if sessions:
            logger.info("Closing active sessions", extra={"count": len(sessions)})
        for session in sessions:
            try:
                await session.close(reason=reason)
            except Exception as e:
                logger.warning(
                    "Error closing session",
                    extra={"session_id": session.session_id, "error": str(e)},
                )
        self._sessions.clear()
