"""Conversation history for one session.

Turns are stored in conversational order. The system prompt is never
stored; it is prepended when a completion request is built.
"""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Speaker of a turn."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """One utterance in the conversation."""

    role: Role
    content: str

    def as_message(self) -> dict[str, str]:
        """Chat-completion message form."""
        return {"role": self.role.value, "content": self.content}


class ConversationHistory:
    """Ordered turn history exclusively owned by one session.

    Append-only, except that when ``max_turns`` is set the oldest turns are
    evicted to stay within the cap. With no cap the history grows for the
    lifetime of the session.
    """

    def __init__(self, max_turns: int | None = None) -> None:
        if max_turns is not None and max_turns < 1:
            raise ValueError(f"max_turns must be >= 1, got {max_turns}")
        self.max_turns = max_turns
        self._turns: list[Turn] = []
        self.evicted = 0

    def __len__(self) -> int:
        return len(self._turns)

    def append_user(self, content: str) -> Turn:
        """Append a user turn."""
        return self._append(Turn(Role.USER, content))

    def append_assistant(self, content: str) -> Turn:
        """Append an assistant turn."""
        return self._append(Turn(Role.ASSISTANT, content))

    def _append(self, turn: Turn) -> Turn:
        self._turns.append(turn)
        if self.max_turns is not None and len(self._turns) > self.max_turns:
            overflow = len(self._turns) - self.max_turns
            del self._turns[:overflow]
            self.evicted += overflow
        return turn

    def turns(self) -> list[Turn]:
        """Snapshot of the stored turns, oldest first."""
        return list(self._turns)

    def to_messages(self, system_prompt: str | None = None) -> list[dict[str, str]]:
        """Build a chat-completion message list.

        Args:
            system_prompt: Prepended as a system message when given
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(turn.as_message() for turn in self._turns)
        return messages
