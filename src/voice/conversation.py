"""
Conversation log for a chat session.

Ordered, append-only sequence of messages rendered by the dashboard and sent to the
assistant as context. Messages are immutable once appended, except the single
in-progress assistant message that grows while a response streams in.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

KIND_MESSAGE = "message"
KIND_NOTICE = "notice"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Message:
    """A single user or assistant turn (or a UI notice)."""
    id: str
    role: str  # "user" or "assistant"
    content: str
    created_at: float = field(default_factory=time.time)
    kind: str = KIND_MESSAGE

    @property
    def is_notice(self) -> bool:
        return self.kind == KIND_NOTICE

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
            "kind": self.kind,
        }


LogListener = Callable[[str, Message], None]

LOG_APPEND = "append"
LOG_UPDATE = "update"
LOG_REMOVE = "remove"


class ConversationLog:
    """Owns every `Message` of the session."""

    def __init__(self, max_history_turns: int = 20, welcome_message: Optional[str] = None):
        self.max_history_turns = max_history_turns
        self._messages: List[Message] = []
        self._in_progress_id: Optional[str] = None
        self._listeners: List[LogListener] = []
        if welcome_message:
            self._append(Message(id="welcome", role=ROLE_ASSISTANT, content=welcome_message))

    def subscribe(self, listener: LogListener) -> None:
        """`listener` is called with (change, message) for every append, update and removal."""
        self._listeners.append(listener)

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def in_progress(self) -> Optional[Message]:
        if self._in_progress_id is None:
            return None
        return self._find(self._in_progress_id)

    def append_user(self, content: str) -> Message:
        return self._append(Message(id=_new_id(), role=ROLE_USER, content=content.strip()))

    def append_notice(self, content: str) -> Message:
        return self._append(Message(id=_new_id(), role=ROLE_ASSISTANT, content=content, kind=KIND_NOTICE))

    def begin_assistant(self) -> Message:
        """Start the in-progress assistant message (replacing a stale one, if any)."""
        if self._in_progress_id is not None:
            logger.warning("Discarding unfinished assistant message", message_id=self._in_progress_id)
            self.discard_in_progress()
        message = self._append(Message(id=_new_id(), role=ROLE_ASSISTANT, content=""))
        self._in_progress_id = message.id
        return message

    def append_chunk(self, chunk: str) -> Optional[Message]:
        if self._in_progress_id is None or not chunk:
            return None
        index = self._index(self._in_progress_id)
        updated = replace(self._messages[index], content=self._messages[index].content + chunk)
        self._messages[index] = updated
        self._notify(LOG_UPDATE, updated)
        return updated

    def finish_assistant(self) -> Optional[Message]:
        """Freeze the in-progress message. Empty responses are dropped."""
        if self._in_progress_id is None:
            return None
        message = self._find(self._in_progress_id)
        self._in_progress_id = None
        if message is not None and not message.content.strip():
            self._remove(message.id)
            return None
        return message

    def discard_in_progress(self) -> None:
        if self._in_progress_id is None:
            return
        self._remove(self._in_progress_id)
        self._in_progress_id = None

    def history(self) -> List[Dict[str, str]]:
        """Completed turns in assistant API format (rolling window, notices excluded)."""
        turns = [
            m for m in self._messages
            if m.kind == KIND_MESSAGE and m.id != self._in_progress_id and m.content
        ]
        max_messages = self.max_history_turns * 2
        if max_messages > 0 and len(turns) > max_messages:
            turns = turns[-max_messages:]
        return [{"role": m.role, "content": m.content} for m in turns]

    def clear(self) -> None:
        """Remove every message; listeners see one removal per message, newest first."""
        self._in_progress_id = None
        while self._messages:
            self._notify(LOG_REMOVE, self._messages.pop())

    def __len__(self) -> int:
        return len(self._messages)

    def _append(self, message: Message) -> Message:
        self._messages.append(message)
        self._notify(LOG_APPEND, message)
        return message

    def _index(self, message_id: str) -> int:
        for i, m in enumerate(self._messages):
            if m.id == message_id:
                return i
        raise KeyError(message_id)

    def _find(self, message_id: str) -> Optional[Message]:
        for m in self._messages:
            if m.id == message_id:
                return m
        return None

    def _remove(self, message_id: str) -> None:
        message = self._find(message_id)
        if message is None:
            return
        self._messages = [m for m in self._messages if m.id != message_id]
        self._notify(LOG_REMOVE, message)

    def _notify(self, change: str, message: Message) -> None:
        for listener in self._listeners:
            try:
                listener(change, message)
            except Exception as e:
                logger.warning("Conversation listener failed", error=str(e))
