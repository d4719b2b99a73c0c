"""Abstract interface for chat-history backends."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from services.types import ChatMessage, ChatSession, MessageUpdate, SessionUpdate


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class ReadOnlyStoreError(Exception):
    """Raised when a write is attempted on a backend that only mirrors another tool's data."""


class SessionStore(ABC):
    """Base class for session history backends.

    The owned relational store implements everything; the tool-log backend
    only implements the read side and refuses writes.
    """

    name: str

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[ChatSession]:
        """Return the session with its ordered messages, or None."""
        ...

    @abstractmethod
    def list_sessions(
        self,
        project_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[ChatSession]:
        """Return sessions, most recently updated first."""
        ...

    @abstractmethod
    def create_session(self, session: ChatSession) -> ChatSession:
        ...

    @abstractmethod
    def update_session(self, session_id: str, updates: SessionUpdate) -> Optional[ChatSession]:
        ...

    @abstractmethod
    def delete_session(self, session_id: str) -> bool:
        ...

    @abstractmethod
    def create_message(
        self, session_id: str, message: ChatMessage, touched_at: Optional[datetime] = None
    ) -> ChatMessage:
        ...

    @abstractmethod
    def get_messages(self, session_id: str) -> List[ChatMessage]:
        ...

    @abstractmethod
    def update_message(self, message_id: str, updates: MessageUpdate) -> Optional[ChatMessage]:
        ...

    @abstractmethod
    def delete_message(self, message_id: str) -> bool:
        ...
