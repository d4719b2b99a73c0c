"""Application-level facade over the session store with a read-through cache."""

import logging
import uuid
from typing import Dict, List, Optional, Tuple

from db.cli_logs import CliLogSessionStore
from db.store import SessionNotFoundError, SessionStore
from services.extraction import extract_assistant_content, extract_code_blocks, extract_command
from services.types import (
    ChatMessage, ChatSession, CodeBlock, CreateSessionRequest, MessageMetadata, NewMessage,
    SessionImportResult, SessionUpdate, SessionValidationError, bump, to_naive_utc, utcnow,
)

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the session cache.

    Writes always hit the store first and only then the cached copy, so a
    failed write never leaves the cache ahead of the database. Concurrent
    writers to the same session are not serialized.
    """

    def __init__(self, store: SessionStore, cli_logs: Optional[CliLogSessionStore] = None):
        self.store = store
        self.cli_logs = cli_logs
        self._cache: Dict[str, ChatSession] = {}

    # --- Reads

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        cached = self._cache.get(session_id)
        if cached is not None:
            return cached
        session = self.store.get_session(session_id)
        if session is not None:
            self._cache[session_id] = session
        return session

    def list_sessions(
        self, project_id: Optional[str] = None, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[ChatSession]:
        return self.store.list_sessions(project_id, limit, offset)

    def get_messages(self, session_id: str) -> Optional[List[ChatMessage]]:
        session = self.get_session(session_id)
        return session.messages if session is not None else None

    # --- Writes

    def create_session(self, data: CreateSessionRequest) -> ChatSession:
        messages = [self._build_message(m) for m in data.messages]
        # request order is transcript order
        for previous, message in zip(messages, messages[1:]):
            if message.timestamp <= previous.timestamp:
                message.timestamp = bump(previous.timestamp)
        now = utcnow()
        session = ChatSession(
            id=str(uuid.uuid4()),
            name=data.name,
            project_id=data.project_id,
            messages=messages,
            context=data.context,
            created_at=now,
            updated_at=now,
        )
        created = self.store.create_session(session)
        self._cache[created.id] = created
        logger.info("Created session %s (%d messages)", created.id, len(created.messages))
        return created

    def add_message(self, session_id: str, data: NewMessage) -> ChatMessage:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        message = self._build_message(data)
        # appended means last: never let a stale client timestamp sort it earlier
        if session.messages and message.timestamp < session.messages[-1].timestamp:
            message.timestamp = bump(session.messages[-1].timestamp)
        touched_at = bump(session.updated_at)
        self.store.create_message(session_id, message, touched_at=touched_at)

        session.messages.append(message)
        session.updated_at = touched_at
        return message

    def update_session(self, session_id: str, updates: SessionUpdate) -> ChatSession:
        updated = self.store.update_session(session_id, updates)
        if updated is None:
            self._cache.pop(session_id, None)
            raise SessionNotFoundError(session_id)
        self._cache[session_id] = updated
        return updated

    def remove_session(self, session_id: str) -> bool:
        removed = self.store.delete_session(session_id)
        self._cache.pop(session_id, None)
        return removed

    def remove_from_cache(self, session_id: str) -> None:
        self._cache.pop(session_id, None)

    def detach_project(self, project_id: str) -> int:
        """Orphan a deleted project's sessions instead of deleting their history."""
        count = self.store.clear_project(project_id)
        for session_id, session in list(self._cache.items()):
            if session.project_id == project_id:
                del self._cache[session_id]
        if count:
            logger.info("Detached %d sessions from deleted project %s", count, project_id)
        return count

    # --- Import from the CLI tool's own logs

    def import_cli_session(self, cli_session_id: str) -> SessionImportResult:
        if self.cli_logs is None:
            return SessionImportResult(
                success=False, errors=[SessionValidationError(field="import", message="CLI log import is not configured")]
            )
        session, errors = self.cli_logs.load(cli_session_id)
        if session is None:
            return SessionImportResult(success=False, errors=errors)

        existing = self.get_session(session.id)
        if existing is not None:
            return SessionImportResult(success=True, session=existing, warnings=["Session was already imported"])

        imported = self.store.create_session(session)
        self._cache[imported.id] = imported
        warnings = ["Session imported but no messages found"] if not imported.messages else []
        return SessionImportResult(success=True, session=imported, warnings=warnings)

    def sync_cli_sessions(self) -> int:
        """Import every CLI log session not yet in the store; returns how many were added."""
        if self.cli_logs is None or not self.cli_logs.is_available():
            logger.info("CLI session directory not found, skipping sync")
            return 0
        added = 0
        for cli_session_id in self.cli_logs.session_ids():
            if self.get_session(cli_session_id) is not None:
                continue
            result = self.import_cli_session(cli_session_id)
            if result.success:
                logger.info("Imported CLI session %s", cli_session_id)
                added += 1
            else:
                logger.warning("Skipped CLI session %s: %s", cli_session_id, [e.message for e in result.errors])
        return added

    # --- Validation / parsing

    @staticmethod
    def validate_session(data: dict) -> List[SessionValidationError]:
        """Field-level problems with a raw session payload. Does not consult the store."""
        errors: List[SessionValidationError] = []
        if not data.get("id"):
            errors.append(SessionValidationError(field="id", message="Session ID is required"))

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append(SessionValidationError(field="name", message="Session name is required", value=name))

        context = data.get("context")
        if not isinstance(context, dict):
            errors.append(SessionValidationError(field="context", message="Session context is required"))
        elif not context.get("workingDirectory") and not context.get("working_directory"):
            errors.append(SessionValidationError(
                field="context.workingDirectory", message="Working directory is required"
            ))

        if not isinstance(data.get("messages"), list):
            errors.append(SessionValidationError(
                field="messages", message="Messages must be an array", value=data.get("messages")
            ))
        return errors

    @staticmethod
    def extract_code_blocks(text: str) -> List[CodeBlock]:
        return extract_code_blocks(text)

    @staticmethod
    def extract_assistant_content(text: str) -> Tuple[str, List[CodeBlock]]:
        return extract_assistant_content(text)

    def _build_message(self, data: NewMessage) -> ChatMessage:
        metadata = data.metadata.model_copy(deep=True) if data.metadata else None
        if data.role == "user":
            command = extract_command(data.content)
            if command and (metadata is None or metadata.command is None):
                metadata = metadata or MessageMetadata()
                metadata.command = command
        if metadata is None or metadata.code_blocks is None:
            blocks = extract_code_blocks(data.content)
            if blocks:
                metadata = metadata or MessageMetadata()
                metadata.code_blocks = blocks
        return ChatMessage(
            id=str(uuid.uuid4()),
            role=data.role,
            content=data.content,
            timestamp=to_naive_utc(data.timestamp) if data.timestamp else utcnow(),
            metadata=metadata,
        )
