"""Read-only session backend over the CLI tool's own on-disk logs.

Layout: ``<sessions_dir>/<session id>/logs.json``, a JSON list of entries
``{"sessionId", "messageId", "type", "message", "timestamp"}``.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from db.store import ReadOnlyStoreError, SessionStore
from services.extraction import extract_code_blocks, extract_command
from services.types import (
    ChatMessage, ChatSession, MessageMetadata, SessionContext,
    SessionValidationError, to_naive_utc,
)

logger = logging.getLogger(__name__)

LOG_FILE = "logs.json"
LOG_ROLES = ("user", "assistant")


def _parse_timestamp(value: str) -> datetime:
    # fromisoformat only understands a trailing Z from 3.11 on
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(value))


def validate_logs(logs) -> List[SessionValidationError]:
    errors: List[SessionValidationError] = []
    if not isinstance(logs, list):
        errors.append(SessionValidationError(field="logs", message="Logs must be an array"))
        return errors

    for i, log in enumerate(logs):
        if not isinstance(log, dict):
            errors.append(SessionValidationError(field=f"logs[{i}]", message="Log entry must be an object"))
            continue
        if not log.get("sessionId"):
            errors.append(SessionValidationError(field=f"logs[{i}].sessionId", message="Session ID is required"))
        if log.get("type") not in LOG_ROLES:
            errors.append(SessionValidationError(
                field=f"logs[{i}].type", message='Type must be "user" or "assistant"', value=log.get("type"),
            ))
        if not log.get("message"):
            errors.append(SessionValidationError(field=f"logs[{i}].message", message="Message is required"))
        if not log.get("timestamp"):
            errors.append(SessionValidationError(field=f"logs[{i}].timestamp", message="Timestamp is required"))
        else:
            try:
                _parse_timestamp(str(log["timestamp"]))
            except ValueError:
                errors.append(SessionValidationError(
                    field=f"logs[{i}].timestamp", message="Timestamp is not ISO-8601", value=log["timestamp"],
                ))
    return errors


class CliLogSessionStore(SessionStore):
    name = "cli_logs"

    def __init__(self, sessions_dir: Path):
        self.sessions_dir = Path(sessions_dir)

    def is_available(self) -> bool:
        return self.sessions_dir.is_dir()

    def session_ids(self) -> List[str]:
        if not self.is_available():
            return []
        return sorted(p.name for p in self.sessions_dir.iterdir() if p.is_dir())

    def load(self, session_id: str) -> Tuple[Optional[ChatSession], List[SessionValidationError]]:
        """Parse one session directory; returns the session or the reasons it was rejected."""
        session_path = self.sessions_dir / session_id
        logs_path = session_path / LOG_FILE
        # one directory level only: no separators, no dot entries
        if not session_id or session_id in (".", "..") or "/" in session_id or "\\" in session_id or not logs_path.is_file():
            return None, [SessionValidationError(field="sessionId", message="Session not found or invalid", value=session_id)]

        try:
            logs = json.loads(logs_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            return None, [SessionValidationError(field="logs", message=f"Unreadable logs: {e}")]

        errors = validate_logs(logs)
        if errors:
            return None, errors

        messages = []
        for log in logs:
            role = log["type"]
            text = log["message"]
            if role == "user":
                metadata = MessageMetadata(command=extract_command(text))
            else:
                metadata = MessageMetadata(code_blocks=extract_code_blocks(text) or None)
            message_id = log.get("messageId")
            messages.append(ChatMessage(
                id=f"{session_id}-{message_id}" if message_id is not None else str(uuid.uuid4()),
                role=role,
                content=text,
                timestamp=_parse_timestamp(str(log["timestamp"])),
                metadata=metadata,
            ))
        messages.sort(key=lambda m: m.timestamp)

        stat = session_path.stat()
        session = ChatSession(
            id=session_id,
            name=f"Gemini CLI: {session_id[:8]}",
            messages=messages,
            context=SessionContext(files=[], working_directory=str(session_path)),
            created_at=to_naive_utc(datetime.fromtimestamp(stat.st_ctime, timezone.utc)),
            updated_at=to_naive_utc(datetime.fromtimestamp(stat.st_mtime, timezone.utc)),
        )
        return session, []

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        session, errors = self.load(session_id)
        if errors and (self.sessions_dir / session_id / LOG_FILE).is_file():
            logger.warning("Invalid logs in session %s: %s", session_id, [e.message for e in errors])
        return session

    def list_sessions(self, project_id=None, limit=None, offset=None) -> List[ChatSession]:
        # tool logs know nothing about projects
        if project_id:
            return []
        sessions = [s for s in (self.get_session(sid) for sid in self.session_ids()) if s is not None]
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        start = offset or 0
        return sessions[start:start + limit] if limit else sessions[start:]

    def create_session(self, session):
        raise ReadOnlyStoreError("CLI session logs are read-only")

    def update_session(self, session_id, updates):
        raise ReadOnlyStoreError("CLI session logs are read-only")

    def delete_session(self, session_id):
        raise ReadOnlyStoreError("CLI session logs are read-only")

    def create_message(self, session_id, message, touched_at=None):
        raise ReadOnlyStoreError("CLI session logs are read-only")

    def get_messages(self, session_id: str) -> List[ChatMessage]:
        session = self.get_session(session_id)
        return session.messages if session else []

    def update_message(self, message_id, updates):
        raise ReadOnlyStoreError("CLI session logs are read-only")

    def delete_message(self, message_id):
        raise ReadOnlyStoreError("CLI session logs are read-only")
