# db/dal.py: relational session store on SQLAlchemy
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session, selectinload, sessionmaker

from db.models import ChatSessionRow, CodeBlockRow, MessageRow, User as UserRow
from db.store import SessionNotFoundError, SessionStore
from services.types import (
    ChatMessage, ChatSession, CodeBlock, MessageMetadata, MessageUpdate,
    SessionContext, SessionUpdate, User, bump,
)

logger = logging.getLogger(__name__)


# --- Mapping helpers

def _meta_json(metadata: Optional[MessageMetadata]) -> Optional[dict]:
    # code blocks are stored as rows, the rest stays JSON
    if metadata is None:
        return None
    return metadata.model_dump(exclude={"code_blocks"}, exclude_none=True)

def _block_rows(metadata: Optional[MessageMetadata]) -> List[CodeBlockRow]:
    blocks = (metadata.code_blocks if metadata else None) or []
    return [
        CodeBlockRow(
            id=b.id, position=i, language=b.language, content=b.content,
            filename=b.filename, start_line=b.start_line, end_line=b.end_line,
        )
        for i, b in enumerate(blocks)
    ]

def _message_row(session_id: str, message: ChatMessage) -> MessageRow:
    return MessageRow(
        id=message.id,
        session_id=session_id,
        role=message.role,
        content=message.content,
        timestamp=message.timestamp,
        meta=_meta_json(message.metadata),
        code_blocks=_block_rows(message.metadata),
    )

def _to_message(row: MessageRow) -> ChatMessage:
    blocks = [
        CodeBlock(
            id=b.id, language=b.language, content=b.content,
            filename=b.filename, start_line=b.start_line, end_line=b.end_line,
        )
        for b in row.code_blocks
    ]
    metadata = None
    if row.meta is not None or blocks:
        metadata = MessageMetadata(**(row.meta or {}))
        if blocks:
            metadata.code_blocks = blocks
    return ChatMessage(
        id=row.id, role=row.role, content=row.content,
        timestamp=row.timestamp, metadata=metadata,
    )

def _to_session(row: ChatSessionRow, messages: List[ChatMessage]) -> ChatSession:
    return ChatSession(
        id=row.id,
        name=row.name,
        project_id=row.project_id,
        messages=messages,
        context=SessionContext(files=list(row.context_files or []), working_directory=row.working_directory),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

def _to_user(row: UserRow) -> User:
    return User(id=row.id, name=row.name, email=row.email, created_at=row.created_at, updated_at=row.updated_at)


class SqlSessionStore(SessionStore):
    """Owned chat history: sessions, messages and code blocks in one database."""

    name = "sql"

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        db = self._sessions()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            logger.warning("Rolled back chat store transaction", exc_info=True)
            raise
        finally:
            db.close()

    @contextmanager
    def _read(self) -> Iterator[Session]:
        db = self._sessions()
        try:
            yield db
        finally:
            db.close()

    def _load_messages(self, db: Session, session_id: str) -> List[ChatMessage]:
        rows = (
            db.query(MessageRow)
            .options(selectinload(MessageRow.code_blocks))
            .filter(MessageRow.session_id == session_id)
            .order_by(MessageRow.timestamp.asc(), MessageRow.created_at.asc())
            .all()
        )
        return [_to_message(r) for r in rows]

    # --- Sessions

    def create_session(self, session: ChatSession) -> ChatSession:
        with self._transaction() as db:
            db.add(ChatSessionRow(
                id=session.id,
                name=session.name,
                project_id=session.project_id,
                context_files=list(session.context.files),
                working_directory=session.context.working_directory,
                created_at=session.created_at,
                updated_at=session.updated_at,
            ))
            db.flush()
            for message in session.messages:
                db.add(_message_row(session.id, message))
        return self.get_session(session.id)

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        with self._read() as db:
            row = db.get(ChatSessionRow, session_id)
            if row is None:
                return None
            return _to_session(row, self._load_messages(db, session_id))

    def update_session(self, session_id: str, updates: SessionUpdate) -> Optional[ChatSession]:
        with self._transaction() as db:
            row = db.get(ChatSessionRow, session_id)
            if row is None:
                return None
            if updates.name is not None:
                row.name = updates.name
            if updates.sets_project:
                row.project_id = updates.project_id
            if updates.context is not None:
                if updates.context.files is not None:
                    row.context_files = list(updates.context.files)
                if updates.context.working_directory is not None:
                    row.working_directory = updates.context.working_directory
            row.updated_at = bump(row.updated_at)
        return self.get_session(session_id)

    def delete_session(self, session_id: str) -> bool:
        # messages and code blocks go with it (ON DELETE CASCADE)
        with self._transaction() as db:
            row = db.get(ChatSessionRow, session_id)
            if row is None:
                return False
            db.delete(row)
        return True

    def list_sessions(
        self,
        project_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[ChatSession]:
        with self._read() as db:
            qry = db.query(ChatSessionRow)
            if project_id:
                qry = qry.filter(ChatSessionRow.project_id == project_id)
            qry = qry.order_by(ChatSessionRow.updated_at.desc())
            if offset:
                qry = qry.offset(offset)
            if limit:
                qry = qry.limit(limit)
            return [_to_session(row, self._load_messages(db, row.id)) for row in qry.all()]

    def clear_project(self, project_id: str) -> int:
        """Detach every session from a project; returns how many were touched."""
        with self._transaction() as db:
            rows = db.query(ChatSessionRow).filter(ChatSessionRow.project_id == project_id).all()
            for row in rows:
                row.project_id = None
                row.updated_at = bump(row.updated_at)
            return len(rows)

    # --- Messages

    def create_message(
        self, session_id: str, message: ChatMessage, touched_at: Optional[datetime] = None
    ) -> ChatMessage:
        with self._transaction() as db:
            session_row = db.get(ChatSessionRow, session_id)
            if session_row is None:
                raise SessionNotFoundError(session_id)
            db.add(_message_row(session_id, message))
            session_row.updated_at = touched_at or bump(session_row.updated_at)
        return message

    def get_message(self, message_id: str) -> Optional[ChatMessage]:
        with self._read() as db:
            row = db.get(MessageRow, message_id)
            return _to_message(row) if row is not None else None

    def get_messages(self, session_id: str) -> List[ChatMessage]:
        with self._read() as db:
            return self._load_messages(db, session_id)

    def update_message(self, message_id: str, updates: MessageUpdate) -> Optional[ChatMessage]:
        with self._transaction() as db:
            row = db.get(MessageRow, message_id)
            if row is None:
                return None
            if updates.content is not None:
                row.content = updates.content
            if updates.metadata is not None:
                row.meta = _meta_json(updates.metadata)
                row.code_blocks = _block_rows(updates.metadata)
        return self.get_message(message_id)

    def delete_message(self, message_id: str) -> bool:
        with self._transaction() as db:
            row = db.get(MessageRow, message_id)
            if row is None:
                return False
            db.delete(row)
        return True

    # --- Users (reserved)

    def create_user(self, user_id: str, name: str, email: Optional[str] = None) -> User:
        with self._transaction() as db:
            row = UserRow(id=user_id, name=name, email=email)
            db.add(row)
            db.flush()
            return _to_user(row)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._read() as db:
            row = db.get(UserRow, user_id)
            return _to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._read() as db:
            row = db.query(UserRow).filter(UserRow.email == email).first()
            return _to_user(row) if row is not None else None
