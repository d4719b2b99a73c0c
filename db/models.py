from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, JSON, Text, Index, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship

from services.types import utcnow

Base = declarative_base()

class User(Base):
    """Reserved for multi-user support; nothing assigns users to sessions yet."""
    __tablename__ = "users"
    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(320), unique=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    sessions = relationship("ChatSessionRow", back_populates="user", passive_deletes=True)

class ChatSessionRow(Base):
    __tablename__ = "sessions"
    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    project_id = Column(String(64))                    # project document id, no FK (projects live on disk)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"))
    context_files = Column(JSON, nullable=False, default=list)
    working_directory = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="sessions")
    messages = relationship(
        "MessageRow",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MessageRow.timestamp",
    )

    __table_args__ = (
        Index("ix_sessions_project_id", "project_id"),
        Index("ix_sessions_user_id", "user_id"),
        Index("ix_sessions_updated_at", "updated_at"),
    )

class MessageRow(Base):
    __tablename__ = "messages"
    id = Column(String(64), primary_key=True)
    session_id = Column(String(64), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(16), nullable=False)          # "user" | "assistant" | "system"
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    meta = Column("metadata", JSON)                    # command / files; code blocks live in their own table
    created_at = Column(DateTime, default=utcnow, nullable=False)

    session = relationship("ChatSessionRow", back_populates="messages")
    code_blocks = relationship(
        "CodeBlockRow",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CodeBlockRow.position",
    )

    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant', 'system')", name="ck_messages_role"),
        Index("ix_messages_session_timestamp", "session_id", "timestamp"),
    )

class CodeBlockRow(Base):
    __tablename__ = "code_blocks"
    id = Column(String(64), primary_key=True)
    message_id = Column(String(64), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)   # creation order within the message
    language = Column(String(64), nullable=False)
    content = Column(Text, nullable=False)
    filename = Column(Text)
    start_line = Column(Integer)
    end_line = Column(Integer)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    message = relationship("MessageRow", back_populates="code_blocks")

    __table_args__ = (Index("ix_code_blocks_message_id", "message_id"),)
