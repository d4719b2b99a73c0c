"""Domain types shared by the stores, the services and the HTTP layer.

Attributes are snake_case in Python; JSON uses camelCase aliases and both
spellings are accepted on input.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Role = Literal["user", "assistant", "system"]

DEFAULT_SESSION_NAME = "New chat"


def utcnow() -> datetime:
    """Naive UTC now; SQLite drops tzinfo so everything stays naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def bump(previous: Optional[datetime]) -> datetime:
    """A timestamp strictly after `previous` (or now)."""
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Sessions

class CodeBlock(CamelModel):
    id: str
    language: str = "text"
    content: str
    filename: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None


class MessageMetadata(CamelModel):
    command: Optional[str] = None
    files: Optional[List[str]] = None
    code_blocks: Optional[List[CodeBlock]] = None


class ChatMessage(CamelModel):
    id: str
    role: Role
    content: str
    timestamp: datetime
    metadata: Optional[MessageMetadata] = None


class NewMessage(CamelModel):
    role: Role
    content: str
    timestamp: Optional[datetime] = None
    metadata: Optional[MessageMetadata] = None


class MessageUpdate(CamelModel):
    content: Optional[str] = None
    metadata: Optional[MessageMetadata] = None


class SessionContext(CamelModel):
    files: List[str] = Field(default_factory=list)
    working_directory: str


class ContextUpdate(CamelModel):
    files: Optional[List[str]] = None
    working_directory: Optional[str] = Field(None, min_length=1)


class ChatSession(CamelModel):
    id: str
    name: str
    project_id: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    context: SessionContext
    created_at: datetime
    updated_at: datetime


class CreateSessionRequest(CamelModel):
    name: str = Field(..., min_length=1)
    project_id: Optional[str] = None
    context: SessionContext
    messages: List[NewMessage] = Field(default_factory=list)


class SessionUpdate(CamelModel):
    """Partial update. `project_id` is written whenever it is explicitly set, even to null."""
    name: Optional[str] = Field(None, min_length=1)
    project_id: Optional[str] = None
    context: Optional[ContextUpdate] = None

    @property
    def sets_project(self) -> bool:
        return "project_id" in self.model_fields_set


class SessionValidationError(CamelModel):
    field: str
    message: str
    value: Optional[Any] = None


class SessionImportResult(CamelModel):
    success: bool
    session: Optional[ChatSession] = None
    errors: List[SessionValidationError] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class User(CamelModel):
    id: str
    name: str
    email: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# --- Projects

class Project(CamelModel):
    id: str
    name: str
    path: str
    description: Optional[str] = None
    chat_sessions: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class CreateProjectRequest(CamelModel):
    name: str
    path: str
    description: Optional[str] = None


class ProjectUpdate(CamelModel):
    name: Optional[str] = None
    path: Optional[str] = None
    description: Optional[str] = None
