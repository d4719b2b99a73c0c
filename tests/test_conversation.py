"""Tests for the send-message round trip against a fake CLI."""

import pytest

from services.app_services import build_services
from services.conversation import derive_title, send_chat_message
from services.types import CreateProjectRequest, CreateSessionRequest, SessionContext


@pytest.fixture
def services(settings):
    services = build_services(settings)
    yield services
    services.engine.dispose()


def select_project(services, path):
    project = services.projects.create_project(CreateProjectRequest(name="Demo", path=str(path)))
    services.projects.set_current_project(project.id)
    return project


def test_derive_title():
    assert derive_title("hi", "Sure thing. Here is more.") == "Sure thing"
    assert derive_title("what is a monad?", "<p></p>") == "What is a monad"
    assert derive_title("", "") == "New chat"
    assert derive_title("", "x" * 100).endswith("…")


@pytest.mark.asyncio
async def test_stored_session_records_both_sides(services, workdir):
    select_project(services, workdir)
    session = services.sessions.create_session(CreateSessionRequest(
        name="New chat", context=SessionContext(working_directory=str(workdir)),
    ))

    result, snapshot = await send_chat_message(services, session.id, "Hello")

    assert result.success is True
    assert [m.role for m in snapshot.messages] == ["user", "assistant"]
    assert snapshot.messages[0].content == "Hello"
    assistant = snapshot.messages[1]
    assert assistant.content == "You said: Hello"
    [block] = assistant.metadata.code_blocks
    assert (block.language, block.content) == ("python", "print(1)")
    assert snapshot.name == "You said: Hello"

    stored = services.store.get_session(session.id)
    assert [m.id for m in stored.messages] == [m.id for m in snapshot.messages]


@pytest.mark.asyncio
async def test_custom_name_is_kept(services, workdir):
    session = services.sessions.create_session(CreateSessionRequest(
        name="Parser refactor", context=SessionContext(working_directory=str(workdir)),
    ))
    _, snapshot = await send_chat_message(services, session.id, "Hello")
    assert snapshot.name == "Parser refactor"


@pytest.mark.asyncio
async def test_failed_run_keeps_only_the_prompt(services, workdir, tmp_path):
    select_project(services, workdir)
    session = services.sessions.create_session(CreateSessionRequest(
        name="New chat", context=SessionContext(working_directory=str(workdir)),
    ))
    result, snapshot = await send_chat_message(services, session.id, "Hello", str(tmp_path / "gone"))
    assert result.success is False
    assert result.code == "WORKING_DIR_ACCESS_ERROR"
    assert [m.role for m in snapshot.messages] == ["user"]


@pytest.mark.asyncio
async def test_current_project_directory_beats_session_context(services, workdir, tmp_path):
    select_project(services, workdir)
    session = services.sessions.create_session(CreateSessionRequest(
        name="New chat", context=SessionContext(working_directory=str(tmp_path / "gone")),
    ))
    result, snapshot = await send_chat_message(services, session.id, "Hello")
    assert result.success is True
    assert [m.role for m in snapshot.messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_unknown_session_is_relayed_without_history(services, workdir):
    result, snapshot = await send_chat_message(services, "chat-123", "Hello", str(workdir))
    assert result.success is True
    assert snapshot is None
    assert services.store.get_session("chat-123") is None
