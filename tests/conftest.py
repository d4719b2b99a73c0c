"""Shared test fixtures for the desk backend."""

import json
import sys
import textwrap

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config import Settings
from db.dal import SqlSessionStore
from db.init_db import init_db
from db.session import make_engine, make_session_factory

FAKE_CLI = textwrap.dedent('''\
    import sys
    prompt = sys.argv[-1] if len(sys.argv) > 1 else ""
    print("You said: " + prompt)
    print("```python")
    print("print(1)")
    print("```")
''')


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def tmp_cli_logs(tmp_path):
    """Synthetic tool-log directory: one valid session, one with broken entries."""
    root = tmp_path / "gemini-tmp"
    good = root / "a1b2c3d4e5f6"
    good.mkdir(parents=True)
    logs = [
        {"sessionId": "a1b2c3d4e5f6", "messageId": 0, "type": "user",
         "message": "/explain the parser", "timestamp": "2025-01-15T10:00:00.000Z"},
        {"sessionId": "a1b2c3d4e5f6", "messageId": 1, "type": "assistant",
         "message": "Sure.\n```python\ndef parse():\n    pass\n```\n", "timestamp": "2025-01-15T10:00:05.000Z"},
    ]
    (good / "logs.json").write_text(json.dumps(logs), encoding="utf-8")

    bad = root / "broken0000"
    bad.mkdir()
    (bad / "logs.json").write_text(json.dumps([{"type": "robot", "message": ""}]), encoding="utf-8")
    return root


@pytest.fixture
def fake_cli(tmp_path):
    """Stands in for the real tool: echoes the prompt and answers with a python fence."""
    path = tmp_path / "fake_cli.py"
    path.write_text(FAKE_CLI, encoding="utf-8")
    return str(path)


@pytest.fixture
def settings(tmp_path, tmp_cli_logs, fake_cli):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'data' / 'desk.db'}",
        cli_path=f"{sys.executable} {fake_cli}",
        allowed_commands=[sys.executable],
        cli_timeout=10.0,
        cli_sessions_dir=tmp_cli_logs,
        projects_dir=tmp_path / "state" / "projects",
    )


@pytest.fixture
def store(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_db(engine)
    yield SqlSessionStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture
def app(settings):
    from api.main import create_app
    return create_app(settings)


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await app.state.services.shutdown()
