"""Tests for the FastAPI surface."""

import sys

import pytest
from httpx import ASGITransport, AsyncClient

from api.main import create_app


async def create_session(client, workdir, **extra):
    body = {"name": "New chat", "context": {"workingDirectory": str(workdir)}, **extra}
    resp = await client.post("/api/sessions", json=body)
    assert resp.status_code == 201
    return resp.json()["data"]


async def create_project(client, path, name="Demo"):
    resp = await client.post("/api/projects", json={"name": name, "path": str(path)})
    assert resp.status_code == 201
    return resp.json()["data"]


# --- Service endpoints

@pytest.mark.asyncio
async def test_health(client):
    for path in ("/health", "/api/health"):
        resp = await client.get(path)
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["service"] == "gemini-desk-backend"
        assert data["uptime"] >= 0
        assert data["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_root_describes_service(client):
    resp = await client.get("/")
    assert resp.status_code == 200
    assert "/api/sessions" in resp.json()["endpoints"]


@pytest.mark.asyncio
async def test_unknown_route(client):
    resp = await client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.json()["error"] == "Not Found"


@pytest.mark.asyncio
async def test_unexpected_error_is_500(app, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(app.state.services.sessions, "list_sessions", explode)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/api/sessions")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error", "message": "kaboom"}


@pytest.mark.asyncio
async def test_api_key_guards_api_routes(settings):
    settings.api_key = "secret"
    app = create_app(settings)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        assert (await client.get("/api/sessions")).status_code == 401
        assert (await client.get("/api/sessions", headers={"X-API-Key": "wrong"})).status_code == 401
        assert (await client.get("/api/sessions", headers={"X-API-Key": "secret"})).status_code == 200
        assert (await client.get("/health")).status_code == 200
    await app.state.services.shutdown()


@pytest.mark.asyncio
async def test_lifespan_runs_the_session_watcher(settings):
    settings.watch_cli_sessions = True
    app = create_app(settings)
    watcher = app.state.services.watcher
    async with app.router.lifespan_context(app):
        assert watcher.is_running()
    assert not watcher.is_running()


def test_watcher_is_off_by_default(app):
    assert app.state.services.watcher is None


# --- Sessions

@pytest.mark.asyncio
async def test_session_crud(client, workdir):
    session = await create_session(client, workdir, name="Demo")
    assert session["name"] == "Demo"
    assert session["context"] == {"files": [], "workingDirectory": str(workdir)}
    assert session["messages"] == []
    assert "createdAt" in session and "updatedAt" in session

    resp = await client.get(f"/api/sessions/{session['id']}")
    assert resp.json()["data"]["id"] == session["id"]

    resp = await client.put(f"/api/sessions/{session['id']}", json={"name": "Renamed"})
    assert resp.status_code == 200
    assert resp.json()["data"]["name"] == "Renamed"

    resp = await client.delete(f"/api/sessions/{session['id']}")
    assert resp.status_code == 200
    assert (await client.get(f"/api/sessions/{session['id']}")).status_code == 404
    assert (await client.delete(f"/api/sessions/{session['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_unknown_session_is_404(client):
    resp = await client.get("/api/sessions/missing")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Session not found"}
    assert (await client.put("/api/sessions/missing", json={"name": "x"})).status_code == 404
    assert (await client.get("/api/sessions/missing/messages")).status_code == 404

    resp = await client.post("/api/sessions/missing/messages", json={"role": "user", "content": "hi"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "Session not found"


@pytest.mark.asyncio
async def test_invalid_session_body(client):
    resp = await client.post("/api/sessions", json={"name": ""})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Validation failed"
    assert {d["field"] for d in body["details"]} >= {"name", "context"}


@pytest.mark.asyncio
async def test_messages(client, workdir):
    session = await create_session(client, workdir)
    resp = await client.post(
        f"/api/sessions/{session['id']}/messages",
        json={"role": "assistant", "content": "Here:\n```sql\nselect 1\n```"},
    )
    assert resp.status_code == 201
    message = resp.json()["data"]
    assert message["metadata"]["codeBlocks"][0]["language"] == "sql"

    await client.post(f"/api/sessions/{session['id']}/messages", json={"role": "user", "content": "/clear"})
    resp = await client.get(f"/api/sessions/{session['id']}/messages")
    messages = resp.json()["data"]
    assert [m["role"] for m in messages] == ["assistant", "user"]
    assert messages[1]["metadata"]["command"] == "clear"

    bad = await client.post(f"/api/sessions/{session['id']}/messages", json={"role": "robot", "content": "x"})
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_list_sessions_by_project(client, workdir):
    await create_session(client, workdir, name="a", projectId="project-a")
    await create_session(client, workdir, name="b", projectId="project-b")
    resp = await client.get("/api/sessions", params={"projectId": "project-a"})
    assert [s["name"] for s in resp.json()["data"]] == ["a"]
    resp = await client.get("/api/sessions", params={"limit": 1})
    assert len(resp.json()["data"]) == 1


@pytest.mark.asyncio
async def test_validate_endpoint(client):
    resp = await client.post("/api/sessions/validate", json={"id": "x", "name": ""})
    body = resp.json()
    assert body["valid"] is False
    assert {e["field"] for e in body["errors"]} == {"name", "context", "messages"}


@pytest.mark.asyncio
async def test_import_and_sync(client):
    resp = await client.post("/api/sessions/import/does-not-exist")
    assert resp.status_code == 400
    assert resp.json()["success"] is False

    resp = await client.post("/api/sessions/sync")
    assert resp.json() == {"success": True, "imported": 1}

    resp = await client.post("/api/sessions/import/a1b2c3d4e5f6")
    assert resp.status_code == 200
    assert resp.json()["warnings"] == ["Session was already imported"]


# --- Projects

@pytest.mark.asyncio
async def test_project_lifecycle(client, workdir):
    project = await create_project(client, workdir)
    assert project["path"] == str(workdir.resolve())

    current = (await client.get("/api/projects/current")).json()["data"]
    assert current["id"] == project["id"]
    assert [p["id"] for p in (await client.get("/api/projects/recent")).json()["data"]] == [project["id"]]
    assert len((await client.get("/api/projects")).json()["data"]) == 1

    resp = await client.put(f"/api/projects/{project['id']}", json={"description": "notes"})
    assert resp.json()["data"]["description"] == "notes"

    resp = await client.post("/api/projects/current", json={"projectId": None})
    assert resp.json()["data"] is None
    assert (await client.get("/api/projects/current")).json()["data"] is None


@pytest.mark.asyncio
async def test_project_errors(client, tmp_path):
    resp = await client.post("/api/projects", json={"name": "x", "path": str(tmp_path / "missing")})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid project path"

    resp = await client.post("/api/projects", json={"name": " ", "path": " "})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Validation failed"

    assert (await client.get("/api/projects/project-nope")).status_code == 404
    assert (await client.delete("/api/projects/project-nope")).status_code == 404
    resp = await client.post("/api/projects/current", json={"projectId": "project-nope"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_corrupt_project_document_is_404(client, settings):
    settings.projects_dir.mkdir(parents=True, exist_ok=True)
    (settings.projects_dir / "project-bad.json").write_text("{not json", encoding="utf-8")
    assert (await client.get("/api/projects/project-bad")).status_code == 404
    assert (await client.get("/api/projects")).json()["data"] == []


@pytest.mark.asyncio
async def test_open_directory(client, workdir):
    first = (await client.post("/api/projects/open", json={"path": str(workdir)})).json()["data"]
    again = (await client.post("/api/projects/open", json={"path": str(workdir), "name": "other"})).json()["data"]
    assert first["id"] == again["id"]
    assert first["name"] == "workspace"


@pytest.mark.asyncio
async def test_deleting_project_orphans_sessions(client, workdir):
    project = await create_project(client, workdir)
    session = await create_session(client, workdir, projectId=project["id"])

    linked = (await client.get(f"/api/projects/{project['id']}")).json()["data"]
    assert linked["chatSessions"] == [session["id"]]

    resp = await client.delete(f"/api/projects/{project['id']}")
    assert resp.json()["detachedSessions"] == 1
    assert workdir.is_dir()

    orphan = (await client.get(f"/api/sessions/{session['id']}")).json()["data"]
    assert orphan["projectId"] is None
    assert len(orphan["messages"]) == 0


@pytest.mark.asyncio
async def test_moving_session_between_projects(client, workdir, tmp_path):
    other_dir = tmp_path / "other"
    other_dir.mkdir()
    first = await create_project(client, workdir, name="first")
    second = await create_project(client, other_dir, name="second")
    session = await create_session(client, workdir, projectId=first["id"])

    await client.put(f"/api/sessions/{session['id']}", json={"projectId": second["id"]})
    assert (await client.get(f"/api/projects/{first['id']}")).json()["data"]["chatSessions"] == []
    assert (await client.get(f"/api/projects/{second['id']}")).json()["data"]["chatSessions"] == [session["id"]]

    resp = await client.delete(f"/api/sessions/{session['id']}")
    assert resp.status_code == 200
    assert (await client.get(f"/api/projects/{second['id']}")).json()["data"]["chatSessions"] == []


# --- CLI

@pytest.mark.asyncio
async def test_execute_requires_fields(client):
    resp = await client.post("/api/cli/execute", json={"command": "gemini"})
    assert resp.status_code == 400
    assert resp.json() == {
        "error": "Missing required fields",
        "required": ["command", "args", "workingDirectory", "sessionId"],
    }


@pytest.mark.asyncio
async def test_execute(client, workdir, fake_cli):
    resp = await client.post("/api/cli/execute", json={
        "command": sys.executable,
        "args": [fake_cli, "-p", "hi"],
        "workingDirectory": str(workdir),
        "sessionId": "exec-1",
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["output"].startswith("You said: hi")
    assert body["exitCode"] == 0
    assert "executionTime" in body


@pytest.mark.asyncio
async def test_execute_disallowed_command(client, workdir):
    resp = await client.post("/api/cli/execute", json={
        "command": "bash", "args": ["-c", "echo hi"], "workingDirectory": str(workdir), "sessionId": "exec-2",
    })
    body = resp.json()
    assert body["success"] is False
    assert body["code"] == "COMMAND_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_new_chat(client, workdir):
    resp = await client.post("/api/cli/chat/new", json={"workingDirectory": str(workdir)})
    body = resp.json()
    assert body["success"] is True
    assert body["sessionId"].startswith("chat-")


@pytest.mark.asyncio
async def test_chat_message_round_trip(client, workdir):
    session = await create_session(client, workdir)
    resp = await client.post(f"/api/cli/chat/{session['id']}/message", json={"message": "Hello"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True

    messages = (await client.get(f"/api/sessions/{session['id']}/messages")).json()["data"]
    assert [m["role"] for m in messages] == ["user", "assistant"]
    [block] = messages[1]["metadata"]["codeBlocks"]
    assert (block["language"], block["content"]) == ("python", "print(1)")
    assert body["session"]["name"] == "You said: Hello"


@pytest.mark.asyncio
async def test_chat_message_requires_text(client):
    resp = await client.post("/api/cli/chat/anything/message", json={})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Message is required"}


@pytest.mark.asyncio
async def test_process_endpoints(client):
    assert (await client.get("/api/cli/processes")).json() == {"activeProcesses": []}
    resp = await client.post("/api/cli/kill/nobody")
    assert resp.json()["success"] is False
