# api/sessions.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from api.deps import get_projects, get_sessions
from services.project_manager import ProjectManager
from services.session_manager import SessionManager
from services.types import CreateSessionRequest, NewMessage, SessionUpdate

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("")
def list_sessions(
    project_id: Optional[str] = Query(None, alias="projectId"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: Optional[int] = Query(None, ge=0),
    sessions: SessionManager = Depends(get_sessions),
):
    return {"success": True, "data": sessions.list_sessions(project_id, limit, offset)}


@router.post("", status_code=201)
def create_session(
    body: CreateSessionRequest,
    sessions: SessionManager = Depends(get_sessions),
    projects: ProjectManager = Depends(get_projects),
):
    session = sessions.create_session(body)
    if session.project_id:
        projects.attach_session(session.project_id, session.id)
    return {"success": True, "data": session}


@router.post("/validate")
def validate_session(body: Dict[str, Any] = Body(...)):
    errors = SessionManager.validate_session(body)
    return {"success": True, "valid": not errors, "errors": errors}


@router.post("/sync")
def sync_sessions(sessions: SessionManager = Depends(get_sessions)):
    imported = sessions.sync_cli_sessions()
    return {"success": True, "imported": imported}


@router.post("/import/{cli_session_id}")
def import_session(cli_session_id: str, sessions: SessionManager = Depends(get_sessions)):
    result = sessions.import_cli_session(cli_session_id)
    if not result.success:
        return JSONResponse(result.model_dump(mode="json", by_alias=True), status_code=400)
    return result


@router.get("/{session_id}")
def get_session(session_id: str, sessions: SessionManager = Depends(get_sessions)):
    session = sessions.get_session(session_id)
    if not session:
        raise HTTPException(404, "Session not found")
    return {"success": True, "data": session}


@router.put("/{session_id}")
def update_session(
    session_id: str,
    body: SessionUpdate,
    sessions: SessionManager = Depends(get_sessions),
    projects: ProjectManager = Depends(get_projects),
):
    before = sessions.get_session(session_id)
    if not before:
        raise HTTPException(404, "Session not found")
    previous_project = before.project_id
    session = sessions.update_session(session_id, body)
    if body.sets_project and previous_project != session.project_id:
        if previous_project:
            projects.detach_session(previous_project, session_id)
        if session.project_id:
            projects.attach_session(session.project_id, session_id)
    return {"success": True, "data": session}


@router.delete("/{session_id}")
def delete_session(
    session_id: str,
    sessions: SessionManager = Depends(get_sessions),
    projects: ProjectManager = Depends(get_projects),
):
    session = sessions.get_session(session_id)
    if not session:
        raise HTTPException(404, "Session not found")
    sessions.remove_session(session_id)
    if session.project_id:
        projects.detach_session(session.project_id, session_id)
    return {"success": True, "message": "Session deleted successfully"}


@router.get("/{session_id}/messages")
def list_messages(session_id: str, sessions: SessionManager = Depends(get_sessions)):
    messages = sessions.get_messages(session_id)
    if messages is None:
        raise HTTPException(404, "Session not found")
    return {"success": True, "data": messages}


@router.post("/{session_id}/messages", status_code=201)
def add_message(session_id: str, body: NewMessage, sessions: SessionManager = Depends(get_sessions)):
    # unknown session -> SessionNotFoundError -> 404
    message = sessions.add_message(session_id, body)
    return {"success": True, "data": message}
