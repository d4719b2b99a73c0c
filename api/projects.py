# api/projects.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field

from api.deps import get_projects, get_sessions
from services.project_manager import ProjectManager
from services.session_manager import SessionManager
from services.types import CamelModel, CreateProjectRequest, ProjectUpdate

router = APIRouter(prefix="/projects", tags=["projects"])


class OpenDirectoryRequest(CamelModel):
    path: str = Field(..., min_length=1)
    name: Optional[str] = None


class CurrentProjectRequest(CamelModel):
    project_id: Optional[str] = None


@router.get("")
def list_projects(projects: ProjectManager = Depends(get_projects)):
    return {"success": True, "data": projects.list_projects()}


@router.post("", status_code=201)
def create_project(body: CreateProjectRequest, projects: ProjectManager = Depends(get_projects)):
    project = projects.create_project(body)
    projects.set_current_project(project.id)
    return {"success": True, "data": project}


@router.get("/recent")
def recent_projects(projects: ProjectManager = Depends(get_projects)):
    return {"success": True, "data": projects.get_recent_projects()}


@router.get("/current")
def current_project(projects: ProjectManager = Depends(get_projects)):
    return {"success": True, "data": projects.get_current_project()}


@router.post("/current")
def select_project(body: CurrentProjectRequest, projects: ProjectManager = Depends(get_projects)):
    project = projects.set_current_project(body.project_id)
    return {"success": True, "data": project}


@router.post("/open")
def open_directory(body: OpenDirectoryRequest, projects: ProjectManager = Depends(get_projects)):
    project = projects.open_project_directory(body.path, body.name)
    return {"success": True, "data": project}


@router.get("/{project_id}")
def get_project(project_id: str, projects: ProjectManager = Depends(get_projects)):
    project = projects.get_project(project_id)
    if not project:
        raise HTTPException(404, "Project not found")
    return {"success": True, "data": project}


@router.put("/{project_id}")
def update_project(project_id: str, body: ProjectUpdate, projects: ProjectManager = Depends(get_projects)):
    return {"success": True, "data": projects.update_project(project_id, body)}


@router.delete("/{project_id}")
def delete_project(
    project_id: str,
    projects: ProjectManager = Depends(get_projects),
    sessions: SessionManager = Depends(get_sessions),
):
    if not projects.delete_project(project_id):
        raise HTTPException(404, "Project not found")
    detached = sessions.detach_project(project_id)
    return {"success": True, "message": "Project deleted successfully", "detachedSessions": detached}
