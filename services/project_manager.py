"""Filesystem-backed registry of projects plus current/recent selection."""

import json
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from services.types import CreateProjectRequest, Project, ProjectUpdate, utcnow

logger = logging.getLogger(__name__)

PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class ProjectError(Exception):
    pass


class ProjectNotFoundError(ProjectError):
    def __init__(self, project_id: str):
        super().__init__(f"Project with ID {project_id} not found")
        self.project_id = project_id


class InvalidProjectPathError(ProjectError):
    pass


class ProjectValidationError(ProjectError):
    def __init__(self, errors: List[dict]):
        super().__init__("Validation failed: " + ", ".join(e["message"] for e in errors))
        self.errors = errors


def _write_json_atomic(path: Path, data: dict) -> None:
    """Temp file + replace so a crash never leaves half a document behind."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


def validate_project_path(project_path: str) -> Path:
    """Resolve and check that the path is an existing, readable directory."""
    resolved = Path(project_path).expanduser().resolve()
    if not resolved.exists():
        raise InvalidProjectPathError(f"Invalid project path: {resolved} does not exist")
    if not resolved.is_dir():
        raise InvalidProjectPathError(f"Invalid project path: {resolved} is not a directory")
    if not os.access(resolved, os.R_OK):
        raise InvalidProjectPathError(f"Invalid project path: {resolved} is not readable")
    return resolved


class ProjectManager:
    def __init__(self, projects_dir: Path, max_recent_projects: int = 10):
        self.projects_dir = Path(projects_dir)
        self.max_recent_projects = max_recent_projects
        self.config_file = self.projects_dir.parent / "config.json"
        self.recent_projects: List[str] = []
        self.current_project_id: Optional[str] = None

    def initialize(self) -> None:
        self.projects_dir.mkdir(parents=True, exist_ok=True)
        self._load_config()

    # --- CRUD

    def create_project(self, request: CreateProjectRequest) -> Project:
        errors = self._validate_request(request.name, request.path, request.description)
        if errors:
            raise ProjectValidationError(errors)
        resolved = validate_project_path(request.path)

        now = utcnow()
        project = Project(
            id=self._generate_id(),
            name=request.name.strip(),
            path=str(resolved),
            description=request.description,
            chat_sessions=[],
            created_at=now,
            updated_at=now,
        )
        self._save_project(project)
        self._add_to_recent(project.id)
        logger.info("Created project %s at %s", project.id, project.path)
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        path = self._project_file(project_id)
        if path is None or not path.exists():
            return None
        try:
            return Project.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning("Failed to load project from %s: %s", path.name, e)
            return None

    def update_project(self, project_id: str, updates: ProjectUpdate) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)

        name = updates.name if updates.name is not None else project.name
        path = updates.path if updates.path is not None else project.path
        errors = self._validate_request(name, path, updates.description)
        if errors:
            raise ProjectValidationError(errors)
        if updates.path is not None:
            path = str(validate_project_path(updates.path))

        project.name = name.strip()
        project.path = path
        if "description" in updates.model_fields_set:
            project.description = updates.description
        project.updated_at = utcnow()
        self._save_project(project)
        return project

    def delete_project(self, project_id: str) -> bool:
        """Forget the project. The directory itself is never touched."""
        path = self._project_file(project_id)
        if path is None or not path.exists():
            return False
        path.unlink()
        self.recent_projects = [pid for pid in self.recent_projects if pid != project_id]
        if self.current_project_id == project_id:
            self.current_project_id = None
        self._save_config()
        logger.info("Deleted project %s", project_id)
        return True

    def list_projects(self) -> List[Project]:
        if not self.projects_dir.exists():
            return []
        projects = []
        for file in self.projects_dir.glob("*.json"):
            project = self.get_project(file.stem)
            if project is not None:
                projects.append(project)
        return sorted(projects, key=lambda p: p.updated_at, reverse=True)

    def get_recent_projects(self) -> List[Project]:
        projects = []
        for project_id in self.recent_projects:
            project = self.get_project(project_id)
            if project is not None:
                projects.append(project)
        return projects

    # --- Selection

    def set_current_project(self, project_id: Optional[str]) -> Optional[Project]:
        """Select a project (None clears). A project whose directory vanished cannot be selected."""
        project = None
        if project_id is not None:
            project = self.get_project(project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            validate_project_path(project.path)
            self._push_recent(project_id)
        self.current_project_id = project_id
        self._save_config()
        return project

    def get_current_project(self) -> Optional[Project]:
        if not self.current_project_id:
            return None
        return self.get_project(self.current_project_id)

    def get_current_project_id(self) -> Optional[str]:
        return self.current_project_id

    def current_directory(self) -> Optional[str]:
        project = self.get_current_project()
        return project.path if project else None

    def open_project_directory(self, directory_path: str, name: Optional[str] = None) -> Project:
        """Reuse the project already tracking this directory, or create one."""
        resolved = validate_project_path(directory_path)
        for project in self.list_projects():
            if project.path == str(resolved):
                self.set_current_project(project.id)
                return project

        project = self.create_project(CreateProjectRequest(
            name=name or resolved.name or str(resolved),
            path=str(resolved),
            description=f"Project opened from {resolved}",
        ))
        self.set_current_project(project.id)
        return project

    # --- Session links

    def attach_session(self, project_id: str, session_id: str) -> None:
        project = self.get_project(project_id)
        if project is None or session_id in project.chat_sessions:
            return
        project.chat_sessions.append(session_id)
        project.updated_at = utcnow()
        self._save_project(project)

    def detach_session(self, project_id: str, session_id: str) -> None:
        project = self.get_project(project_id)
        if project is None or session_id not in project.chat_sessions:
            return
        project.chat_sessions.remove(session_id)
        project.updated_at = utcnow()
        self._save_project(project)

    # --- Internals

    def _validate_request(self, name, path, description) -> List[dict]:
        errors = []
        if not isinstance(name, str) or not name.strip():
            errors.append({"field": "name", "message": "Project name is required and must be a non-empty string", "value": name})
        if not isinstance(path, str) or not path.strip():
            errors.append({"field": "path", "message": "Project path is required and must be a non-empty string", "value": path})
        if description is not None and not isinstance(description, str):
            errors.append({"field": "description", "message": "Project description must be a string", "value": description})
        return errors

    def _generate_id(self) -> str:
        return f"project-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"

    def _project_file(self, project_id: str) -> Optional[Path]:
        # ids become file names; anything else is not a project we wrote
        if not project_id or not PROJECT_ID_RE.match(project_id):
            return None
        return self.projects_dir / f"{project_id}.json"

    def _save_project(self, project: Project) -> None:
        _write_json_atomic(self.projects_dir / f"{project.id}.json", project.model_dump(mode="json", by_alias=True))

    def _push_recent(self, project_id: str) -> None:
        recent = [pid for pid in self.recent_projects if pid != project_id]
        recent.insert(0, project_id)
        self.recent_projects = recent[: self.max_recent_projects]

    def _add_to_recent(self, project_id: str) -> None:
        self._push_recent(project_id)
        self._save_config()

    def _load_config(self) -> None:
        if not self.config_file.exists():
            return
        try:
            config = json.loads(self.config_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Failed to load project manager config: %s", e)
            return
        recent = config.get("recentProjects")
        self.recent_projects = [pid for pid in recent if isinstance(pid, str)] if isinstance(recent, list) else []
        self.recent_projects = self.recent_projects[: self.max_recent_projects]
        self.current_project_id = config.get("currentProjectId") or None

    def _save_config(self) -> None:
        _write_json_atomic(self.config_file, {
            "recentProjects": self.recent_projects,
            "currentProjectId": self.current_project_id,
        })
