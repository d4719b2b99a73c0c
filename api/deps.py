# api/deps.py: request-scoped access to the app's owned services
from fastapi import Request

from services.app_services import AppServices
from services.cli_executor import CLIExecutor
from services.project_manager import ProjectManager
from services.session_manager import SessionManager

def get_services(request: Request) -> AppServices:
    return request.app.state.services

def get_sessions(request: Request) -> SessionManager:
    return request.app.state.services.sessions

def get_projects(request: Request) -> ProjectManager:
    return request.app.state.services.projects

def get_executor(request: Request) -> CLIExecutor:
    return request.app.state.services.executor
