# api/errors.py: map failures to JSON bodies the front end understands
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from db.store import SessionNotFoundError
from services.project_manager import InvalidProjectPathError, ProjectNotFoundError, ProjectValidationError

logger = logging.getLogger(__name__)

NOT_FOUND_BODY = {
    "error": "Not Found",
    "message": "The requested resource was not found on this server",
}

def _http_error(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        body = exc.detail
    elif exc.status_code == 404 and exc.detail == "Not Found":
        body = NOT_FOUND_BODY
    else:
        body = {"error": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))

def _validation_error(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "message": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return JSONResponse({"error": "Validation failed", "details": details}, status_code=400)

def _session_not_found(request: Request, exc: SessionNotFoundError):
    return JSONResponse({"error": "Session not found", "message": str(exc)}, status_code=404)

def _project_not_found(request: Request, exc: ProjectNotFoundError):
    return JSONResponse({"error": "Project not found", "message": str(exc)}, status_code=404)

def _project_invalid(request: Request, exc: ProjectValidationError):
    return JSONResponse({"error": "Validation failed", "message": str(exc), "details": exc.errors}, status_code=400)

def _project_path_invalid(request: Request, exc: InvalidProjectPathError):
    return JSONResponse({"error": "Invalid project path", "message": str(exc)}, status_code=400)

def _internal_error(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    production = request.app.state.services.settings.is_production
    message = "Unexpected error" if production else str(exc)
    return JSONResponse({"error": "Internal server error", "message": message}, status_code=500)

def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(SessionNotFoundError, _session_not_found)
    app.add_exception_handler(ProjectNotFoundError, _project_not_found)
    app.add_exception_handler(ProjectValidationError, _project_invalid)
    app.add_exception_handler(InvalidProjectPathError, _project_path_invalid)
    app.add_exception_handler(Exception, _internal_error)
