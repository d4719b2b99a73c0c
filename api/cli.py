# api/cli.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from api.deps import get_executor, get_services
from services.app_services import AppServices
from services.cli_executor import CLIExecutionRequest, CLIExecutor
from services.conversation import send_chat_message
from services.types import CamelModel

router = APIRouter(prefix="/cli", tags=["cli"])

REQUIRED_EXECUTE_FIELDS = ["command", "args", "workingDirectory", "sessionId"]


class NewChatRequest(CamelModel):
    working_directory: Optional[str] = None


class ChatMessageRequest(CamelModel):
    message: Optional[str] = None
    working_directory: Optional[str] = None


def _missing(value: Any) -> bool:
    return value is None or value == ""


@router.post("/execute")
async def execute(body: Dict[str, Any] = Body(...), executor: CLIExecutor = Depends(get_executor)):
    if any(_missing(body.get(f)) for f in REQUIRED_EXECUTE_FIELDS):
        raise HTTPException(400, {"error": "Missing required fields", "required": REQUIRED_EXECUTE_FIELDS})
    request = CLIExecutionRequest(
        command=body["command"],
        args=body["args"],
        working_directory=body["workingDirectory"],
        session_id=body["sessionId"],
        timeout=body.get("timeout"),
    )
    return await executor.execute_command(request)


@router.post("/chat/new")
async def new_chat(body: Optional[NewChatRequest] = None, executor: CLIExecutor = Depends(get_executor)):
    working_directory = body.working_directory if body else None
    return await executor.start_new_chat(working_directory)


@router.post("/chat/{session_id}/message")
async def chat_message(session_id: str, body: ChatMessageRequest, services: AppServices = Depends(get_services)):
    if not body.message or not body.message.strip():
        raise HTTPException(400, "Message is required")
    result, session = await send_chat_message(services, session_id, body.message, body.working_directory)
    payload = result.model_dump(mode="json", by_alias=True)
    payload["session"] = session.model_dump(mode="json", by_alias=True) if session else None
    return payload


@router.post("/kill/{session_id}")
async def kill(session_id: str, executor: CLIExecutor = Depends(get_executor)):
    killed = executor.kill_process(session_id)
    return {
        "success": killed,
        "message": "Process killed successfully" if killed else "No active process found for session",
    }


@router.get("/processes")
def processes(executor: CLIExecutor = Depends(get_executor)):
    return {"activeProcesses": executor.get_active_processes()}
