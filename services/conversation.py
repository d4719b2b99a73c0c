"""The send-message round trip: persist the prompt, run the CLI, persist the reply."""

import html
import logging
import re
from typing import Optional, Tuple

from starlette.concurrency import run_in_threadpool

from services.app_services import AppServices
from services.cli_executor import CLIExecutionResponse
from services.extraction import extract_assistant_content
from services.types import (
    DEFAULT_SESSION_NAME, ChatSession, MessageMetadata, NewMessage, SessionUpdate,
)

logger = logging.getLogger(__name__)

DEFAULT_NAMES = {DEFAULT_SESSION_NAME.lower(), "new chat", "imported chat"}


def _strip_html(s: str) -> str:
    return html.unescape(re.sub(r"<[^>]+>", "", s)).strip()


def derive_title(user_text: str, answer_text: str, max_len: int = 60) -> str:
    """First sentence of the answer (or the prompt), capped and capitalised."""
    base = _strip_html(answer_text or "") or (user_text or "").strip()
    if not base:
        return DEFAULT_SESSION_NAME
    first = re.split(r"(?<=[.!?])\s+", base, maxsplit=1)[0].strip()
    cand = (first or base).splitlines()[0].lstrip("-•# ").rstrip(" .!?:")
    if len(cand) > max_len:
        cand = cand[:max_len].rstrip() + "…"
    return cand[:1].upper() + cand[1:] if cand else DEFAULT_SESSION_NAME


def _maybe_rename(services: AppServices, session: ChatSession, prompt: str, answer: str) -> None:
    is_default = (session.name or "").strip().lower() in DEFAULT_NAMES
    if not is_default or len(session.messages) > 2:
        return
    title = derive_title(prompt, answer)
    if title.strip().lower() not in DEFAULT_NAMES:
        services.sessions.update_session(session.id, SessionUpdate(name=title))


async def send_chat_message(
    services: AppServices,
    session_id: str,
    message: str,
    working_directory: Optional[str] = None,
) -> Tuple[CLIExecutionResponse, Optional[ChatSession]]:
    """Relay one prompt to the CLI.

    When `session_id` names a stored session the exchange is recorded in it
    and the refreshed session is returned alongside the execution result.
    The CLI runs in `working_directory` when given, else in the currently
    selected project's directory; the session's own context is not consulted.
    """
    session = await run_in_threadpool(services.sessions.get_session, session_id)
    if session is not None:
        await run_in_threadpool(services.sessions.add_message, session_id, NewMessage(role="user", content=message))

    result = await services.executor.send_message(session_id, message, working_directory)

    if session is None:
        return result, None

    if result.success:
        prose, blocks = extract_assistant_content(result.output)
        reply = NewMessage(
            role="assistant",
            content=prose,
            metadata=MessageMetadata(code_blocks=blocks) if blocks else None,
        )
        await run_in_threadpool(services.sessions.add_message, session_id, reply)
        session = await run_in_threadpool(services.sessions.get_session, session_id)
        await run_in_threadpool(_maybe_rename, services, session, message, prose or result.output)
    else:
        logger.info("CLI reply for session %s failed: %s", session_id, result.error)

    return result, await run_in_threadpool(services.sessions.get_session, session_id)
