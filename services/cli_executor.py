"""Spawn the external CLI tool safely, one process per correlation id."""

import asyncio
import codecs
import logging
import os
import re
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from services.types import CamelModel

logger = logging.getLogger(__name__)

SHELL_METACHARS_RE = re.compile(r"[;&|`$(){}\[\]\\]")
INIT_PROMPT = "Hello! I'm ready to help you. What would you like to know?"
CHUNK_SIZE = 4096
STREAMS = ("stdout", "stderr")


class CLIExecutionError(Exception):
    def __init__(self, message: str, code: str, details: Any = None):
        super().__init__(message)
        self.code = code
        self.details = details


@dataclass
class CLIExecutionOptions:
    timeout: float = 30.0                       # seconds
    max_output_size: int = 10 * 1024 * 1024    # bytes, stdout + stderr
    allowed_commands: List[str] = field(default_factory=lambda: ["gemini"])
    cli_path: str = "gemini"
    kill_grace: float = 2.0                     # SIGTERM -> SIGKILL delay


@dataclass
class CLIExecutionRequest:
    command: Any
    args: Any
    working_directory: Any
    session_id: Any
    timeout: Any = None


class CLIExecutionResponse(CamelModel):
    success: bool
    output: str = ""
    error: Optional[str] = None
    execution_time: int            # milliseconds
    exit_code: Optional[int] = None
    code: Optional[str] = None     # failure code, e.g. TIMEOUT


class NewChatSessionResponse(CamelModel):
    success: bool
    session_id: str
    output: Optional[str] = None
    error: Optional[str] = None
    execution_time: int


@dataclass(frozen=True)
class OutputEvent:
    session_id: str
    stream: str        # "stdout" | "stderr"
    chunk: str


OutputListener = Callable[[OutputEvent], None]


@dataclass
class _ProcessOutput:
    stdout: str
    stderr: str
    exit_code: Optional[int]


class _Capture:
    def __init__(self):
        self.total = 0
        self.text = {name: [] for name in STREAMS}
        self.decoders = {name: codecs.getincrementaldecoder("utf-8")("replace") for name in STREAMS}

    def joined(self, name: str) -> str:
        return ("".join(self.text[name]) + self.decoders[name].decode(b"", final=True)).strip()


def sanitize(value: str) -> str:
    """Strip shell metacharacters."""
    return SHELL_METACHARS_RE.sub("", value)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class CLIExecutor:
    """Runs allow-listed commands without a shell, with output and time limits.

    Output chunks are published to subscribers as they arrive; the awaited
    result carries the full, trimmed output once the process closes.
    """

    def __init__(
        self,
        options: Optional[CLIExecutionOptions] = None,
        default_directory: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.options = options or CLIExecutionOptions()
        self._default_directory = default_directory
        self._processes: Dict[str, asyncio.subprocess.Process] = {}
        self._reserved: Set[str] = set()
        self._listeners: List[tuple] = []

    # --- Output channel

    def subscribe(self, listener: OutputListener, session_id: Optional[str] = None) -> Callable[[], None]:
        """Register for output chunks (optionally for one correlation id). Returns an unsubscribe callable."""
        entry = (listener, session_id)
        self._listeners.append(entry)

        def unsubscribe():
            if entry in self._listeners:
                self._listeners.remove(entry)
        return unsubscribe

    def _publish(self, event: OutputEvent) -> None:
        for listener, wanted in list(self._listeners):
            if wanted is not None and wanted != event.session_id:
                continue
            try:
                listener(event)
            except Exception:
                logger.exception("Output listener failed for %s", event.session_id)

    # --- Public operations

    async def execute_command(self, request: CLIExecutionRequest) -> CLIExecutionResponse:
        started = time.perf_counter()
        reserved = False
        try:
            self._validate_request(request)
            argv = self._build_argv(request.command, request.args)
            cwd = self._validate_working_directory(request.working_directory)
            # held until the run finishes so a second request is SESSION_BUSY
            self._reserved.add(request.session_id)
            reserved = True
            result = await self._spawn(argv, cwd, request.session_id, request.timeout or self.options.timeout)
        except CLIExecutionError as e:
            logger.info("CLI execution for %s failed [%s]: %s", request.session_id, e.code, e)
            return CLIExecutionResponse(success=False, error=str(e), code=e.code, execution_time=_elapsed_ms(started))
        finally:
            if reserved:
                self._reserved.discard(request.session_id)

        return CLIExecutionResponse(
            success=result.exit_code == 0,
            output=result.stdout,
            error=result.stderr or None,
            exit_code=result.exit_code,
            execution_time=_elapsed_ms(started),
        )

    async def start_new_chat(
        self, working_directory: Optional[str] = None, timeout: Optional[float] = None
    ) -> NewChatSessionResponse:
        """Spawn the tool once with a greeting prompt and hand back a fresh correlation id."""
        session_id = f"chat-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
        result = await self.execute_command(CLIExecutionRequest(
            command=self.options.cli_path,
            args=["-p", INIT_PROMPT],
            working_directory=working_directory or self.resolve_directory(),
            session_id=session_id,
            timeout=timeout,
        ))
        return NewChatSessionResponse(
            success=result.success,
            session_id=session_id,
            output=result.output or None,
            error=result.error,
            execution_time=result.execution_time,
        )

    async def send_message(
        self, session_id: str, message: str, working_directory: Optional[str] = None
    ) -> CLIExecutionResponse:
        return await self.execute_command(CLIExecutionRequest(
            command=self.options.cli_path,
            args=["-y", "-p", message],
            working_directory=working_directory or self.resolve_directory(),
            session_id=session_id,
        ))

    def resolve_directory(self) -> str:
        """Current project's directory, else the server's working directory."""
        if self._default_directory is not None:
            path = self._default_directory()
            if path:
                return path
        return os.getcwd()

    def kill_process(self, session_id: str) -> bool:
        process = self._processes.pop(session_id, None)
        if process is None or process.returncode is not None:
            return False
        try:
            process.terminate()
        except ProcessLookupError:
            return False
        logger.info("Killed CLI process %s for %s", process.pid, session_id)
        return True

    def get_active_processes(self) -> List[str]:
        return list(self._processes.keys())

    async def cleanup(self) -> None:
        """Terminate every tracked process (shutdown hook)."""
        processes = list(self._processes.values())
        self._processes.clear()
        await asyncio.gather(*(self._terminate(p) for p in processes), return_exceptions=True)

    # --- Validation

    def _validate_request(self, request: CLIExecutionRequest) -> None:
        if not request.command or not isinstance(request.command, str):
            raise CLIExecutionError("Command is required and must be a string", "INVALID_COMMAND")
        if not isinstance(request.args, list):
            raise CLIExecutionError("Arguments must be an array", "INVALID_ARGS")
        if not request.working_directory or not isinstance(request.working_directory, str):
            raise CLIExecutionError("Working directory is required and must be a string", "INVALID_WORKING_DIR")
        if not request.session_id or not isinstance(request.session_id, str):
            raise CLIExecutionError("Session ID is required and must be a string", "INVALID_SESSION_ID")
        timeout = request.timeout
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
            raise CLIExecutionError("Timeout must be a positive number", "INVALID_TIMEOUT")
        if request.session_id in self._processes or request.session_id in self._reserved:
            raise CLIExecutionError(f"A process is already running for session {request.session_id}", "SESSION_BUSY")

    def _build_argv(self, command: str, args: List[Any]) -> List[str]:
        tokens = sanitize(command).split()
        base = tokens[0] if tokens else ""
        if base not in self.options.allowed_commands:
            raise CLIExecutionError(
                f"Command '{base}' is not allowed. Allowed commands: {', '.join(self.options.allowed_commands)}",
                "COMMAND_NOT_ALLOWED",
            )
        return [base] + tokens[1:] + [sanitize(str(a)) for a in args]

    def _validate_working_directory(self, working_directory: str) -> str:
        path = Path(working_directory).expanduser().resolve()
        if not path.exists():
            raise CLIExecutionError(
                f"Working directory validation failed: {path} does not exist", "WORKING_DIR_ACCESS_ERROR"
            )
        if not path.is_dir():
            raise CLIExecutionError("Working directory is not a directory", "INVALID_WORKING_DIR")
        if not os.access(path, os.R_OK):
            raise CLIExecutionError(
                f"Working directory validation failed: {path} is not readable", "WORKING_DIR_ACCESS_ERROR"
            )
        return str(path)

    # --- Process handling

    async def _spawn(self, argv: List[str], cwd: str, session_id: str, timeout: float) -> _ProcessOutput:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=os.environ.copy(),
            )
        except FileNotFoundError as e:
            raise CLIExecutionError(
                f"Command '{argv[0]}' not found. Make sure the CLI is installed and in PATH.", "COMMAND_NOT_FOUND"
            ) from e
        except OSError as e:
            raise CLIExecutionError(f"Process error: {e}", "PROCESS_ERROR", e) from e
        except (ValueError, TypeError) as e:
            raise CLIExecutionError(f"Process error: {e}", "PROCESS_ERROR", e) from e

        logger.debug("Spawned %s (pid %s) for %s in %s", argv[0], process.pid, session_id, cwd)
        self._processes[session_id] = process
        capture = _Capture()
        pumps = [
            asyncio.ensure_future(self._pump(process.stdout, "stdout", session_id, capture)),
            asyncio.ensure_future(self._pump(process.stderr, "stderr", session_id, capture)),
        ]
        try:
            await asyncio.wait_for(self._finish(process, pumps), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("CLI process for %s timed out after %ss", session_id, timeout)
            await self._terminate(process)
            raise CLIExecutionError("Command execution timed out", "TIMEOUT") from None
        except CLIExecutionError as e:
            logger.warning("CLI process for %s stopped: %s", session_id, e)
            await self._terminate(process)
            raise
        finally:
            for task in pumps:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            if self._processes.get(session_id) is process:
                del self._processes[session_id]

        logger.debug("CLI process for %s exited with %s", session_id, process.returncode)
        return _ProcessOutput(
            stdout=capture.joined("stdout"),
            stderr=capture.joined("stderr"),
            exit_code=process.returncode,
        )

    async def _finish(self, process: asyncio.subprocess.Process, pumps: List[asyncio.Future]) -> int:
        await asyncio.gather(*pumps)
        return await process.wait()

    async def _pump(self, stream: asyncio.StreamReader, name: str, session_id: str, capture: _Capture) -> None:
        while True:
            data = await stream.read(CHUNK_SIZE)
            if not data:
                break
            capture.total += len(data)
            if capture.total > self.options.max_output_size:
                raise CLIExecutionError("Output size exceeded maximum limit", "OUTPUT_TOO_LARGE")
            chunk = capture.decoders[name].decode(data)
            capture.text[name].append(chunk)
            if chunk:
                self._publish(OutputEvent(session_id, name, chunk))

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.options.kill_grace)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        except ProcessLookupError:
            pass  # already gone
