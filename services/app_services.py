import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from config import Settings
from db.cli_logs import CliLogSessionStore
from db.dal import SqlSessionStore
from db.init_db import init_db
from db.session import make_engine, make_session_factory
from services.cli_executor import CLIExecutionOptions, CLIExecutor
from services.log_watcher import CliLogWatcher
from services.project_manager import ProjectManager
from services.session_manager import SessionManager

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Every piece of mutable state the server owns, built once at startup."""
    settings: Settings
    engine: Engine
    store: SqlSessionStore
    sessions: SessionManager
    projects: ProjectManager
    executor: CLIExecutor
    watcher: Optional[CliLogWatcher] = None

    async def shutdown(self) -> None:
        if self.watcher is not None:
            await self.watcher.stop()
        await self.executor.cleanup()
        self.engine.dispose()


def build_services(settings: Settings) -> AppServices:
    """Connect the database and load project state. Any failure here aborts startup."""
    engine = make_engine(settings.database_url)
    init_db(engine)

    store = SqlSessionStore(make_session_factory(engine))
    sessions = SessionManager(store, CliLogSessionStore(settings.cli_sessions_dir))

    projects = ProjectManager(settings.projects_dir, settings.max_recent_projects)
    projects.initialize()

    executor = CLIExecutor(
        CLIExecutionOptions(
            timeout=settings.cli_timeout,
            max_output_size=settings.max_output_size,
            allowed_commands=list(settings.allowed_commands),
            cli_path=settings.cli_path,
        ),
        default_directory=projects.current_directory,
    )
    watcher = CliLogWatcher(sessions, settings.watch_interval) if settings.watch_cli_sessions else None
    logger.info("Services ready (db=%s, projects=%s)", settings.database_url, settings.projects_dir)
    return AppServices(
        settings=settings, engine=engine, store=store,
        sessions=sessions, projects=projects, executor=executor, watcher=watcher,
    )
