# config.py
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"

# dev Vite / CRA servers
DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


@dataclass
class Settings:
    host: str = "127.0.0.1"
    port: int = 3001
    environment: str = "development"
    database_url: str = "sqlite:///./data/desk.db"
    cli_path: str = "gemini"
    allowed_commands: List[str] = field(default_factory=list)
    cli_timeout: float = 30.0
    max_output_size: int = 10 * 1024 * 1024
    cli_sessions_dir: Path = field(default_factory=lambda: Path.home() / ".gemini" / "tmp")
    watch_cli_sessions: bool = False
    watch_interval: float = 2.0                 # seconds
    projects_dir: Path = field(default_factory=lambda: Path.home() / ".gemini-desk" / "projects")
    max_recent_projects: int = 10
    frontend_origins: List[str] = field(default_factory=list)
    api_key: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self):
        # the configured tool is always runnable
        if self.cli_path not in self.allowed_commands:
            self.allowed_commands = list(self.allowed_commands) + [self.cli_path]
        self.cli_sessions_dir = Path(self.cli_sessions_dir).expanduser()
        self.projects_dir = Path(self.projects_dir).expanduser()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cors_origins(self) -> List[str]:
        return DEFAULT_ORIGINS + [o for o in self.frontend_origins if o not in DEFAULT_ORIGINS]


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Read config.yaml (if present) and apply environment overrides on top."""
    path = Path(config_path or os.getenv("DESK_CONFIG") or DEFAULT_CONFIG_PATH)
    cfg = _load_yaml(path)
    cli_cfg = cfg.get("cli") or {}
    projects_cfg = cfg.get("projects") or {}

    values = {
        "host": os.getenv("HOST", cfg.get("host", "127.0.0.1")),
        "port": int(os.getenv("PORT", cfg.get("port", 3001))),
        "environment": os.getenv("APP_ENV", cfg.get("environment", "development")),
        "cli_path": os.getenv("GEMINI_CLI_PATH", cli_cfg.get("path", "gemini")),
        "allowed_commands": list(cli_cfg.get("allowed_commands") or []),
        "cli_timeout": float(os.getenv("CLI_TIMEOUT", cli_cfg.get("timeout", 30))),
        "max_output_size": int(os.getenv("CLI_MAX_OUTPUT_SIZE", cli_cfg.get("max_output_size", 10 * 1024 * 1024))),
        "watch_cli_sessions": _flag(os.getenv("GEMINI_WATCH_SESSIONS", cli_cfg.get("watch_sessions", False))),
        "watch_interval": float(cli_cfg.get("watch_interval", 2.0)),
        "max_recent_projects": int(projects_cfg.get("max_recent", 10)),
        "api_key": os.getenv("DESK_API_KEY", cfg.get("api_key")) or None,
        "log_level": os.getenv("LOG_LEVEL", cfg.get("log_level", "INFO")).upper(),
    }

    # DATABASE_URL wins; DATABASE_PATH is a shortcut for a SQLite file
    db_url = os.getenv("DATABASE_URL")
    db_path = os.getenv("DATABASE_PATH")
    if db_url:
        values["database_url"] = db_url
    elif db_path:
        values["database_url"] = f"sqlite:///{db_path}"
    elif cfg.get("database_url"):
        values["database_url"] = cfg["database_url"]

    sessions_dir = os.getenv("GEMINI_TMP_DIR", cli_cfg.get("sessions_dir"))
    if sessions_dir:
        values["cli_sessions_dir"] = Path(sessions_dir)
    projects_dir = os.getenv("PROJECTS_DIR", projects_cfg.get("dir"))
    if projects_dir:
        values["projects_dir"] = Path(projects_dir)

    origins = list(cfg.get("frontend_origins") or [])
    extra = os.getenv("FRONTEND_ORIGINS")
    if extra:
        origins += [o.strip() for o in extra.split(",") if o.strip()]
    values["frontend_origins"] = origins

    return Settings(**values)
