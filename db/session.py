from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

def _sqlite_file(db_url: str):
    prefix = "sqlite:///"
    if db_url.startswith(prefix) and db_url != prefix + ":memory:":
        return Path(db_url[len(prefix):])
    return None

def make_engine(db_url: str) -> Engine:
    is_sqlite = db_url.startswith("sqlite")
    db_file = _sqlite_file(db_url)
    if db_file is not None:
        db_file.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(db_url, connect_args={"check_same_thread": False} if is_sqlite else {})

    if is_sqlite:
        # SQLite ignores ON DELETE CASCADE unless asked, per connection
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine

def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
