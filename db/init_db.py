# db/init_db.py: create (or reset) the chat database

import argparse
import logging

from sqlalchemy.engine import Engine

from db.models import Base
from db.session import make_engine

logger = logging.getLogger(__name__)

def init_db(engine: Engine, reset: bool = False) -> None:
    """Create missing tables and indexes. With reset, drop everything first."""
    if reset:
        logger.warning("Dropping all tables on %s", engine.url)
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    logger.info("Database ready at %s", engine.url)

def main():
    from config import load_settings

    parser = argparse.ArgumentParser(description="Initialise the chat database.")
    parser.add_argument("--reset", action="store_true", help="Drop all tables before creating them.")
    parser.add_argument("--config", default=None, help="Path to config.yaml.")
    args = parser.parse_args()

    settings = load_settings(args.config)
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    engine = make_engine(settings.database_url)
    try:
        init_db(engine, reset=args.reset)
    finally:
        engine.dispose()

if __name__ == "__main__":
    main()
