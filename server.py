# server.py
import argparse
import logging
import os

import uvicorn

from config import load_settings


def main():
    parser = argparse.ArgumentParser(description="Run the Gemini Desk backend.")
    parser.add_argument("--config", help="Path to a YAML config file (default: config.yaml).")
    parser.add_argument("--host", help="Bind address (overrides HOST / config).")
    parser.add_argument("--port", type=int, help="Port (overrides PORT / config).")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development).")
    args = parser.parse_args()

    if args.config:
        # the app factory re-reads settings in the worker process
        os.environ["DESK_CONFIG"] = args.config
    settings = load_settings(args.config)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = args.host or settings.host
    port = args.port or settings.port
    logging.getLogger(__name__).info(
        "Starting on %s:%s (%s), CLI=%s", host, port, settings.environment, settings.cli_path
    )
    uvicorn.run(
        "api.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
