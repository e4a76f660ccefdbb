"""Script to launch the BabyCheck AI chat server."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn

# Ensure src/ is on sys.path (so imports work when run from a checkout)
SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from babycheck_server.config import load_config  # noqa: E402
from babycheck_server.server import create_app  # noqa: E402

logger = logging.getLogger("babycheck.run_server")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the BabyCheck AI chat server.")
    parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("HOST", "127.0.0.1"),
        help="Host to bind the server to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "3001")),
        help="Port to bind the server to (default: 3001)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a YAML config file (default: $BABYCHECK_CONFIG or config/default.yaml)",
    )
    args = parser.parse_args()

    cfg = load_config(args.config)
    level = str(cfg.get("logging", {}).get("level") or "INFO").upper()
    logging.basicConfig(level=level)

    app = create_app(args.config)
    logger.info("BabyCheck AI Server running on http://%s:%d", args.host, args.port)
    logger.info("Make sure Ollama is running on %s", cfg.get("ollama", {}).get("base_url"))

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=level.lower(),
    )


if __name__ == "__main__":
    main()
