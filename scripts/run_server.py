"""Script to launch the image chat server."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn

# Ensure src/ is on sys.path (so imports work when run directly)
SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from image_chat.config import load_config, require_api_key  # noqa: E402
from image_chat.errors import ConfigurationError  # noqa: E402

logger = logging.getLogger("image_chat.run_server")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the image chat server.")
    parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("HOST", "127.0.0.1"),
        help="Host to bind the server to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "3000")),
        help="Port to bind the server to (default: 3000)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a YAML config file (default: $IMAGE_CHAT_CONFIG or config/default.yaml)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development (default: off)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s - %(message)s")

    if args.config:
        os.environ["IMAGE_CHAT_CONFIG"] = args.config

    # The credential is required up front; without it there is nothing to proxy to.
    try:
        require_api_key(load_config(args.config))
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(1)

    logger.info("Server running on http://%s:%s", args.host, args.port)
    uvicorn.run(
        "image_chat.server:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
