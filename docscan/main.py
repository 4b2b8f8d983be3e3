"""Application entry point for the document scanning API server."""

import os

import uvicorn

from docscan.api.app import app
from docscan.utils.config import load_config
from docscan.utils.logger import setup_logging


def main() -> None:
    """Start the FastAPI application server."""
    config = load_config()
    setup_logging(config.log_level)
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
