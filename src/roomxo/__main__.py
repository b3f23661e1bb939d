"""Entry point for running roomxo via ``python -m roomxo``."""

from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    """Start the FastAPI-powered roomxo web server."""

    logging.basicConfig(
        level=os.environ.get("ROOMXO_LOG_LEVEL", "INFO").upper(),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )
    host = os.environ.get("ROOMXO_HOST", "0.0.0.0")
    port = int(os.environ.get("ROOMXO_PORT", "8000"))
    uvicorn.run("roomxo.ui:app", host=host, port=port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
