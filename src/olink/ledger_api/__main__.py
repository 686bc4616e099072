# src/olink/ledger_api/__main__.py
from __future__ import annotations

import os

import uvicorn

from olink.env import load_dotenv_if_present
from olink.structured_logging import configure_structured_logging


def main() -> None:
    # Load .env early so OLINK_* vars exist before anything reads them.
    load_dotenv_if_present()
    configure_structured_logging()

    from olink.ledger_api.app import create_app

    host = os.getenv("OLINK_API_HOST", "127.0.0.1")
    port = int(os.getenv("OLINK_API_PORT", "8080"))

    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
