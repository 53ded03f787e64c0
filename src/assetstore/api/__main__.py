from __future__ import annotations

import os

import uvicorn

from assetstore.env import load_dotenv_if_present
from assetstore.log import configure_logging


def main() -> None:
    # Load .env early so ASSETSTORE_* vars exist before anything reads them.
    load_dotenv_if_present()
    configure_logging()

    from assetstore.api.app import create_app

    host = os.getenv("ASSETSTORE_API_HOST", "127.0.0.1")
    port = int(os.getenv("ASSETSTORE_API_PORT", "8080"))

    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
