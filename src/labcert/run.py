#!/usr/bin/env python
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from loguru import logger

if __name__ == "__main__":
    logger.info("Lab CA service, start running!")
    load_dotenv(Path.cwd() / ".env")
    log_level = os.getenv("LABCERT_LOG_LEVEL", "INFO").lower()

    uvicorn.run(
        "src.labcert.main:app",
        host=os.getenv("LABCERT_HOST", "127.0.0.1"),
        port=int(os.getenv("LABCERT_PORT", "8000")),
        log_level=log_level,
    )
