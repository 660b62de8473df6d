#!/usr/bin/env python3
"""
Kite backend server.
"""

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from kite.config import get_settings  # noqa: E402
from kite.core.logging import setup_logging  # noqa: E402

# our own logging setup; uvicorn's default log_config would replace it
setup_logging()

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "kite.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_debug,
        log_level=settings.log_level.lower(),
        log_config=None,
    )
