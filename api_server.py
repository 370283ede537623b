#!/usr/bin/env python
"""
Entry point for the Immochat auth API server
"""
import logging
import sys

import uvicorn

from immochat.api_server import app
from immochat.config import config

logger = logging.getLogger(__name__)


if __name__ == "__main__":
    logger.info("=" * 50)
    logger.info(f"Starting Immochat auth API on port {config.PORT} (env={config.ENV})")
    logger.info(f"Health check endpoint: http://0.0.0.0:{config.PORT}/health")
    logger.info("=" * 50)

    try:
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=config.PORT,
            log_config=None,  # Keep the structured logging configured by the app
            access_log=True,
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        sys.exit(1)
