#!/usr/bin/env python3
"""
Private Lending Entry Point

Starts the FastAPI server with the lending system configured from LENDING_* settings.
"""

import sys

from private_lending.api import run_server
from private_lending.config import get_config
from private_lending.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info(f"Starting Private Lending API on {config.api_host}:{config.api_port}")
    logger.info(f"Reporting currency: {config.reporting_currency}")

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False, workers=config.api_workers)
    except KeyboardInterrupt:
        logger.info("Shutting down Private Lending API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
