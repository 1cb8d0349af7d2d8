#!/usr/bin/env python3
"""
Loan Interest Engine Entry Point

Starts the FastAPI server exposing account and manual interest trigger endpoints.
"""

import sys

from loan_interest.api import run_server
from loan_interest.config import get_config
from loan_interest.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("Starting Loan Interest Engine...")
    print(f"Day count basis: {config.day_count_basis}, timezone: {config.timezone}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Loan Interest Engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
