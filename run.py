#!/usr/bin/env python3
"""
Custody Ledger Entry Point

Starts the FastAPI server with the custody ledger.
"""

import sys

from custody_ledger.api import run_server
from custody_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Custody Ledger...")
    print(f"Owner account: {config.owner_account}")
    print(f"Storage backend: {config.storage_backend}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Custody Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
