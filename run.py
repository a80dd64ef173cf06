#!/usr/bin/env python3
"""
Microfinance Loan Engine Entry Point

Starts the FastAPI server with host, port and storage taken from
MICROFINANCE_* settings.
"""

import sys

from microfinance.api import run_server
from microfinance.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting Microfinance Loan Engine...")
    print(f"💾 Storage backend: {config.storage_backend}")
    print(f"💰 Interest distribution: {config.interest_distribution_strategy}")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\n👋 Shutting down Microfinance Loan Engine...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
