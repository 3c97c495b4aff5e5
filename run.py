#!/usr/bin/env python3
"""
Simple run script for the Workflow Execution Engine.

Usage:
    python run.py

Or with custom settings:
    HOST=127.0.0.1 PORT=8080 STATE_DIR=./state python run.py
"""

import uvicorn
import os

from flowexec.config import settings


def main():
    """Run the FastAPI application."""
    reload = os.getenv("RELOAD", "true").lower() == "true"

    print(f"""
  {settings.APP_NAME} v{settings.APP_VERSION}

  Server:    http://{settings.HOST}:{settings.PORT}
  API Docs:  http://{settings.HOST}:{settings.PORT}/docs
  State dir: {settings.STATE_DIR or "(in-memory)"}
    """)

    uvicorn.run(
        "flowexec.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
