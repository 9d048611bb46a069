"""Main entry point for the agent engine."""

import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from agent_engine.api import create_fastapi_app
from agent_engine.app import Application
from agent_engine.logging_config import setup_logging


def main():
    """Run the application."""
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    setup_logging()

    # Get configuration from environment
    api_host = os.getenv("API_HOST", "localhost")
    api_port = int(os.getenv("API_PORT", "8000"))

    # Create FastAPI app around an explicitly constructed application
    app = create_fastapi_app(Application())

    # Run with uvicorn
    uvicorn.run(
        app,
        host=api_host,
        port=api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
