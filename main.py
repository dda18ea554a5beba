"""
Application entry point.
"""

import json
import os

import uvicorn

from core.config import settings
from core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger("main")

from app import app  # noqa: E402


def export_openapi_schema(output_path: str = "cache/openapi.json") -> None:
    os.makedirs(os.path.dirname(output_path), exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(app.openapi(), f, indent=2)
    logger.info("OpenAPI schema exported", output_path=output_path)


if __name__ == "__main__":
    try:
        export_openapi_schema()
    except OSError as e:
        logger.error("Error exporting OpenAPI schema", error=str(e))

    logger.info("Starting uvicorn server", host="0.0.0.0", port=8000, environment=settings.environment)
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
        reload_excludes=["*.pyc", "*.log", "*.db", "*.json"],
        reload_includes=["*.py"],
    )
