"""Main entry point for running the FastAPI application with auto-reload."""
import uvicorn

from anvisa_sync.api import app
from anvisa_sync.config import settings

if __name__ == "__main__":
    print(f"Starting {settings.app_name} v{settings.version}")
    print(f"Environment: {settings.environment.value}")
    print(f"Database: {settings.db.url.split('@')[-1] if '@' in settings.db.url else 'SQLite'}")
    print(f"Integration: {settings.integration.name}")
    print("-" * 50)

    uvicorn.run(
        "anvisa_sync.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        reload_dirs=["anvisa_sync"] if settings.debug else None,
        log_level=settings.logging.level.lower(),
    )
