"""Main entry point for running the FastAPI application with auto-reload."""
import uvicorn

from hub.config import settings

if __name__ == "__main__":
    print(f"Starting {settings.app_name} v{settings.version}")
    print(f"Debug mode: {settings.debug}")
    print(f"Database: {settings.db.url.split('@')[-1] if '@' in settings.db.url else 'SQLite'}")
    print(f"Semantic service: {'Gemini ' + settings.gemini.model if settings.gemini.api_key else 'unavailable (local fallbacks)'}")
    print(f"Auto-reload: {'Enabled' if settings.debug else 'Disabled'}")
    print("-" * 50)

    uvicorn.run(
        "hub.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        reload_dirs=["hub", "ai"] if settings.debug else None,
        reload_includes=["*.py"] if settings.debug else None,
        log_level=settings.logging.level.lower(),
    )
