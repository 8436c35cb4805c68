"""
Main entry point for the Idea Board API.
"""

from .api import app  # noqa: F401

if __name__ == "__main__":
    import uvicorn

    from .config import get_settings

    settings = get_settings()
    uvicorn.run(
        "idea_board.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
