"""FastAPI app factory for the Civitas indexer API.

Run locally with ``civitas-api`` or ``uvicorn civitas.api.app:app``.
"""

import uvicorn
from fastapi import FastAPI

from civitas.api.contracts import router as contracts_router
from civitas.settings import get_settings


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(title="Civitas Indexer API", version="0.1")
    app.include_router(contracts_router)

    @app.get("/healthz", tags=["health"])
    def healthz():
        return {"status": "ok"}

    return app


# For uvicorn, expose `app` at module level
app = create_app()


def main() -> None:
    """Serve the API on the host and port from ``settings.api``."""

    settings = get_settings()
    uvicorn.run(
        "civitas.api.app:app",
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.log_level.lower(),
    )


__all__ = ["app", "create_app", "main"]
