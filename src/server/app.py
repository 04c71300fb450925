"""FastAPI application for the web UI."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))
from config import settings
from gemini_client import GeminiClient
from session import TryOnSession


# Global instances
session: TryOnSession | None = None
shutdown_event: asyncio.Event | None = None


def get_session() -> TryOnSession:
    """Get the session instance."""
    global session
    if session is None:
        raise RuntimeError("Session not initialized")
    return session


def get_shutdown_event() -> asyncio.Event:
    """Get the shutdown event."""
    global shutdown_event
    if shutdown_event is None:
        raise RuntimeError("Shutdown event not initialized")
    return shutdown_event


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle app startup and shutdown."""
    global session, shutdown_event

    shutdown_event = asyncio.Event()
    session = TryOnSession(GeminiClient(), settings)
    if not settings.gemini.api_key:
        logging.warning("No API key configured; set TRYON_API_KEY or GEMINI_API_KEY")

    yield

    # Shutdown: signal SSE connections to close
    shutdown_event.set()
    await asyncio.sleep(0.5)  # Grace period for SSE connections to close

    session.reset()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Outfit Try-On",
        description="Dress model photos in new outfits with an image generation model",
        version="1.0.0",
        lifespan=lifespan,
    )

    from .routes import router
    app.include_router(router)

    @app.get("/", include_in_schema=False)
    async def root():
        return RedirectResponse(url="/api/session")

    return app


# Create the app instance
app = create_app()
