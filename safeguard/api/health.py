"""Health check endpoint."""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request) -> dict:
    """Return API health status."""
    return {
        "status": "ok",
        "notifications": "enabled" if request.app.state.sos.dispatcher.available else "log-only",
    }
