"""FastAPI dependencies."""

from fastapi import Request

from ingestion.container import Container


def get_container(request: Request) -> Container:
    """Container attached to the running app by create_app()."""
    return request.app.state.container
