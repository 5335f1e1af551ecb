"""
FastAPI/ASGI application entrypoint.

Services are built from the environment in the app lifespan.
Run with: uvicorn backend_chaingate.api_server.app:app --host 0.0.0.0 --port 8000
"""

from backend_chaingate.api_server.server import create_app

app = create_app()

__all__ = ["app"]
