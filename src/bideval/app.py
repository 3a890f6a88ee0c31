"""ASGI entry point: ``uvicorn bideval.app:app``."""

from bideval.api.main import create_app

app = create_app()
