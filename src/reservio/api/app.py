"""ASGI entrypoint: uvicorn reservio.api.app:app"""

from reservio.api.factory import create_app

app = create_app()
