"""ASGI entrypoint for the WAKTI API."""

from wakti.api.app import create_app
from wakti.containers import build_container

app = create_app(build_container())
