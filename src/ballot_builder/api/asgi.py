"""ASGI entrypoint for the ballot builder API."""

from ballot_builder.api.app import create_app
from ballot_builder.containers import build_container

app = create_app(build_container())
