"""ASGI entrypoint for the grading API."""

from nous_grade.api.app import create_app
from nous_grade.containers import build_container

app = create_app(build_container())
