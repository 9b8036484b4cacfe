"""Command-line interface for the Nylas CLI."""

from nylas_cli.cli.app import app, auth_app
from nylas_cli.cli.services import Services, build_services

__all__ = [
    "app",
    "auth_app",
    "Services",
    "build_services",
]
