"""Nylas API adapter used by the authentication flow."""

from nylas_cli.nylas.client import REGION_BASE_URLS, NylasClient

__all__ = [
    "REGION_BASE_URLS",
    "NylasClient",
]
