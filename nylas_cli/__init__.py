"""Nylas CLI - credential, OAuth login and grant management for Nylas v3."""

__version__ = "0.1.0"
