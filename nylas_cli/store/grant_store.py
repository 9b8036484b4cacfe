"""Local registry of OAuth grants and the default-grant pointer.

The grant list and the default pointer are serialized together into a
single secret (``grants``), so every mutation replaces both in one write and
the default can never point at a grant that was just removed.
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from nylas_cli.domain.models import Grant
from nylas_cli.store.secret_store import KEY_GRANTS, SecretStore
from nylas_cli.utils.errors import (
    GrantNotFoundError,
    NoDefaultGrantError,
    SecretNotFoundError,
    SecretStoreError,
)

logger = logging.getLogger(__name__)


class _GrantDocument(BaseModel):
    """Persisted form of the grant registry."""

    default_grant: str | None = None
    grants: list[Grant] = Field(default_factory=list)


class GrantStore:
    """Grant registry layered on a SecretStore.

    Lookups by ID are authoritative. Lookups by email return the first
    match in insertion order, so callers that need uniqueness should use IDs.

    Example:
        >>> store = GrantStore(secret_store)
        >>> store.save_grant(Grant(id="g1", email="a@b.com", provider="google"))
        >>> store.get_grant_by_email("a@b.com").id
        'g1'
    """

    def __init__(self, secrets: SecretStore) -> None:
        self._secrets = secrets

    def _load(self) -> _GrantDocument:
        try:
            raw = self._secrets.get(KEY_GRANTS)
        except SecretNotFoundError:
            return _GrantDocument()

        try:
            return _GrantDocument.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.debug("Stored grant list is corrupted: %s", e)
            raise SecretStoreError(
                "Stored grant list is corrupted",
                details={
                    "error_count": e.error_count(),
                    "hint": "Run 'nylas auth reset' and log in again",
                },
            ) from e

    def _store(self, document: _GrantDocument) -> None:
        self._secrets.set(KEY_GRANTS, document.model_dump_json())

    def list_grants(self) -> list[Grant]:
        """Return every stored grant in insertion order."""
        return self._load().grants

    def get_grant(self, grant_id: str) -> Grant:
        """Return the grant with ``grant_id``.

        Raises:
            GrantNotFoundError: If no grant has that ID.
        """
        for grant in self._load().grants:
            if grant.id == grant_id:
                return grant
        raise GrantNotFoundError(
            f"Grant not found: {grant_id}", details={"grant_id": grant_id}
        )

    def get_grant_by_email(self, email: str) -> Grant:
        """Return the first grant whose email matches, case-insensitively.

        Raises:
            GrantNotFoundError: If no grant has that email.
        """
        wanted = email.strip().lower()
        for grant in self._load().grants:
            if grant.email.lower() == wanted:
                return grant
        raise GrantNotFoundError(
            f"No grant for email: {email}", details={"email": email}
        )

    def save_grant(self, grant: Grant) -> None:
        """Insert ``grant``, or replace the stored grant with the same ID in place."""
        document = self._load()
        for index, existing in enumerate(document.grants):
            if existing.id == grant.id:
                document.grants[index] = grant
                break
        else:
            document.grants.append(grant)
        self._store(document)
        logger.info("Saved grant %s (%s)", grant.id, grant.email)

    def delete_grant(self, grant_id: str) -> None:
        """Remove ``grant_id``, clearing the default pointer if it matched.

        Removing an unknown grant is not an error.
        """
        document = self._load()
        remaining = [g for g in document.grants if g.id != grant_id]
        cleared_default = document.default_grant == grant_id

        if len(remaining) == len(document.grants) and not cleared_default:
            logger.debug("No grant %s to delete", grant_id)
            return

        document.grants = remaining
        if cleared_default:
            document.default_grant = None
        self._store(document)
        logger.info("Deleted grant %s", grant_id)

    def get_default_grant(self) -> str:
        """Return the default grant ID.

        Raises:
            NoDefaultGrantError: If no default is set.
        """
        default = self._load().default_grant
        if not default:
            raise NoDefaultGrantError()
        return default

    def set_default_grant(self, grant_id: str) -> None:
        """Point the default at ``grant_id``.

        Raises:
            GrantNotFoundError: If ``grant_id`` is not stored locally.
        """
        document = self._load()
        if not any(g.id == grant_id for g in document.grants):
            raise GrantNotFoundError(
                f"Grant not found: {grant_id}", details={"grant_id": grant_id}
            )
        document.default_grant = grant_id
        self._store(document)
        logger.info("Default grant set to %s", grant_id)

    def clear_default_grant(self) -> None:
        """Unset the default pointer."""
        document = self._load()
        if document.default_grant is None:
            return
        document.default_grant = None
        self._store(document)

    def clear_grants(self) -> None:
        """Forget every grant and the default pointer."""
        self._store(_GrantDocument())
        logger.info("Cleared all stored grants")


def dump_grants(grants: list[Grant]) -> str:
    """Serialize grants as indented JSON for ``--json`` output."""
    return json.dumps([g.model_dump(mode="json") for g in grants], indent=2)


__all__ = [
    "GrantStore",
    "dump_grants",
]
