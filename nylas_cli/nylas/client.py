"""Nylas v3 API adapter for the grant lifecycle.

Only the endpoints the authentication flow needs are covered: building the
hosted-auth URL, exchanging an authorization code, and listing, fetching and
revoking grants.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote, urlencode

import requests
from requests.adapters import HTTPAdapter

from nylas_cli.auth.config_service import ConfigService
from nylas_cli.domain.models import APIConfig, Grant, Provider
from nylas_cli.utils.errors import (
    GrantNotFoundError,
    NetworkError,
    NylasAPIError,
)

logger = logging.getLogger(__name__)

REGION_BASE_URLS = {
    "us": "https://api.us.nylas.com",
    "eu": "https://api.eu.nylas.com",
}

_GRANTS_PAGE_SIZE = 200


class NylasClient:
    """Grant-lifecycle client for the Nylas v3 REST API.

    Credentials are resolved lazily through ConfigService, so the client can
    be constructed before the CLI has been configured.

    Example:
        >>> client = NylasClient(config_service, region="us")
        >>> url = client.build_auth_url(Provider.GOOGLE, "http://127.0.0.1:8080/callback")
        >>> grants = client.list_grants()
    """

    def __init__(
        self,
        credentials: ConfigService,
        region: str = "us",
        api_config: APIConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            credentials: Source of the API key and OAuth client credentials.
            region: Nylas data region ("us" or "eu").
            api_config: Timeout, retry and base URL settings.
            session: HTTP session to use (mainly for tests).
        """
        self._credentials = credentials
        self._api = api_config or APIConfig()
        self._base_url = (self._api.base_url or REGION_BASE_URLS[region]).rstrip("/")

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=self._api.retry_count)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self._session = session

    @property
    def base_url(self) -> str:
        """API base URL for the configured region."""
        return self._base_url

    def _request(
        self,
        method: str,
        path: str,
        *,
        auth: bool = True,
        **kwargs: Any,
    ) -> dict[str, Any]:
        headers = kwargs.pop("headers", {})
        headers.setdefault("Accept", "application/json")
        if auth:
            headers["Authorization"] = f"Bearer {self._credentials.get_api_key()}"

        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(
                method, url, headers=headers, timeout=self._api.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.debug("Network error calling %s %s: %s", method, path, e)
            raise NetworkError(
                f"Could not reach the Nylas API: {e}",
                details={"url": url, "error_type": type(e).__name__},
            ) from e

        if response.status_code >= 400:
            raise self._api_error(response, path)

        if not response.content:
            return {}
        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise NylasAPIError(
                "Nylas API returned a non-JSON response",
                status_code=response.status_code,
                details={"url": url},
            ) from e
        return data

    @staticmethod
    def _api_error(response: requests.Response, path: str) -> NylasAPIError:
        error_type: str | None = None
        message = response.reason or "request failed"
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            err = body.get("error")
            if isinstance(err, dict):
                error_type = err.get("type")
                message = err.get("message") or message
            elif isinstance(err, str):
                error_type = err
                message = body.get("error_description") or message

        logger.debug("Nylas API error %d on %s: %s", response.status_code, path, message)

        if response.status_code == 404:
            return GrantNotFoundError(
                f"Grant not found: {message}",
                details={"status_code": 404, "path": path},
            )
        return NylasAPIError(
            f"Nylas API error ({response.status_code}): {message}",
            status_code=response.status_code,
            error_type=error_type,
            details={"path": path},
        )

    def build_auth_url(
        self,
        provider: Provider,
        redirect_uri: str,
        state: str | None = None,
    ) -> str:
        """Build the hosted-auth URL the user is sent to.

        Raises:
            NotConfiguredError: If no client ID is configured.
        """
        client_id = self._credentials.get_client_id()
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "provider": provider.value,
            "access_type": "offline",
        }
        if state:
            params["state"] = state
        return f"{self._base_url}/v3/connect/auth?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str) -> Grant:
        """Exchange an authorization code for a grant.

        Raises:
            NotConfiguredError: If the client ID or API key is missing.
            NylasAPIError: If Nylas rejects the code.
            NetworkError: If the API cannot be reached.
        """
        client_id = self._credentials.get_client_id()
        client_secret = self._credentials.get_client_secret()
        if not client_secret:
            # Nylas v3 accepts the API key as the client secret
            client_secret = self._credentials.get_api_key()

        data = self._request(
            "POST",
            "/v3/connect/token",
            auth=False,
            json={
                "client_id": client_id,
                "client_secret": client_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )

        grant_id = data.get("grant_id")
        if not grant_id:
            raise NylasAPIError(
                "Token response did not include a grant ID",
                details={"fields": sorted(data.keys())},
            )

        logger.info("Exchanged authorization code for grant %s", grant_id)
        return Grant(
            id=grant_id,
            email=data.get("email", ""),
            provider=data.get("provider") or Provider.OTHER,
            grant_status="valid",
            scope=data.get("scope"),
        )

    def list_grants(self) -> list[Grant]:
        """List every grant of the application."""
        grants: list[Grant] = []
        offset = 0
        while True:
            data = self._request(
                "GET",
                "/v3/grants",
                params={"limit": _GRANTS_PAGE_SIZE, "offset": offset},
            )
            page = data.get("data") or []
            grants.extend(Grant.model_validate(item) for item in page)
            if len(page) < _GRANTS_PAGE_SIZE:
                return grants
            offset += len(page)

    def get_grant(self, grant_id: str) -> Grant:
        """Fetch one grant.

        Raises:
            GrantNotFoundError: If Nylas does not know the grant.
        """
        data = self._request("GET", f"/v3/grants/{quote(grant_id, safe='')}")
        return Grant.model_validate(data.get("data", data))

    def revoke_grant(self, grant_id: str) -> None:
        """Revoke (delete) a grant on the Nylas side.

        Raises:
            GrantNotFoundError: If Nylas does not know the grant.
        """
        self._request("DELETE", f"/v3/grants/{quote(grant_id, safe='')}")
        logger.info("Revoked grant %s", grant_id)


__all__ = [
    "REGION_BASE_URLS",
    "NylasClient",
]
