"""OAuth login orchestration and grant lifecycle management.

Login runs strictly in sequence, with exactly one suspension point (the
wait for the browser redirect):

    NOT_STARTED -> AUTH_URL_BUILT -> BROWSER_OPENED -> AWAITING_CALLBACK
    -> CODE_RECEIVED -> TOKEN_EXCHANGED -> GRANT_PERSISTED -> DONE

Any failure moves to ERRORED and is re-raised with ``details["step"]`` naming
the step that failed. A grant is only persisted after a successful code
exchange, and the callback listener is always closed.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from nylas_cli.auth.callback import CallbackServer
from nylas_cli.auth.config_service import ConfigService
from nylas_cli.domain.models import AuthStatus, Grant, GrantStatus, Provider
from nylas_cli.store.config_store import ConfigStore
from nylas_cli.store.grant_store import GrantStore
from nylas_cli.store.secret_store import KEY_API_KEY
from nylas_cli.utils.errors import (
    AuthenticationError,
    GrantNotFoundError,
    NoDefaultGrantError,
    NotFoundError,
    NylasCLIError,
)

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_TIMEOUT = 300.0


class LoginStep(str, Enum):
    """Progress of one login attempt."""

    NOT_STARTED = "not_started"
    AUTH_URL_BUILT = "auth_url_built"
    BROWSER_OPENED = "browser_opened"
    AWAITING_CALLBACK = "awaiting_callback"
    CODE_RECEIVED = "code_received"
    TOKEN_EXCHANGED = "token_exchanged"
    GRANT_PERSISTED = "grant_persisted"
    DONE = "done"
    ERRORED = "errored"


class AuthClient(Protocol):
    """The slice of the Nylas API the auth flow consumes."""

    def build_auth_url(
        self, provider: Provider, redirect_uri: str, state: str | None = None
    ) -> str: ...

    def exchange_code(self, code: str, redirect_uri: str) -> Grant: ...

    def list_grants(self) -> list[Grant]: ...

    def get_grant(self, grant_id: str) -> Grant: ...

    def revoke_grant(self, grant_id: str) -> None: ...


class CallbackListener(Protocol):
    """What the login flow needs from a callback server."""

    @property
    def redirect_uri(self) -> str: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def wait_for_code(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str: ...


class BrowserOpener(Protocol):
    def open(self, url: str) -> None: ...


ServerFactory = Callable[..., CallbackListener]
AuthURLCallback = Callable[[str, bool], None]


class AuthService:
    """Drives the OAuth login flow and manages stored grants.

    Example:
        >>> service = AuthService(client, grant_store, config_store, Browser())
        >>> grant = service.login("google")
        >>> service.whoami().email
        'user@example.com'
    """

    def __init__(
        self,
        client: AuthClient,
        grant_store: GrantStore,
        config_store: ConfigStore,
        browser: BrowserOpener,
        server_factory: ServerFactory = CallbackServer,
    ) -> None:
        """Initialize the service.

        Args:
            client: Nylas API adapter.
            grant_store: Local grant registry.
            config_store: Source of the callback port.
            browser: Opens the authorization URL.
            server_factory: Builds a fresh callback server per login; called
                as ``server_factory(port=..., expected_state=...)``.
        """
        self._client = client
        self._grants = grant_store
        self._config = config_store
        self._browser = browser
        self._server_factory = server_factory
        self.last_step = LoginStep.NOT_STARTED

    # =========================================================================
    # Login
    # =========================================================================

    def login(
        self,
        provider: str | Provider,
        timeout: float | None = DEFAULT_LOGIN_TIMEOUT,
        cancel_event: threading.Event | None = None,
        on_auth_url: AuthURLCallback | None = None,
    ) -> Grant:
        """Run the browser-based OAuth flow and store the resulting grant.

        Args:
            provider: Mailbox provider to authenticate with.
            timeout: Seconds to wait for the browser redirect.
            cancel_event: Set from another thread to abandon the wait.
            on_auth_url: Called with ``(url, opened)`` once the browser
                launch was attempted, so the URL can be shown when
                ``opened`` is False.

        Returns:
            The newly stored grant.

        Raises:
            InvalidProviderError: If ``provider`` is not supported.
            PortInUseError: If the callback port is busy.
            AuthenticationError: If the provider rejected the login.
            AuthTimeoutError: If the redirect never arrived.
            NylasAPIError: If the code exchange failed.
            SecretStoreError: If the grant could not be persisted.
        """
        self.last_step = LoginStep.NOT_STARTED
        provider = Provider.parse(provider)

        config = self._config.load()
        state = secrets.token_urlsafe(32)
        server = self._server_factory(port=config.callback_port, expected_state=state)

        stage = "start callback server"
        try:
            # Bind first so the redirect URI carries the port actually bound
            server.start()

            stage = "build auth url"
            auth_url = self._client.build_auth_url(
                provider, server.redirect_uri, state=state
            )
            self._advance(LoginStep.AUTH_URL_BUILT)

            stage = "open browser"
            opened = self._open_browser(auth_url)
            self._advance(LoginStep.BROWSER_OPENED)
            if on_auth_url is not None:
                on_auth_url(auth_url, opened)

            stage = "wait for callback"
            self._advance(LoginStep.AWAITING_CALLBACK)
            code = server.wait_for_code(timeout=timeout, cancel_event=cancel_event)
            self._advance(LoginStep.CODE_RECEIVED)

            stage = "exchange code"
            grant = self._client.exchange_code(code, server.redirect_uri)
            if grant.provider is Provider.OTHER and provider is not Provider.OTHER:
                grant = grant.model_copy(update={"provider": provider})
            self._advance(LoginStep.TOKEN_EXCHANGED)

            stage = "save grant"
            self._grants.save_grant(grant)
            self._advance(LoginStep.GRANT_PERSISTED)

            stage = "set default grant"
            self._ensure_default(grant.id)
        except NylasCLIError as e:
            self.last_step = LoginStep.ERRORED
            logger.debug("Login failed at '%s': %s", stage, e.message)
            raise e.with_context(step=stage)
        except Exception as e:
            self.last_step = LoginStep.ERRORED
            logger.debug("Login failed at '%s': %s", stage, e)
            raise AuthenticationError(
                f"Login failed ({stage}): {e}",
                details={"step": stage, "error_type": type(e).__name__},
            ) from e
        finally:
            server.stop()

        self._advance(LoginStep.DONE)
        logger.info("Logged in as %s (%s)", grant.email, grant.id)
        return grant

    def _advance(self, step: LoginStep) -> None:
        logger.debug("Login step: %s -> %s", self.last_step.value, step.value)
        self.last_step = step

    def _open_browser(self, url: str) -> bool:
        try:
            self._browser.open(url)
            return True
        except Exception as e:
            # The listener keeps running; the user can open the URL by hand
            logger.warning("Could not open browser: %s", e)
            return False

    def _ensure_default(self, grant_id: str) -> None:
        try:
            self._grants.get_default_grant()
        except NoDefaultGrantError:
            self._grants.set_default_grant(grant_id)

    # =========================================================================
    # Grant lifecycle
    # =========================================================================

    def revoke_grant(self, grant_id: str) -> None:
        """Revoke a grant on Nylas and remove it locally.

        A grant Nylas no longer knows is still removed locally; any other
        API failure aborts before the local store is touched.

        Raises:
            NylasAPIError: If the remote revoke failed for another reason.
        """
        try:
            self._client.revoke_grant(grant_id)
        except GrantNotFoundError:
            logger.info("Grant %s already gone on Nylas, removing locally", grant_id)

        self._grants.delete_grant(grant_id)
        self._auto_switch_default()

    def logout(self) -> str:
        """Revoke the default grant.

        Returns:
            The ID of the revoked grant.

        Raises:
            NoDefaultGrantError: If no default grant is set.
        """
        grant_id = self._grants.get_default_grant()
        self.revoke_grant(grant_id)
        return grant_id

    def remove_grant(self, grant_id: str) -> Grant:
        """Forget a grant locally without revoking it on Nylas.

        Raises:
            GrantNotFoundError: If the grant is not stored locally.
        """
        grant = self._grants.get_grant(grant_id)
        self._grants.delete_grant(grant_id)
        self._auto_switch_default()
        return grant

    def _auto_switch_default(self) -> None:
        grants = self._grants.list_grants()
        try:
            current: str | None = self._grants.get_default_grant()
        except NoDefaultGrantError:
            current = None

        if current is not None and any(g.id == current for g in grants):
            return

        if grants:
            self._grants.set_default_grant(grants[0].id)
            logger.info("Default grant switched to %s", grants[0].id)
        elif current is not None:
            self._grants.clear_default_grant()

    def list_grants(self) -> list[Grant]:
        """List grants from the Nylas API.

        There is no offline fallback to the local registry; a failure here
        fails the listing.
        """
        return self._client.list_grants()

    def grant_statuses(self) -> list[GrantStatus]:
        """Describe every locally stored grant, refreshing its remote status."""
        try:
            default: str | None = self._grants.get_default_grant()
        except NoDefaultGrantError:
            default = None

        rows: list[GrantStatus] = []
        for grant in self._grants.list_grants():
            status, error = grant.grant_status, None
            try:
                remote = self._client.get_grant(grant.id)
                status = remote.grant_status
                if remote.grant_status != grant.grant_status:
                    self._grants.save_grant(
                        grant.model_copy(
                            update={
                                "grant_status": remote.grant_status,
                                "updated_at": remote.updated_at,
                            }
                        )
                    )
            except GrantNotFoundError:
                status, error = "invalid", "not found on Nylas"
            except NylasCLIError as e:
                status, error = "unknown", e.message

            rows.append(
                GrantStatus(
                    id=grant.id,
                    email=grant.email,
                    provider=grant.provider,
                    status=status,
                    is_default=grant.id == default,
                    error=error,
                )
            )
        return rows

    def show_grant(self, grant_id: str | None = None) -> Grant:
        """Fetch grant details from Nylas (the default grant if none given)."""
        if grant_id is None:
            grant_id = self._grants.get_default_grant()
        return self._client.get_grant(grant_id)

    def switch_grant(self, identifier: str) -> Grant:
        """Make a stored grant the default, by grant ID or email.

        Raises:
            GrantNotFoundError: If no stored grant matches.
        """
        try:
            grant = self._grants.get_grant(identifier)
        except GrantNotFoundError:
            if "@" not in identifier:
                raise
            grant = self._grants.get_grant_by_email(identifier)

        self._grants.set_default_grant(grant.id)
        return grant

    def add_grant(
        self,
        grant_id: str,
        email: str | None = None,
        provider: str | Provider | None = None,
        set_default: bool = False,
    ) -> Grant:
        """Register an existing grant, looking its details up on Nylas.

        Args:
            grant_id: Grant to register.
            email: Override the email Nylas reports.
            provider: Override the provider Nylas reports.
            set_default: Make it the default even if one is already set.
        """
        grant = self._client.get_grant(grant_id)
        updates: dict[str, object] = {}
        if email:
            updates["email"] = email
        if provider:
            updates["provider"] = Provider.parse(provider)
        if updates:
            grant = grant.model_copy(update=updates)

        self._grants.save_grant(grant)
        if set_default:
            self._grants.set_default_grant(grant.id)
        else:
            self._ensure_default(grant.id)
        return grant

    def whoami(self) -> Grant:
        """Return the locally stored default grant.

        Raises:
            NoDefaultGrantError: If no default is set.
            GrantNotFoundError: If the default points at a missing grant.
        """
        return self._grants.get_grant(self._grants.get_default_grant())

    def status(self, config_service: ConfigService) -> AuthStatus:
        """Summarize configuration and stored grants."""
        config = self._config.load()
        try:
            default_grant: Grant | None = self.whoami()
        except NotFoundError:
            default_grant = None

        return AuthStatus(
            configured=config_service.is_configured(),
            secret_store=config_service.secret_store.name,
            config_path=str(self._config.path),
            region=config.region,
            api_key_source=config_service.source(KEY_API_KEY),
            default_grant=default_grant,
            grant_count=len(self._grants.list_grants()),
        )


__all__ = [
    "DEFAULT_LOGIN_TIMEOUT",
    "LoginStep",
    "AuthClient",
    "CallbackListener",
    "BrowserOpener",
    "AuthService",
]
