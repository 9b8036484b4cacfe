"""Tests for login orchestration and grant lifecycle management."""

from __future__ import annotations

import logging
import threading
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import pytest
import requests

from nylas_cli.auth.callback import CallbackServer
from nylas_cli.auth.config_service import ConfigService
from nylas_cli.auth.service import AuthService, LoginStep
from nylas_cli.domain.models import Config, Grant, Provider
from nylas_cli.store.config_store import ConfigStore
from nylas_cli.store.grant_store import GrantStore
from nylas_cli.utils.errors import (
    AuthenticationError,
    AuthTimeoutError,
    BrowserError,
    GrantNotFoundError,
    InvalidProviderError,
    NetworkError,
    NoDefaultGrantError,
    NylasAPIError,
    PortInUseError,
    SecretStoreError,
)


class FakeClient:
    """Scriptable stand-in for NylasClient."""

    def __init__(self) -> None:
        self.exchange_result: Grant | Exception = Grant(
            id="grant-new", email="new@example.com", provider=Provider.GOOGLE
        )
        self.remote: dict[str, Grant | Exception] = {}
        self.revoke_error: Exception | None = None
        self.revoked: list[str] = []
        self.exchanged: list[tuple[str, str]] = []

    def build_auth_url(
        self, provider: Provider, redirect_uri: str, state: str | None = None
    ) -> str:
        query = urlencode(
            {"provider": provider.value, "redirect_uri": redirect_uri, "state": state}
        )
        return f"https://api.example/v3/connect/auth?{query}"

    def exchange_code(self, code: str, redirect_uri: str) -> Grant:
        self.exchanged.append((code, redirect_uri))
        if isinstance(self.exchange_result, Exception):
            raise self.exchange_result
        return self.exchange_result

    def list_grants(self) -> list[Grant]:
        return [g for g in self.remote.values() if isinstance(g, Grant)]

    def get_grant(self, grant_id: str) -> Grant:
        result = self.remote.get(grant_id)
        if result is None:
            raise GrantNotFoundError(f"Grant not found: {grant_id}")
        if isinstance(result, Exception):
            raise result
        return result

    def revoke_grant(self, grant_id: str) -> None:
        if self.revoke_error is not None:
            raise self.revoke_error
        self.revoked.append(grant_id)


class FakeServer:
    """Scriptable stand-in for CallbackServer."""

    def __init__(
        self,
        port: int,
        expected_state: str | None = None,
        code: str = "auth-code",
        wait_error: Exception | None = None,
        start_error: Exception | None = None,
    ) -> None:
        self.port = port
        self.expected_state = expected_state
        self.code = code
        self.wait_error = wait_error
        self.start_error = start_error
        self.started = False
        self.stop_calls = 0
        self.wait_kwargs: dict[str, Any] = {}

    @property
    def redirect_uri(self) -> str:
        return f"http://127.0.0.1:{self.port}/callback"

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def stop(self) -> None:
        self.stop_calls += 1

    def wait_for_code(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str:
        self.wait_kwargs = {"timeout": timeout, "cancel_event": cancel_event}
        if self.wait_error is not None:
            raise self.wait_error
        return self.code


class ServerFactory:
    """Builds FakeServers and remembers them."""

    def __init__(self, **options: Any) -> None:
        self.options = options
        self.servers: list[FakeServer] = []

    def __call__(self, port: int, expected_state: str | None = None) -> FakeServer:
        server = FakeServer(port, expected_state=expected_state, **self.options)
        self.servers.append(server)
        return server


class FakeBrowser:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.opened: list[str] = []

    def open(self, url: str) -> None:
        if self.error is not None:
            raise self.error
        self.opened.append(url)


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()


def make_service(
    client: FakeClient,
    grant_store: GrantStore,
    config_store: ConfigStore,
    browser: FakeBrowser | None = None,
    factory: ServerFactory | None = None,
) -> AuthService:
    return AuthService(
        client,
        grant_store,
        config_store,
        browser or FakeBrowser(),
        server_factory=factory or ServerFactory(),
    )


class TestLogin:
    """Tests for the browser login flow."""

    def test_successful_login(
        self,
        client: FakeClient,
        grant_store: GrantStore,
        config_store: ConfigStore,
        browser: FakeBrowser,
    ) -> None:
        """Code is exchanged, the grant stored and made default."""
        factory = ServerFactory(code="the-code")
        service = make_service(client, grant_store, config_store, browser, factory)
        seen: list[tuple[str, bool]] = []

        grant = service.login(
            "google", timeout=42, on_auth_url=lambda url, opened: seen.append((url, opened))
        )

        assert grant.id == "grant-new"
        assert grant_store.get_grant("grant-new").email == "new@example.com"
        assert grant_store.get_default_grant() == "grant-new"
        assert service.last_step is LoginStep.DONE

        server = factory.servers[0]
        assert server.port == 8080
        assert server.stop_calls >= 1
        assert server.wait_kwargs["timeout"] == 42
        assert client.exchanged == [("the-code", "http://127.0.0.1:8080/callback")]

        assert browser.opened == [seen[0][0]]
        assert seen[0][1] is True

    def test_state_in_url_matches_server(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        """The server checks the same random state the URL carries."""
        factory = ServerFactory()
        service = make_service(client, grant_store, config_store, factory=factory)
        urls: list[str] = []

        service.login("google", on_auth_url=lambda url, opened: urls.append(url))
        service.login("google", on_auth_url=lambda url, opened: urls.append(url))

        states = [parse_qs(urlparse(u).query)["state"][0] for u in urls]
        assert [s.expected_state for s in factory.servers] == states
        assert states[0] != states[1]

    def test_uses_configured_callback_port(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        config_store.save(Config(callback_port=9999))
        factory = ServerFactory()

        make_service(client, grant_store, config_store, factory=factory).login("google")

        assert factory.servers[0].port == 9999

    def test_browser_failure_is_not_fatal(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        """Without a browser the URL is handed to the caller and login continues."""
        service = make_service(
            client, grant_store, config_store, FakeBrowser(BrowserError("no browser"))
        )
        seen: list[bool] = []

        grant = service.login("google", on_auth_url=lambda url, opened: seen.append(opened))

        assert seen == [False]
        assert grant_store.get_grant(grant.id)

    def test_second_login_keeps_existing_default(
        self,
        client: FakeClient,
        grant_store: GrantStore,
        config_store: ConfigStore,
        work_grant: Grant,
    ) -> None:
        """Only the first grant becomes default automatically."""
        grant_store.save_grant(work_grant)
        grant_store.set_default_grant(work_grant.id)

        make_service(client, grant_store, config_store).login("google")

        assert grant_store.get_default_grant() == work_grant.id
        assert len(grant_store.list_grants()) == 2

    def test_fills_provider_when_exchange_omits_it(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        client.exchange_result = Grant(id="g-ms", email="x@example.com")

        grant = make_service(client, grant_store, config_store).login("microsoft")

        assert grant.provider is Provider.MICROSOFT
        assert grant_store.get_grant("g-ms").provider is Provider.MICROSOFT

    def test_invalid_provider_fails_before_listening(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        factory = ServerFactory()

        with pytest.raises(InvalidProviderError):
            make_service(client, grant_store, config_store, factory=factory).login("aol")

        assert factory.servers == []

    def test_exchange_failure_persists_nothing(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        """A failed exchange leaves the grant store untouched."""
        client.exchange_result = NylasAPIError("invalid_grant", status_code=400)
        factory = ServerFactory()
        service = make_service(client, grant_store, config_store, factory=factory)

        with pytest.raises(NylasAPIError) as exc_info:
            service.login("google")

        assert exc_info.value.details["step"] == "exchange code"
        assert service.last_step is LoginStep.ERRORED
        assert grant_store.list_grants() == []
        assert factory.servers[0].stop_calls >= 1

    def test_save_failure_sets_no_default(
        self,
        client: FakeClient,
        grant_store: GrantStore,
        config_store: ConfigStore,
        mocker,
    ) -> None:
        """A store failure after the exchange is reported at the save step."""
        mocker.patch.object(
            grant_store, "save_grant", side_effect=SecretStoreError("keyring locked")
        )
        factory = ServerFactory()
        service = make_service(client, grant_store, config_store, factory=factory)

        with pytest.raises(SecretStoreError) as exc_info:
            service.login("google")

        assert exc_info.value.details["step"] == "save grant"
        assert service.last_step is LoginStep.ERRORED
        with pytest.raises(NoDefaultGrantError):
            grant_store.get_default_grant()
        assert factory.servers[0].stop_calls >= 1

    def test_failure_is_not_logged_as_error(
        self,
        client: FakeClient,
        grant_store: GrantStore,
        config_store: ConfigStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """The raised error is the only report; nothing is logged at ERROR."""
        caplog.set_level(logging.WARNING)
        client.exchange_result = NylasAPIError("invalid_grant", status_code=400)

        with pytest.raises(NylasAPIError):
            make_service(client, grant_store, config_store).login("google")

        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    def test_timeout(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        """A timeout surfaces as AuthTimeoutError and stores nothing."""
        factory = ServerFactory(wait_error=AuthTimeoutError("Timed out"))
        service = make_service(client, grant_store, config_store, factory=factory)

        with pytest.raises(AuthTimeoutError) as exc_info:
            service.login("google", timeout=0.1)

        assert exc_info.value.details["step"] == "wait for callback"
        assert client.exchanged == []
        assert grant_store.list_grants() == []

    def test_cancel_event_is_forwarded(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        factory = ServerFactory()
        cancel = threading.Event()

        make_service(client, grant_store, config_store, factory=factory).login(
            "google", cancel_event=cancel
        )

        assert factory.servers[0].wait_kwargs["cancel_event"] is cancel

    def test_port_in_use(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        factory = ServerFactory(start_error=PortInUseError("busy", port=8080))

        with pytest.raises(PortInUseError) as exc_info:
            make_service(client, grant_store, config_store, factory=factory).login("google")

        assert exc_info.value.details["step"] == "start callback server"
        assert factory.servers[0].stop_calls >= 1

    def test_unexpected_error_is_wrapped(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        """Errors outside the hierarchy become AuthenticationError."""
        client.exchange_result = RuntimeError("boom")

        with pytest.raises(AuthenticationError) as exc_info:
            make_service(client, grant_store, config_store).login("google")

        assert exc_info.value.details["step"] == "exchange code"
        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestRevokeAndLogout:
    """Tests for revoke_grant, logout and remove_grant."""

    @pytest.fixture
    def populated(
        self, grant_store: GrantStore, work_grant: Grant, personal_grant: Grant
    ) -> GrantStore:
        grant_store.save_grant(work_grant)
        grant_store.save_grant(personal_grant)
        grant_store.set_default_grant(work_grant.id)
        return grant_store

    def test_revoke_switches_default(
        self, client: FakeClient, populated: GrantStore, config_store: ConfigStore
    ) -> None:
        """Revoking the default promotes the first remaining grant."""
        service = make_service(client, populated, config_store)

        service.revoke_grant("grant-work-123")

        assert client.revoked == ["grant-work-123"]
        assert [g.id for g in populated.list_grants()] == ["grant-personal-456"]
        assert populated.get_default_grant() == "grant-personal-456"

    def test_revoke_last_grant_clears_default(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore,
        work_grant: Grant,
    ) -> None:
        grant_store.save_grant(work_grant)
        grant_store.set_default_grant(work_grant.id)

        make_service(client, grant_store, config_store).revoke_grant(work_grant.id)

        with pytest.raises(NoDefaultGrantError):
            grant_store.get_default_grant()

    def test_remote_not_found_still_removes_locally(
        self, client: FakeClient, populated: GrantStore, config_store: ConfigStore
    ) -> None:
        client.revoke_error = GrantNotFoundError("gone")

        make_service(client, populated, config_store).revoke_grant("grant-work-123")

        with pytest.raises(GrantNotFoundError):
            populated.get_grant("grant-work-123")

    def test_remote_failure_keeps_local_grant(
        self, client: FakeClient, populated: GrantStore, config_store: ConfigStore
    ) -> None:
        """Any other API error aborts before touching the store."""
        client.revoke_error = NetworkError("offline")

        with pytest.raises(NetworkError):
            make_service(client, populated, config_store).revoke_grant("grant-work-123")

        assert populated.get_grant("grant-work-123")
        assert populated.get_default_grant() == "grant-work-123"

    def test_logout_revokes_default(
        self, client: FakeClient, populated: GrantStore, config_store: ConfigStore
    ) -> None:
        grant_id = make_service(client, populated, config_store).logout()

        assert grant_id == "grant-work-123"
        assert client.revoked == ["grant-work-123"]

    def test_logout_without_default(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        with pytest.raises(NoDefaultGrantError):
            make_service(client, grant_store, config_store).logout()

    def test_remove_is_local_only(
        self, client: FakeClient, populated: GrantStore, config_store: ConfigStore
    ) -> None:
        removed = make_service(client, populated, config_store).remove_grant(
            "grant-personal-456"
        )

        assert removed.email == "me@outlook.example"
        assert client.revoked == []
        assert populated.get_default_grant() == "grant-work-123"

    def test_remove_unknown(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        with pytest.raises(GrantNotFoundError):
            make_service(client, grant_store, config_store).remove_grant("ghost")


class TestGrantManagement:
    """Tests for listing, switching and registering grants."""

    def test_switch_by_id_and_email(
        self,
        client: FakeClient,
        grant_store: GrantStore,
        config_store: ConfigStore,
        work_grant: Grant,
        personal_grant: Grant,
    ) -> None:
        grant_store.save_grant(work_grant)
        grant_store.save_grant(personal_grant)
        service = make_service(client, grant_store, config_store)

        service.switch_grant("ME@outlook.example")
        assert grant_store.get_default_grant() == personal_grant.id

        service.switch_grant(work_grant.id)
        assert grant_store.get_default_grant() == work_grant.id

    def test_switch_unknown(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        service = make_service(client, grant_store, config_store)

        with pytest.raises(GrantNotFoundError):
            service.switch_grant("nobody@example.com")
        with pytest.raises(GrantNotFoundError):
            service.switch_grant("no-such-id")

    def test_add_grant_with_overrides(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore,
        work_grant: Grant,
    ) -> None:
        """Remote details are fetched, then overridden by the caller."""
        grant_store.save_grant(work_grant)
        grant_store.set_default_grant(work_grant.id)
        client.remote["g-ext"] = Grant(id="g-ext", email="remote@example.com")

        grant = make_service(client, grant_store, config_store).add_grant(
            "g-ext", email="alias@example.com", provider="imap", set_default=True
        )

        assert grant.email == "alias@example.com"
        assert grant.provider is Provider.IMAP
        assert grant_store.get_default_grant() == "g-ext"

    def test_add_unknown_remote_grant(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        with pytest.raises(GrantNotFoundError):
            make_service(client, grant_store, config_store).add_grant("missing")
        assert grant_store.list_grants() == []

    def test_grant_statuses(
        self,
        client: FakeClient,
        grant_store: GrantStore,
        config_store: ConfigStore,
        work_grant: Grant,
        personal_grant: Grant,
    ) -> None:
        """Rows carry the default flag, refreshed status and per-row errors."""
        grant_store.save_grant(work_grant)
        grant_store.save_grant(personal_grant)
        grant_store.set_default_grant(personal_grant.id)
        client.remote[work_grant.id] = work_grant.model_copy(
            update={"grant_status": "invalid"}
        )
        client.remote[personal_grant.id] = NetworkError("offline")

        rows = make_service(client, grant_store, config_store).grant_statuses()

        assert [(r.id, r.status, r.is_default) for r in rows] == [
            (work_grant.id, "invalid", False),
            (personal_grant.id, "unknown", True),
        ]
        assert rows[1].error == "offline"
        assert grant_store.get_grant(work_grant.id).grant_status == "invalid"

    def test_list_grants_is_remote(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore,
        work_grant: Grant,
    ) -> None:
        client.remote[work_grant.id] = work_grant

        assert make_service(client, grant_store, config_store).list_grants() == [
            work_grant
        ]

    def test_show_defaults_to_default_grant(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore,
        work_grant: Grant,
    ) -> None:
        grant_store.save_grant(work_grant)
        grant_store.set_default_grant(work_grant.id)
        client.remote[work_grant.id] = work_grant

        assert make_service(client, grant_store, config_store).show_grant() == work_grant

    def test_whoami(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore,
        work_grant: Grant,
    ) -> None:
        service = make_service(client, grant_store, config_store)
        with pytest.raises(NoDefaultGrantError):
            service.whoami()

        grant_store.save_grant(work_grant)
        grant_store.set_default_grant(work_grant.id)
        assert service.whoami().email == "work@example.com"

    def test_status(
        self,
        client: FakeClient,
        secret_store,
        grant_store: GrantStore,
        config_store: ConfigStore,
        work_grant: Grant,
    ) -> None:
        grant_store.save_grant(work_grant)
        grant_store.set_default_grant(work_grant.id)
        config_service = ConfigService(
            secret_store, config_store, environ={"NYLAS_API_KEY": "nyk_env"}
        )

        status = make_service(client, grant_store, config_store).status(config_service)

        assert status.configured is True
        assert status.api_key_source == "env"
        assert status.secret_store == "memory"
        assert status.region == "us"
        assert status.grant_count == 1
        assert status.default_grant == work_grant


class RedirectingBrowser:
    """Plays the provider: follows the auth URL back to the callback server."""

    def __init__(self, code: str) -> None:
        self.code = code
        self.threads: list[threading.Thread] = []

    def open(self, url: str) -> None:
        params = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        target = f"{params['redirect_uri']}?code={self.code}&state={params['state']}"

        def redirect() -> None:
            with requests.Session() as session:
                session.trust_env = False
                session.get(target, timeout=5)

        thread = threading.Thread(target=redirect)
        thread.start()
        self.threads.append(thread)


class TestLoginEndToEnd:
    """Login against a real loopback callback server."""

    def test_code_from_redirect_is_exchanged_and_stored(
        self, client: FakeClient, grant_store: GrantStore, config_store: ConfigStore
    ) -> None:
        client.exchange_result = Grant(
            id="g1", email="a@b.com", provider=Provider.GOOGLE, grant_status="valid"
        )
        browser = RedirectingBrowser(code="xyz")
        service = AuthService(
            client,
            grant_store,
            config_store,
            browser,
            server_factory=lambda port, expected_state: CallbackServer(
                port=0, expected_state=expected_state
            ),
        )

        grant = service.login("google", timeout=5)
        for thread in browser.threads:
            thread.join(timeout=5)

        assert grant == client.exchange_result
        assert grant_store.get_grant("g1") == grant
        code, redirect_uri = client.exchanged[0]
        assert code == "xyz"
        assert not redirect_uri.endswith(":0/callback")
