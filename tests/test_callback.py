"""Tests for the callback processing state machine."""

from __future__ import annotations

import httpx
import pytest

from conftest import (
    DISCOVERY_DOCUMENT,
    TOKEN_ENDPOINT,
    TOKEN_RESPONSE,
    USERINFO_ENDPOINT,
    USERINFO_RESPONSE,
    WELL_KNOWN_URL,
    FakeProvider,
    callback_params,
)
from ni_oidc.callback import CallbackProcessor
from ni_oidc.discovery import DiscoveryClient
from ni_oidc.exceptions import CsrfMismatch, ProtocolViolation, ProviderUnreachable
from ni_oidc.models import CallbackQuery, CallbackState, ProviderConfig
from ni_oidc.session import (
    ACCESS_TOKEN_KEY,
    ID_TOKEN_KEY,
    REDIRECT_URI_KEY,
    REFRESH_TOKEN_KEY,
    STATE_KEY,
    USERINFO_KEY,
    InMemorySessionStore,
)
from ni_oidc.state import StateTokenGuard

S = CallbackState


@pytest.fixture
def pending_session(session: InMemorySessionStore) -> InMemorySessionStore:
    """Session holding a pending state token and the redirect URI sent with it."""
    StateTokenGuard(session).generate()
    session.set(REDIRECT_URI_KEY, "https://www.example.com/fr/ni-oidc/callback")
    return session


def _processor(config: ProviderConfig, session: InMemorySessionStore) -> CallbackProcessor:
    return CallbackProcessor(config, DiscoveryClient(config), session)


class TestSuccessfulCallback:
    def test_full_flow(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        fake_provider.standard()

        result = _processor(provider_config, pending_session).process(
            callback_params(pending_session)
        )

        assert result.state is S.AUTHENTICATED
        assert result.history == [S.RECEIVED, S.AUTHENTICATED]
        assert result.error is None
        assert result.tokens == TOKEN_RESPONSE
        assert result.userinfo is not None
        assert result.userinfo.sub == USERINFO_RESPONSE["sub"]

        assert pending_session.get(ACCESS_TOKEN_KEY) == "access-abc"
        assert pending_session.get(ID_TOKEN_KEY) == "id-xyz"
        assert pending_session.get(REFRESH_TOKEN_KEY) == "refresh-123"
        assert pending_session.get(USERINFO_KEY)["email"] == "jdoe@example.com"
        assert STATE_KEY not in pending_session
        assert REDIRECT_URI_KEY not in pending_session

    def test_token_request_form(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        fake_provider.standard()

        _processor(provider_config, pending_session).process(callback_params(pending_session))

        (call,) = fake_provider.calls_to("POST", TOKEN_ENDPOINT)
        assert call["data"] == {
            "grant_type": "authorization_code",
            "code": "auth-code-1",
            "client_id": "client-123",
            "client_secret": "secret-456",
            "redirect_uri": "https://www.example.com/fr/ni-oidc/callback",
        }
        assert call["headers"]["Accept"] == "application/json"

    def test_userinfo_uses_bearer_token(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        fake_provider.standard()

        _processor(provider_config, pending_session).process(callback_params(pending_session))

        (call,) = fake_provider.calls_to("GET", USERINFO_ENDPOINT)
        assert call["headers"]["Authorization"] == "Bearer access-abc"

    def test_redirect_uri_recomputed_without_session_record(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        session: InMemorySessionStore,
    ) -> None:
        fake_provider.standard()
        StateTokenGuard(session).generate()

        CallbackProcessor(provider_config, DiscoveryClient(provider_config), session, "de").process(
            callback_params(session)
        )

        (call,) = fake_provider.calls_to("POST", TOKEN_ENDPOINT)
        assert call["data"]["redirect_uri"] == "https://www.example.com/de/ni-oidc/callback"

    def test_accepts_callback_query_model(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        fake_provider.standard()
        query = CallbackQuery(code="c", state=pending_session.get(STATE_KEY))
        assert _processor(provider_config, pending_session).process(query).authenticated


class TestEarlyRejections:
    def test_provider_error_never_posts(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        fake_provider.standard()

        result = _processor(provider_config, pending_session).process(
            {"error": "access_denied", "error_description": "User cancelled"}
        )

        assert result.state is S.ERROR_FROM_PROVIDER
        assert result.history == [S.RECEIVED, S.ERROR_FROM_PROVIDER]
        assert isinstance(result.error, ProtocolViolation)
        assert result.error.user_message == "Authentication error: access_denied - User cancelled"
        assert fake_provider.calls == []

    @pytest.mark.parametrize("missing", ["code", "state"])
    def test_missing_parameter_never_posts(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
        missing: str,
    ) -> None:
        fake_provider.standard()
        params = callback_params(pending_session)
        del params[missing]

        result = _processor(provider_config, pending_session).process(params)

        assert result.state is S.MISSING_PARAMETERS
        assert isinstance(result.error, ProtocolViolation)
        assert result.error.user_message == "Invalid authentication response."
        assert fake_provider.calls_to("POST", TOKEN_ENDPOINT) == []

    def test_state_mismatch(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        fake_provider.standard()

        result = _processor(provider_config, pending_session).process(
            {"code": "c", "state": "forged"}
        )

        assert result.state is S.STATE_INVALID
        assert isinstance(result.error, CsrfMismatch)
        assert result.error.user_message == "Invalid state parameter. Authentication failed."
        assert STATE_KEY not in pending_session
        assert fake_provider.calls == []

    def test_replayed_callback_rejected(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        fake_provider.standard()
        params = callback_params(pending_session)

        assert _processor(provider_config, pending_session).process(params).authenticated
        replay = _processor(provider_config, pending_session).process(params)

        assert replay.state is S.STATE_INVALID
        assert len(fake_provider.calls_to("POST", TOKEN_ENDPOINT)) == 1

    @pytest.mark.parametrize(
        "params",
        [
            {"error": "access_denied"},
            {"code": "c"},
            {"code": "c", "state": "forged"},
        ],
        ids=["provider-error", "missing-state", "state-mismatch"],
    )
    def test_failure_drops_redirect_uri(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
        params: dict[str, str],
    ) -> None:
        fake_provider.standard()

        result = _processor(provider_config, pending_session).process(params)

        assert not result.authenticated
        assert REDIRECT_URI_KEY not in pending_session

    def test_multi_valued_parameters_rejected(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        fake_provider.standard()

        result = _processor(provider_config, pending_session).process(
            {"code": ["c1", "c2"], "state": [pending_session.get(STATE_KEY)]}
        )

        assert result.state is S.MISSING_PARAMETERS
        assert isinstance(result.error, ProtocolViolation)
        assert REDIRECT_URI_KEY not in pending_session
        assert fake_provider.calls == []

    def test_no_token_endpoint(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        document = {k: v for k, v in DISCOVERY_DOCUMENT.items() if k != "token_endpoint"}
        fake_provider.route("GET", WELL_KNOWN_URL, document)

        result = _processor(provider_config, pending_session).process(
            callback_params(pending_session)
        )

        assert result.state is S.ENDPOINTS_UNAVAILABLE
        assert result.error.user_message == "Failed to discover OIDC token endpoint."


class TestTokenExchangeFailures:
    @pytest.mark.parametrize(
        "body, status_code",
        [
            ({"error": "invalid_grant"}, 400),
            ({"token_type": "Bearer"}, 200),
            ("not json", 200),
        ],
    )
    def test_exchange_failures(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
        body,
        status_code: int,
    ) -> None:
        fake_provider.route("GET", WELL_KNOWN_URL, DISCOVERY_DOCUMENT)
        fake_provider.route("POST", TOKEN_ENDPOINT, body, status_code=status_code)

        result = _processor(provider_config, pending_session).process(
            callback_params(pending_session)
        )

        assert result.state is S.TOKEN_EXCHANGE_FAILED
        assert result.error.user_message == "Failed to authenticate with Next Identity."
        assert ACCESS_TOKEN_KEY not in pending_session
        assert REDIRECT_URI_KEY not in pending_session
        assert fake_provider.calls_to("GET", USERINFO_ENDPOINT) == []

    def test_exchange_network_error(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        fake_provider.route("GET", WELL_KNOWN_URL, DISCOVERY_DOCUMENT)
        fake_provider.route("POST", TOKEN_ENDPOINT, httpx.ReadTimeout("slow"))

        result = _processor(provider_config, pending_session).process(
            callback_params(pending_session)
        )

        assert result.state is S.TOKEN_EXCHANGE_FAILED
        assert isinstance(result.error, ProviderUnreachable)


class TestUserinfoFailures:
    @pytest.mark.parametrize(
        "body, status_code",
        [
            ({"error": "invalid_token"}, 401),
            ({"email": "no-sub@example.com"}, 200),
            ({"sub": ""}, 200),
        ],
    )
    def test_token_only_session(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
        body,
        status_code: int,
    ) -> None:
        fake_provider.route("GET", WELL_KNOWN_URL, DISCOVERY_DOCUMENT)
        fake_provider.route("POST", TOKEN_ENDPOINT, TOKEN_RESPONSE)
        fake_provider.route("GET", USERINFO_ENDPOINT, body, status_code=status_code)

        result = _processor(provider_config, pending_session).process(
            callback_params(pending_session)
        )

        assert result.state is S.AUTHENTICATED
        assert result.history == [S.RECEIVED, S.USERINFO_FETCH_FAILED, S.AUTHENTICATED]
        assert result.userinfo is None
        assert result.error is not None
        assert pending_session.get(ACCESS_TOKEN_KEY) == "access-abc"
        assert USERINFO_KEY not in pending_session

    def test_userinfo_override_endpoint_used(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        fake_provider.route("GET", WELL_KNOWN_URL, DISCOVERY_DOCUMENT)
        fake_provider.route("POST", TOKEN_ENDPOINT, TOKEN_RESPONSE)
        fake_provider.route("GET", "https://profile.example.com/me", USERINFO_RESPONSE)
        config = provider_config.model_copy(update={"userinfo_endpoint": "https://profile.example.com/me"})

        result = _processor(config, pending_session).process(callback_params(pending_session))

        assert result.userinfo is not None
        assert fake_provider.calls_to("GET", USERINFO_ENDPOINT) == []

    def test_no_userinfo_endpoint(
        self,
        fake_provider: FakeProvider,
        provider_config: ProviderConfig,
        pending_session: InMemorySessionStore,
    ) -> None:
        document = {k: v for k, v in DISCOVERY_DOCUMENT.items() if k != "userinfo_endpoint"}
        fake_provider.route("GET", WELL_KNOWN_URL, document)
        fake_provider.route("POST", TOKEN_ENDPOINT, TOKEN_RESPONSE)

        result = _processor(provider_config, pending_session).process(
            callback_params(pending_session)
        )

        assert result.state is S.AUTHENTICATED
        assert result.userinfo is None
        assert isinstance(result.error, ProtocolViolation)
