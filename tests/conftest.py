"""Shared test fixtures for ni_oidc.

Provides provider settings, an in-memory session and account repository,
isolated config directories, and :class:`FakeProvider`, which stands in
for the identity provider by routing patched ``httpx.get`` / ``httpx.post``
calls to canned responses.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional, Union
from unittest.mock import MagicMock, patch

import httpx
import pytest

from ni_oidc.accounts import InMemoryAccountRepository
from ni_oidc.messages import MessageList
from ni_oidc.models import ProviderConfig
from ni_oidc.output import OutputFormat, OutputManager, reset_output, set_output
from ni_oidc.session import InMemorySessionStore

PROVIDER_URL = "https://auth.example.com"
WELL_KNOWN_URL = f"{PROVIDER_URL}/.well-known/openid-configuration"
AUTHORIZATION_ENDPOINT = f"{PROVIDER_URL}/authorize"
TOKEN_ENDPOINT = f"{PROVIDER_URL}/token"
USERINFO_ENDPOINT = f"{PROVIDER_URL}/userinfo"
END_SESSION_ENDPOINT = f"{PROVIDER_URL}/logout"

DISCOVERY_DOCUMENT: dict[str, Any] = {
    "issuer": PROVIDER_URL,
    "authorization_endpoint": AUTHORIZATION_ENDPOINT,
    "token_endpoint": TOKEN_ENDPOINT,
    "userinfo_endpoint": USERINFO_ENDPOINT,
    "end_session_endpoint": END_SESSION_ENDPOINT,
    "jwks_uri": f"{PROVIDER_URL}/jwks",
}

TOKEN_RESPONSE: dict[str, Any] = {
    "access_token": "access-abc",
    "id_token": "id-xyz",
    "refresh_token": "refresh-123",
    "token_type": "Bearer",
    "expires_in": 3600,
}

USERINFO_RESPONSE: dict[str, Any] = {
    "sub": "abc123def456",
    "email": "jdoe@example.com",
    "preferred_username": "jdoe",
    "given_name": "Jane",
    "family_name": "Doe",
}


def mock_response(body: Union[dict[str, Any], str, None] = None, status_code: int = 200) -> MagicMock:
    """Build a mock ``httpx.Response``.

    A ``str`` body is served as-is and fails JSON decoding.
    """
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    if isinstance(body, str):
        response.text = body
        response.json.side_effect = json.JSONDecodeError("Expecting value", body, 0)
    else:
        response.text = json.dumps(body) if body is not None else ""
        response.json.return_value = body

    if status_code >= 400:
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            message=f"HTTP {status_code}",
            request=MagicMock(),
            response=response,
        )
    else:
        response.raise_for_status.return_value = None
    return response


class FakeProvider:
    """Routes ``httpx.get`` / ``httpx.post`` calls by URL and records them.

    Unrouted URLs answer 404. A route whose body is an exception raises it.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def route(
        self,
        method: str,
        url: str,
        body: Union[dict[str, Any], str, Exception, None] = None,
        status_code: int = 200,
    ) -> None:
        self.routes[(method.upper(), url)] = (body, status_code)

    def standard(self) -> "FakeProvider":
        """Serve discovery, token and userinfo with the default fixtures."""
        self.route("GET", WELL_KNOWN_URL, DISCOVERY_DOCUMENT)
        self.route("POST", TOKEN_ENDPOINT, TOKEN_RESPONSE)
        self.route("GET", USERINFO_ENDPOINT, USERINFO_RESPONSE)
        return self

    def get(self, url: str, **kwargs: Any) -> MagicMock:
        return self._dispatch("GET", url, kwargs)

    def post(self, url: str, **kwargs: Any) -> MagicMock:
        return self._dispatch("POST", url, kwargs)

    def calls_to(self, method: str, url: str) -> list[dict[str, Any]]:
        return [kw for m, u, kw in self.calls if m == method.upper() and u == url]

    def _dispatch(self, method: str, url: str, kwargs: dict[str, Any]) -> MagicMock:
        self.calls.append((method, url, kwargs))
        body, status_code = self.routes.get((method, url), ({"error": "not_found"}, 404))
        if isinstance(body, Exception):
            raise body
        return mock_response(body, status_code)


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Drop the global OutputManager so it never holds CliRunner's closed streams."""
    yield
    reset_output()


@pytest.fixture
def fake_provider() -> FakeProvider:
    """A FakeProvider with ``httpx.get`` and ``httpx.post`` patched to it.

    No routes are registered; call :meth:`FakeProvider.standard` or
    :meth:`FakeProvider.route`.
    """
    provider = FakeProvider()
    with patch("ni_oidc.discovery.httpx.get", side_effect=provider.get), patch(
        "ni_oidc.callback.httpx.post", side_effect=provider.post
    ):
        yield provider


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        provider_url=PROVIDER_URL,
        client_id="client-123",
        client_secret="secret-456",
        base_url="https://www.example.com",
        user_roles=["member"],
    )


@pytest.fixture
def session() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def messages() -> MessageList:
    return MessageList()


@pytest.fixture
def repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG directories at tmp_path and clear NI_OIDC_* variables.

    Returns:
        The tmp_path root directory.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("ni_oidc.config._is_xdg_platform", lambda: True)

    for var in [
        "NI_OIDC_CONFIG",
        "NI_OIDC_PROVIDER_URL",
        "NI_OIDC_CLIENT_ID",
        "NI_OIDC_CLIENT_SECRET",
        "NI_OIDC_BASE_URL",
        "NI_OIDC_SCOPES",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def quiet_output() -> OutputManager:
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True, no_color=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    from typer.testing import CliRunner

    return CliRunner()


def callback_params(session: InMemorySessionStore, **overrides: Optional[str]) -> dict[str, str]:
    """Return callback query parameters carrying the session's pending state."""
    from ni_oidc.session import STATE_KEY

    params = {"code": "auth-code-1", "state": session.get(STATE_KEY)}
    params.update(overrides)
    return {k: v for k, v in params.items() if v is not None}
