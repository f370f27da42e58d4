"""Canonical Pydantic models shared across all ni_oidc modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Configuration models** -- persisted as JSON in the user's config directory:
    :class:`DiscoveryCacheConfig` and :class:`ProviderConfig`.

**Identity models** -- claims received from the provider and the local
account record they are reconciled into:
    :class:`UserInfoClaims` and :class:`LocalAccount`.

**Flow models** -- transient values passed between the flow components:
    :class:`FlowAction`, :class:`AuthorizationRequest`, :class:`Redirect`,
    :class:`CallbackQuery`, :class:`CallbackState`, and
    :class:`CallbackResult`.

All models use Pydantic v2. Discovery results are plain dicts
(:data:`DiscoveredEndpoints`) because providers publish many more keys than
the flow consumes and every one of them is passed through unmodified.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from ni_oidc.exceptions import NiOidcError


DiscoveredEndpoints = dict[str, Any]
"""Endpoint name -> URL mapping parsed from the discovery document."""

DEFAULT_SCOPES = "openid profile email"
CALLBACK_PATH = "/ni-oidc/callback"


# --- Configuration ---


class DiscoveryCacheConfig(BaseModel):
    """Shared discovery cache settings stored in :class:`ProviderConfig`.

    Disabled by default: every flow invocation then re-discovers the
    provider, which is the reference behaviour.
    """

    enabled: bool = Field(default=False, description="Share discovery results across requests")
    ttl_seconds: int = Field(default=300, ge=1, description="Maximum staleness in seconds")


class ProviderConfig(BaseModel):
    """Immutable identity provider and account settings.

    Loaded by :func:`~ni_oidc.config.load_provider_config` and handed to
    every flow component. Unknown keys are ignored so that settings files
    written by newer versions keep loading.

    Example::

        ProviderConfig(
            provider_url="https://auth.example.com",
            client_id="my-client",
            client_secret="s3cret",
            base_url="https://www.example.com",
        )
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    provider_url: str = Field(default="", description="Provider base URL, no trailing slash")
    client_id: str = Field(default="", description="OAuth client id")
    client_secret: str = Field(default="", description="OAuth client secret")
    client_secret_source: Optional[str] = Field(
        default=None,
        description="Credential source for the secret: env:VAR or file:/path",
    )
    scopes: str = Field(default=DEFAULT_SCOPES, description="Space-delimited scopes")
    userinfo_endpoint: Optional[str] = Field(
        default=None, description="Overrides the discovered userinfo endpoint"
    )
    auto_register: bool = Field(
        default=True, description="Create local accounts for unknown subjects"
    )
    user_roles: list[str] = Field(
        default_factory=list, description="Roles assigned to newly created accounts"
    )
    login_button_text: str = "Log in with Next Identity"
    register_button_text: str = "Register with Next Identity"
    base_url: str = Field(default="", description="Site base URL used for the callback URL")
    front_page_path: str = "/"
    account_page_path: str = "/user"
    http_timeout: float = Field(default=10.0, gt=0, description="Provider request timeout")
    discovery_cache: DiscoveryCacheConfig = Field(default_factory=DiscoveryCacheConfig)

    @field_validator("provider_url", "base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("userinfo_endpoint")
    @classmethod
    def _blank_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @property
    def well_known_url(self) -> str:
        """URL of the provider's discovery document."""
        return f"{self.provider_url}/.well-known/openid-configuration"

    def get(self, key: str, default: Any = None) -> Any:
        """Key/value view over the settings, returning *default* for unknown keys."""
        if key not in type(self).model_fields:
            return default
        return getattr(self, key)

    def missing_required(self) -> list[str]:
        """Return the names of required settings that are empty."""
        return [name for name in ("provider_url", "client_id") if not getattr(self, name)]


# --- Identity ---


class UserInfoClaims(BaseModel):
    """Claims returned by the provider's userinfo endpoint.

    ``sub`` is the join key to local accounts and must be non-empty. All
    other claims the provider sends are preserved in ``model_extra``.
    """

    model_config = ConfigDict(extra="allow")

    sub: str = Field(min_length=1)
    email: Optional[str] = None
    preferred_username: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None


class LocalAccount(BaseModel):
    """A local account record as seen through the account repository."""

    id: int
    username: str
    email: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    roles: set[str] = Field(default_factory=set)
    enabled: bool = True
    external_id: Optional[str] = None


# --- Flow ---


class FlowAction(str, enum.Enum):
    """Provider pages that replace the authorization endpoint entirely."""

    REGISTER = "register"
    PERSONAL_DETAILS = "personal-details"


class AuthorizationRequest(BaseModel):
    """Parameters of a single authorization redirect. Never persisted."""

    client_id: str
    redirect_uri: str
    response_type: str = "code"
    scope: str
    state: str
    prompt: Optional[str] = None
    max_age: Optional[int] = None
    action: Optional[FlowAction] = None

    def query_params(self) -> dict[str, str]:
        """Return the query parameters in the order the provider expects."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": self.response_type,
            "scope": self.scope,
            "state": self.state,
        }
        if self.prompt:
            params["prompt"] = self.prompt
        if self.max_age:
            params["max_age"] = str(self.max_age)
        return params

    def to_url(self, endpoint: str) -> str:
        return f"{endpoint}?{urlencode(self.query_params())}"


class Redirect(BaseModel):
    """A redirect decision handed back to the HTTP layer.

    ``external`` marks targets on another host (the provider), which web
    frameworks may need to allow explicitly.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    external: bool = False


class CallbackQuery(BaseModel):
    """Query parameters received on the callback path."""

    model_config = ConfigDict(extra="ignore")

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None
    destination: Optional[str] = None


class CallbackState(str, enum.Enum):
    """States of the callback processing state machine."""

    RECEIVED = "received"
    ERROR_FROM_PROVIDER = "error_from_provider"
    MISSING_PARAMETERS = "missing_parameters"
    STATE_INVALID = "state_invalid"
    ENDPOINTS_UNAVAILABLE = "endpoints_unavailable"
    TOKEN_EXCHANGE_FAILED = "token_exchange_failed"
    USERINFO_FETCH_FAILED = "userinfo_fetch_failed"
    AUTHENTICATED = "authenticated"


@dataclass
class CallbackResult:
    """Outcome of :meth:`~ni_oidc.callback.CallbackProcessor.process`.

    Attributes:
        state: The terminal state reached.
        tokens: The token endpoint response, when the exchange succeeded.
        userinfo: Claims, when ``state`` is ``AUTHENTICATED`` and the
            userinfo fetch succeeded.
        error: The failure that led to a terminal failure state, or the
            userinfo failure when authentication proceeded with tokens only.
        history: Every state visited, in order, starting with ``RECEIVED``.
    """

    state: CallbackState
    tokens: dict[str, Any] = field(default_factory=dict)
    userinfo: Optional[UserInfoClaims] = None
    error: Optional["NiOidcError"] = None
    history: list[CallbackState] = field(default_factory=list)

    @property
    def authenticated(self) -> bool:
        return self.state == CallbackState.AUTHENTICATED
