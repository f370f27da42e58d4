"""Exception hierarchy for ni_oidc.

All exceptions inherit from :class:`NiOidcError`, which carries an
``exit_code`` (used by the CLI) and a ``user_message`` that is safe to show
to an end user. The :class:`~ni_oidc.controller.AuthController` entry points
catch ``NiOidcError``, report ``user_message`` through the messenger and
return a safe redirect, so none of these escape an HTTP handler.

Subclass hierarchy::

    NiOidcError                   (exit 1)
    +-- ConfigError               (exit 1)
    |   +-- ConfigurationMissing  (exit 3)
    +-- CsrfMismatch              (exit 4)
    +-- ProtocolViolation         (exit 5)
    +-- ProviderUnreachable       (exit 6)
    +-- AccountResolutionFailed   (exit 7)
"""

from __future__ import annotations

from typing import Optional

from ni_oidc.exit_codes import (
    EXIT_ACCOUNT_RESOLUTION_FAILED,
    EXIT_CONFIGURATION_MISSING,
    EXIT_CSRF_MISMATCH,
    EXIT_GENERIC_FAILURE,
    EXIT_PROTOCOL_VIOLATION,
    EXIT_PROVIDER_UNREACHABLE,
)


class NiOidcError(Exception):
    """Base exception for all ni_oidc errors.

    Args:
        message: Detailed description for logs and the CLI.
        user_message: Optional override for the end-user facing text.
            Defaults to the class-level :attr:`default_user_message`.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE
    default_user_message: str = "Failed to authenticate with Next Identity."

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(NiOidcError):
    """Raised for configuration problems (invalid JSON, bad credential sources)."""


class ConfigurationMissing(ConfigError):
    """Raised when the provider URL or client id is not configured."""

    exit_code = EXIT_CONFIGURATION_MISSING
    default_user_message = "Next Identity is not configured."


class CsrfMismatch(NiOidcError):
    """Raised when the callback ``state`` does not match the pending session state."""

    exit_code = EXIT_CSRF_MISMATCH
    default_user_message = "Invalid state parameter. Authentication failed."


class ProtocolViolation(NiOidcError):
    """Raised for provider-side errors and malformed protocol messages."""

    exit_code = EXIT_PROTOCOL_VIOLATION
    default_user_message = "Invalid authentication response."


class ProviderUnreachable(NiOidcError):
    """Raised on network failures or non-success responses from the provider.

    Keeps whatever response detail was available so callers can log it.
    """

    exit_code = EXIT_PROVIDER_UNREACHABLE
    default_user_message = (
        "Unable to connect to the Identity Provider. Please check your "
        "configuration and ensure the provider is accessible."
    )

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message, user_message=user_message)
        self.status_code = status_code
        self.body = body


class AccountResolutionFailed(NiOidcError):
    """Raised when no local account can be found or created for a subject."""

    exit_code = EXIT_ACCOUNT_RESOLUTION_FAILED
    default_user_message = "Unable to find or create a user account."
