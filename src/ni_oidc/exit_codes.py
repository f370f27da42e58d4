"""Numeric process exit codes used by the ``ni-oidc`` CLI.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~ni_oidc.exceptions.NiOidcError` subclass.
Scripts wrapping the CLI can inspect the exit code to determine the failure
class without parsing stderr.

Example::

    $ ni-oidc provider discover
    $ echo $?
    6   # EXIT_PROVIDER_UNREACHABLE -- the discovery document could not be fetched
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_CONFIGURATION_MISSING = 3
"""Required provider settings (provider URL, client id) are not configured."""

EXIT_CSRF_MISMATCH = 4
"""The callback ``state`` did not match the pending session state."""

EXIT_PROTOCOL_VIOLATION = 5
"""The provider returned an error or a malformed response."""

EXIT_PROVIDER_UNREACHABLE = 6
"""A network-level error or non-success status from the identity provider."""

EXIT_ACCOUNT_RESOLUTION_FAILED = 7
"""No local account could be found or created for the external identity."""

EXIT_INTERRUPTED = 130
"""The command was cancelled with Ctrl-C."""
