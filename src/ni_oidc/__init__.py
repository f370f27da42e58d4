"""ni_oidc -- relying-party side of the OpenID Connect Authorization Code flow.

This package discovers a provider's endpoints, sends users to the provider
for login, registration, or profile editing, completes the callback (code
exchange, userinfo retrieval), keeps a single-use CSRF ``state`` handshake
in the user's session, and maps the external identity onto a local account.

Typical wiring::

    from ni_oidc.controller import AuthController
    from ni_oidc.session import InMemorySessionStore

    controller = AuthController(config, session, repository)
    redirect = controller.authorize()
    # ... provider redirects back ...
    redirect = controller.callback({"code": "...", "state": "..."})

Modules:
    models: Pydantic models shared across the package.
    config: XDG-aware settings persistence and env overrides.
    exceptions: Error taxonomy with exit-code mapping.
    discovery: Provider metadata discovery.
    state: CSRF state token generation and validation.
    authorize: Authorization redirect construction.
    callback: Callback processing state machine.
    reconcile: Mapping of userinfo claims to local accounts.
    logout: Session teardown and provider end-session redirect.
    controller: Entry points bound to HTTP handlers.
    web: FastAPI router for the ``/ni-oidc/*`` paths.
    app: Operator CLI entry point.
"""

__version__ = "0.3.0"
