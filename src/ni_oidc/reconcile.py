"""Mapping of provider identities onto local accounts.

:class:`IdentityReconciler` turns userinfo claims into a
:class:`~ni_oidc.models.LocalAccount`:

1. Look the subject up through the account repository.
2. Found: refresh email and name fields that drifted, saving only when
   something actually changed.
3. Not found and auto-registration on: create an account with a unique
   username and a random unusable password, link the subject, and assign
   the configured default roles.
4. Not found and auto-registration off: return ``None``.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from typing import Any, Optional, Union

from pydantic import ValidationError

from ni_oidc.accounts import AccountRepository
from ni_oidc.models import LocalAccount, ProviderConfig, UserInfoClaims

logger = logging.getLogger(__name__)


def derive_username(claims: UserInfoClaims) -> str:
    """Pick a candidate username from the claims.

    ``preferred_username``, else the local part of ``email``, else
    ``"user_"`` followed by the first 8 characters of ``sub``.
    """
    if claims.preferred_username:
        return claims.preferred_username
    if claims.email:
        local_part = claims.email.split("@")[0]
        if local_part:
            return local_part
    return "user_" + claims.sub[:8]


class IdentityReconciler:
    """Find, refresh or create the local account for a set of claims."""

    def __init__(self, config: ProviderConfig, repository: AccountRepository) -> None:
        self._config = config
        self._repository = repository

    def reconcile(
        self, claims: Union[UserInfoClaims, Mapping[str, Any]]
    ) -> Optional[LocalAccount]:
        """Return the local account for *claims*, or ``None`` if there is none.

        Claims without a non-empty ``sub`` never match or create anything.
        """
        if not isinstance(claims, UserInfoClaims):
            try:
                claims = UserInfoClaims.model_validate(dict(claims))
            except ValidationError:
                logger.error("Cannot reconcile claims without a subject identifier")
                return None

        account = self._repository.find_by_external_id(claims.sub)
        if account is not None:
            self.update_account(account, claims)
            return account

        if self._config.auto_register:
            return self.create_account(claims)

        logger.info("User %s not found and auto-registration is disabled", claims.sub)
        return None

    def update_account(self, account: LocalAccount, claims: UserInfoClaims) -> bool:
        """Apply drifted claim values to *account*.

        Returns:
            ``True`` if the account was changed and saved.
        """
        changes: dict[str, Any] = {}
        if claims.email and account.email != claims.email:
            changes["email"] = claims.email
        if (
            claims.given_name is not None
            and self._repository.supports_field("first_name")
            and account.first_name != claims.given_name
        ):
            changes["first_name"] = claims.given_name
        if (
            claims.family_name is not None
            and self._repository.supports_field("last_name")
            and account.last_name != claims.family_name
        ):
            changes["last_name"] = claims.family_name

        if not changes:
            return False

        self._repository.update(account, changes)
        logger.info(
            "Updated user %s with Next Identity user info (%s)",
            account.username,
            ", ".join(sorted(changes)),
        )
        return True

    def create_account(self, claims: UserInfoClaims) -> LocalAccount:
        """Create, link and assign roles to a new account for *claims*."""
        username = self.ensure_unique_username(derive_username(claims))

        attributes: dict[str, Any] = {
            "username": username,
            "email": claims.email or "",
            "password": secrets.token_urlsafe(32),
            "enabled": True,
        }
        if claims.given_name is not None and self._repository.supports_field("first_name"):
            attributes["first_name"] = claims.given_name
        if claims.family_name is not None and self._repository.supports_field("last_name"):
            attributes["last_name"] = claims.family_name

        account = self._repository.create(attributes)
        self._repository.link_external_id(account, claims.sub)
        self.assign_roles(account)

        logger.info("Created new user %s for Next Identity user %s", username, claims.sub)
        return account

    def ensure_unique_username(self, name: str) -> str:
        """Append ``_1``, ``_2``, ... to *name* until no account uses it."""
        candidate = name
        suffix = 1
        while self._repository.exists_by_username(candidate):
            candidate = f"{name}_{suffix}"
            suffix += 1
        return candidate

    def assign_roles(self, account: LocalAccount) -> None:
        """Add the configured default roles the account does not hold yet, then save."""
        for role_id in self._config.user_roles:
            if role_id and role_id not in account.roles:
                self._repository.assign_role(account, role_id)
        self._repository.update(account, {})
