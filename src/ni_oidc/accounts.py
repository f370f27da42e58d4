"""Local account storage interface.

Accounts are owned by the host application. The flow reaches them only
through :class:`AccountRepository`, whose implementations decide how
accounts are stored and how username uniqueness is judged.

External subjects can be linked to an account in two places:

1. a dedicated ``external_id`` field, when the account schema has one;
2. an auxiliary key/value store keyed by :func:`external_id_key`, which
   every deployment has.

:meth:`AccountRepository.find_by_external_id` checks the dedicated field
first and the auxiliary store second; the first match wins.
:meth:`AccountRepository.link_external_id` writes to both.

:class:`InMemoryAccountRepository` is a complete reference implementation
used by tests and small deployments.
"""

from __future__ import annotations

import hashlib
import itertools
import threading
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from ni_oidc.models import LocalAccount

OPTIONAL_FIELDS = frozenset({"first_name", "last_name", "external_id"})


def external_id_key(sub: str) -> str:
    """Return the auxiliary-store key for a subject: ``sub_`` + MD5 hex of *sub*."""
    return "sub_" + hashlib.md5(sub.encode("utf-8")).hexdigest()


class AccountRepository(ABC):
    """Lookup, creation and update of local accounts.

    Subclasses declare which optional account fields their schema has via
    :attr:`supported_fields` (any of ``first_name``, ``last_name``,
    ``external_id``).
    """

    supported_fields: frozenset[str] = OPTIONAL_FIELDS

    def supports_field(self, name: str) -> bool:
        return name in self.supported_fields

    @abstractmethod
    def find_by_external_id(self, sub: str) -> Optional[LocalAccount]:
        """Return the account linked to *sub*, dedicated field first, then auxiliary store."""
        ...

    @abstractmethod
    def create(self, attributes: dict[str, Any]) -> LocalAccount:
        """Create and persist an account.

        *attributes* holds ``username``, ``email``, ``password`` and
        ``enabled``, plus any supported optional fields.
        """
        ...

    @abstractmethod
    def update(self, account: LocalAccount, attributes: dict[str, Any]) -> LocalAccount:
        """Apply *attributes* to *account* and persist it.

        An empty *attributes* dict persists the account as it is.
        """
        ...

    @abstractmethod
    def exists_by_username(self, name: str) -> bool:
        ...

    @abstractmethod
    def assign_role(self, account: LocalAccount, role_id: str) -> None:
        """Add *role_id* to the account. Persisted by the next :meth:`update`."""
        ...

    @abstractmethod
    def link_external_id(self, account: LocalAccount, sub: str) -> None:
        """Record *sub* in the auxiliary store and, if supported, the dedicated field."""
        ...


class InMemoryAccountRepository(AccountRepository):
    """Thread-safe, dict-backed :class:`AccountRepository`.

    Args:
        supported_fields: Optional fields the simulated schema has.
            Defaults to all of them.
        case_sensitive_usernames: Whether ``"JDoe"`` and ``"jdoe"`` are
            distinct usernames.
    """

    def __init__(
        self,
        supported_fields: Optional[Iterable[str]] = None,
        case_sensitive_usernames: bool = True,
    ) -> None:
        if supported_fields is not None:
            self.supported_fields = frozenset(supported_fields) & OPTIONAL_FIELDS
        self._case_sensitive = case_sensitive_usernames
        self._accounts: dict[int, LocalAccount] = {}
        self._passwords: dict[int, str] = {}
        # Auxiliary store: key -> {account id: sub}
        self._external_data: dict[str, dict[int, str]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self.save_count = 0

    # -- AccountRepository --------------------------------------------------

    def find_by_external_id(self, sub: str) -> Optional[LocalAccount]:
        with self._lock:
            if self.supports_field("external_id"):
                for account in self._accounts.values():
                    if account.external_id == sub:
                        return account.model_copy(deep=True)

            for account_id, value in self._external_data.get(external_id_key(sub), {}).items():
                if value == sub and account_id in self._accounts:
                    return self._accounts[account_id].model_copy(deep=True)
        return None

    def create(self, attributes: dict[str, Any]) -> LocalAccount:
        with self._lock:
            account_id = next(self._ids)
            password = attributes.get("password", "")
            self._passwords[account_id] = hashlib.sha256(password.encode("utf-8")).hexdigest()
            fields = {
                key: value
                for key, value in attributes.items()
                if key != "password" and (key not in OPTIONAL_FIELDS or self.supports_field(key))
            }
            account = LocalAccount(id=account_id, **fields)
            self._store(account)
            return account

    def update(self, account: LocalAccount, attributes: dict[str, Any]) -> LocalAccount:
        with self._lock:
            for key, value in attributes.items():
                if key in OPTIONAL_FIELDS and not self.supports_field(key):
                    continue
                setattr(account, key, value)
            self._store(account)
            return account

    def exists_by_username(self, name: str) -> bool:
        wanted = self._normalise(name)
        with self._lock:
            return any(self._normalise(a.username) == wanted for a in self._accounts.values())

    def assign_role(self, account: LocalAccount, role_id: str) -> None:
        account.roles.add(role_id)

    def link_external_id(self, account: LocalAccount, sub: str) -> None:
        with self._lock:
            self._external_data.setdefault(external_id_key(sub), {})[account.id] = sub
            if self.supports_field("external_id"):
                account.external_id = sub
                self._store(account)

    # -- helpers ------------------------------------------------------------

    def get(self, account_id: int) -> Optional[LocalAccount]:
        with self._lock:
            account = self._accounts.get(account_id)
            return account.model_copy(deep=True) if account else None

    def all(self) -> list[LocalAccount]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._accounts.values()]

    def external_data(self, sub: str) -> dict[int, str]:
        """Return the auxiliary-store entries for *sub* (account id -> sub)."""
        with self._lock:
            return dict(self._external_data.get(external_id_key(sub), {}))

    def _store(self, account: LocalAccount) -> None:
        self._accounts[account.id] = account.model_copy(deep=True)
        self.save_count += 1

    def _normalise(self, name: str) -> str:
        return name if self._case_sensitive else name.casefold()
