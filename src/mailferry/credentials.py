"""Credential providers injected into network message sources.

Sources never prompt on their own. They receive a provider at construction
and ask it for a username/password pair during ``load()``, which keeps
terminal interaction out of the ingestion path and lets tests pass fixed
values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

import keyring
from keyring.errors import KeyringError
import typer


logger = logging.getLogger(__name__)

DEFAULT_SECRETS_SERVICE = "mailferry"


@dataclass(frozen=True)
class Credentials:
    """Username and password for one account."""

    username: str
    password: str = field(repr=False)


@runtime_checkable
class CredentialProvider(Protocol):
    """Supplies credentials for an account on a host."""

    def get(self, host: str, username: Optional[str] = None) -> Credentials:
        ...


@dataclass
class StaticCredentialProvider:
    """Provider returning values fixed up front (flags, tests)."""

    username: str
    password: str = field(repr=False)

    def get(self, host: str, username: Optional[str] = None) -> Credentials:
        return Credentials(username=username or self.username, password=self.password)


@dataclass
class SecretStore:
    """Keyring abstraction for looking up stored passwords."""

    service_name: str = DEFAULT_SECRETS_SERVICE
    keyring_module: Any = field(default=keyring)

    def get_secret(self, key: str) -> Optional[str]:
        try:
            return self.keyring_module.get_password(self.service_name, key)
        except KeyringError as exc:
            logger.debug("Keyring lookup failed", extra={"ingest_error": str(exc)})
            return None

    def set_secret(self, key: str, value: str) -> None:
        self.keyring_module.set_password(self.service_name, key, value)


def secret_key(host: str, username: str) -> str:
    return f"{username}@{host}"


@dataclass
class PromptCredentialProvider:
    """Looks in the keyring first, then asks on the terminal.

    Missing usernames are prompted with echo; passwords are prompted with
    ``hide_input`` so they never show on screen.
    """

    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    secret_store: SecretStore = field(default_factory=SecretStore)
    prompt: Callable[..., str] = field(default=typer.prompt, repr=False)

    def get(self, host: str, username: Optional[str] = None) -> Credentials:
        user = username or self.username
        if not user:
            user = self.prompt(f"Username for {host}")
        password = self.password
        if password is None:
            password = self.secret_store.get_secret(secret_key(host, user))
        if password is None:
            password = self.prompt(f"Password for {user}@{host}", hide_input=True)
        return Credentials(username=user, password=password)


__all__ = [
    "CredentialProvider",
    "Credentials",
    "PromptCredentialProvider",
    "SecretStore",
    "StaticCredentialProvider",
    "secret_key",
]
