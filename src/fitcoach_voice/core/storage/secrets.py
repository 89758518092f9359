from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol


class SecretStore(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...


@dataclass(slots=True)
class InMemorySecretStore:
    _items: dict[str, str]

    def __init__(self, items: dict[str, str] | None = None) -> None:
        self._items = dict(items or {})

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)


@dataclass(slots=True)
class KeyringSecretStore:
    service_name: str = "fitcoach-voice"

    def _keyring(self):
        try:
            import keyring  # type: ignore
        except ModuleNotFoundError as exc:
            raise ModuleNotFoundError(
                "keyring is required for KeyringSecretStore; install with `pip install keyring`"
            ) from exc
        return keyring

    def get(self, key: str) -> str | None:
        keyring = self._keyring()
        from keyring.errors import KeyringError  # type: ignore

        try:
            return keyring.get_password(self.service_name, key)
        except KeyringError:
            # No usable backend (headless server); fall back to the environment.
            return None

    def set(self, key: str, value: str) -> None:
        keyring = self._keyring()
        from keyring.errors import KeyringError  # type: ignore

        try:
            keyring.set_password(self.service_name, key, value)
        except KeyringError as exc:
            raise ValueError(f"keyring unavailable: {exc}") from exc

    def delete(self, key: str) -> None:
        keyring = self._keyring()
        from keyring.errors import KeyringError, PasswordDeleteError  # type: ignore

        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            return
        except KeyringError as exc:
            raise ValueError(f"keyring unavailable: {exc}") from exc


def mask_secret(value: str, *, unmasked_prefix: int = 3) -> str:
    if not value:
        return value
    if len(value) <= unmasked_prefix:
        return "*" * len(value)
    return value[:unmasked_prefix] + "****"


def lookup_secret(secrets: SecretStore, *, key: str, env_var: str) -> str | None:
    value = secrets.get(key)
    if value:
        return value
    return os.getenv(env_var) or None


def require_secret(secrets: SecretStore, *, key: str, env_var: str) -> str:
    value = lookup_secret(secrets, key=key, env_var=env_var)
    if value:
        return value
    raise ValueError(f"Missing secret `{key}` (or env var {env_var})")
