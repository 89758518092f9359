from __future__ import annotations

import logging
import os
from typing import Callable

from fitcoach_voice.app.wiring import PROVIDER_SECRETS
from fitcoach_voice.core.storage.secrets import SecretStore, mask_secret

logger = logging.getLogger(__name__)


def describe_secrets(secrets: SecretStore) -> list[str]:
    """One line per provider key: masked value and where it comes from."""
    lines: list[str] = []
    for key, env_var in PROVIDER_SECRETS.items():
        stored = secrets.get(key)
        env_value = os.getenv(env_var)
        if stored:
            lines.append(f"{key}: {mask_secret(stored)} (keyring)")
        elif env_value:
            lines.append(f"{key}: {mask_secret(env_value)} (env {env_var})")
        else:
            lines.append(f"{key}: not set")
    return lines


def store_secret(secrets: SecretStore, key: str, value: str) -> None:
    if key not in PROVIDER_SECRETS:
        raise ValueError(f"Unknown secret `{key}`")
    value = value.strip()
    if value:
        secrets.set(key, value)
        logger.info(f"[Keys] Stored {key} ({mask_secret(value)})")
    else:
        secrets.delete(key)
        logger.info(f"[Keys] Removed {key}")


def run_keys_command(
    secrets: SecretStore,
    *,
    action: str,
    key: str | None = None,
    value: str | None = None,
    output: Callable[[str], None] = print,
) -> int:
    if action == "show":
        for line in describe_secrets(secrets):
            output(line)
        return 0
    if key is None:
        output("Error: a key name is required")
        return 2
    try:
        store_secret(secrets, key, value if action == "set" and value is not None else "")
    except ValueError as exc:
        output(f"Error: {exc}")
        return 2
    return 0
