"""
Credential Vault
================

Read-only lookup of secret values by name.

Each known secret is read from a mounted secret file first (Docker
secrets layout under /run/secrets, path overridable with ``<NAME>_FILE``)
and falls back to the environment variable of the same name. Values are
loaded once; the vault is never mutated afterwards.
"""

import os
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

import structlog

logger = structlog.get_logger()


# Secret name -> default secret file
CREDENTIAL_FILES: Dict[str, str] = {
    "GITHUB_TOKEN": "/run/secrets/github_token",
    "ANTHROPIC_API_KEY": "/run/secrets/anthropic_api_key",
    "GITHUB_WEBHOOK_SECRET": "/run/secrets/webhook_secret",
    "CLAUDE_WEBHOOK_SECRET": "/run/secrets/claude_webhook_secret",
    "CLAUDE_API_AUTH_TOKEN": "/run/secrets/claude_api_auth_token",
}


class CredentialVault:
    """
    Immutable secret store.

    Usage:
        vault = CredentialVault.from_environment()
        token = vault.get("GITHUB_TOKEN")
    """

    def __init__(self, values: Mapping[str, str]):
        self._values = MappingProxyType({k: v for k, v in values.items() if v})

    @classmethod
    def from_environment(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        files: Optional[Mapping[str, str]] = None,
    ) -> "CredentialVault":
        """Load every known credential, secret file first, then env var."""
        environ = os.environ if environ is None else environ
        files = CREDENTIAL_FILES if files is None else files

        loaded: Dict[str, str] = {}
        for name, default_path in files.items():
            path = Path(environ.get(f"{name}_FILE", default_path))
            value = _read_secret_file(name, path)

            if not value and environ.get(name):
                value = environ[name]
                logger.info("Credential loaded from environment", credential=name)

            if value:
                loaded[name] = value
            else:
                logger.debug("Credential not configured", credential=name)

        return cls(loaded)

    def get(self, name: str) -> Optional[str]:
        return self._values.get(name)

    def has(self, name: str) -> bool:
        return name in self._values

    def available_keys(self) -> List[str]:
        """Names only, never values."""
        return sorted(self._values)

    def known_values(self) -> List[str]:
        """Every secret value currently held, for redaction."""
        return list(self._values.values())


def _read_secret_file(name: str, path: Path) -> Optional[str]:
    if not path.is_file():
        return None
    try:
        value = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning("Failed to read credential file", credential=name, path=str(path), error=str(e))
        return None
    if value:
        logger.info("Credential loaded from secret file", credential=name, path=str(path))
    return value or None


@lru_cache
def get_vault() -> CredentialVault:
    """Process-wide vault, loaded on first use."""
    return CredentialVault.from_environment()
