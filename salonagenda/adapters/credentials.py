"""
Storage for the booking backend API key (OS keyring with file fallback).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from ..domain.exceptions import CredentialError

logger = logging.getLogger(__name__)


KEYRING_SERVICE_NAME = "salonagenda"


class CredentialStore:
    """
    Keeps the API key for one backend project and tenant.

    The key goes to the OS keyring. When no keyring backend works the store
    falls back to a plaintext file readable only by the current user and
    records a warning the CLI can show.
    """

    def __init__(self, backend_url: str, tenant_id: str, cache_file: Path | None = None):
        self.backend_url = backend_url
        self.tenant_id = tenant_id
        self.cache_file = cache_file or Path.home() / ".salonagenda_api_key"
        self._key_identifier = f"{backend_url}:{tenant_id}"
        self._keyring_supported = True
        self._backend = "keyring"
        self._insecure_storage_warning: Optional[str] = None

    @property
    def backend(self) -> str:
        """Return the active storage backend (keyring or file)."""
        return self._backend

    @property
    def insecure_storage_warning(self) -> Optional[str]:
        """Warning message when the key falls back to plaintext storage."""
        return self._insecure_storage_warning

    def get_api_key(self) -> Optional[str]:
        """Return the stored API key, or None if nothing is stored."""
        key = self._load_from_keyring()
        if key is None:
            key = self._load_from_file()
        return key

    def require_api_key(self) -> str:
        """
        Return the stored API key.

        Raises:
            CredentialError: If no key is stored
        """
        key = self.get_api_key()
        if not key:
            raise CredentialError(
                "No API key stored for this backend. Run 'salonagenda set-key' first."
            )
        return key

    def set_api_key(self, api_key: str) -> None:
        """
        Store the API key.

        Raises:
            CredentialError: If neither keyring nor file storage works
        """
        if not api_key.strip():
            raise CredentialError("API key must not be empty")

        if self._keyring_supported and self._save_to_keyring(api_key):
            return
        self._save_to_file(api_key)

    def clear(self) -> None:
        """Remove the stored key from all backends."""
        if self.cache_file.exists():
            self.cache_file.unlink()
        try:
            keyring.delete_password(KEYRING_SERVICE_NAME, self._key_identifier)
        except PasswordDeleteError:
            pass
        except KeyringError as exc:  # pragma: no cover - environment dependent
            logger.warning("Could not remove API key from keyring: %s", exc)

    def _load_from_keyring(self) -> Optional[str]:
        if not self._keyring_supported:
            return None

        try:
            return keyring.get_password(KEYRING_SERVICE_NAME, self._key_identifier)
        except KeyringError as exc:  # pragma: no cover - environment dependent
            self._handle_keyring_failure(f"reading credentials failed: {exc}")
            return None

    def _load_from_file(self) -> Optional[str]:
        if self.cache_file.exists():
            try:
                with open(self.cache_file, "r", encoding="utf-8") as file_handle:
                    return file_handle.read().strip() or None
            except OSError as exc:
                logger.warning("Could not read API key file %s: %s", self.cache_file, exc)
        return None

    def _save_to_keyring(self, api_key: str) -> bool:
        try:
            keyring.set_password(KEYRING_SERVICE_NAME, self._key_identifier, api_key)
            self._backend = "keyring"
            return True
        except KeyringError as exc:
            self._handle_keyring_failure(f"writing credentials failed: {exc}")
            return False

    def _save_to_file(self, api_key: str) -> None:
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.cache_file, "w", encoding="utf-8") as file_handle:
                file_handle.write(api_key)
            self.cache_file.chmod(0o600)
        except OSError as exc:
            raise CredentialError(f"Could not save API key to {self.cache_file}: {exc}") from exc

    def _handle_keyring_failure(self, reason: str) -> None:
        if self._keyring_supported:
            logger.warning(
                "Secure credential storage unavailable (%s). Falling back to plaintext file.",
                reason,
            )
        self._keyring_supported = False
        self._backend = "file"
        if not self._insecure_storage_warning:
            self._insecure_storage_warning = (
                f"Secure credential storage unavailable ({reason}). "
                f"Falling back to plaintext file at {self.cache_file}."
            )
