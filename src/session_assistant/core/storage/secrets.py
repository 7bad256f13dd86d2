"""API key storage for the live and note-drafting providers."""

from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

logger = logging.getLogger(__name__)

_FILE_FORMAT_VERSION = 2


class SecretStore(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...


class SecretStoreError(RuntimeError):
    pass


@dataclass(slots=True)
class InMemorySecretStore:
    items: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> str | None:
        return self.items.get(key)

    def set(self, key: str, value: str) -> None:
        self.items[key] = value

    def delete(self, key: str) -> None:
        self.items.pop(key, None)


@dataclass(slots=True)
class KeyringSecretStore:
    service_name: str = "session-assistant"

    def get(self, key: str) -> str | None:
        import keyring

        return keyring.get_password(self.service_name, key)

    def set(self, key: str, value: str) -> None:
        import keyring

        keyring.set_password(self.service_name, key, value)

    def delete(self, key: str) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            logger.debug(f"[Secrets] No keyring entry to delete for {key}")


class EncryptedFileSecretStore:
    """Fernet-encrypted JSON file, key derived from a passphrase with scrypt.

    The file holds ``{"version", "salt", "items"}``; each item value is a
    Fernet token. Writes go through a temp file and an atomic replace.
    """

    def __init__(self, path: Path, *, passphrase: str) -> None:
        if not passphrase:
            raise SecretStoreError("passphrase must be non-empty")
        self.path = path
        document = self._read_or_create()
        self._salt = base64.b64decode(document["salt"])
        self._fernet = Fernet(_derive_key(passphrase=passphrase, salt=self._salt))
        self._items: dict[str, str] = dict(document.get("items") or {})

    def get(self, key: str) -> str | None:
        token = self._items.get(key)
        if token is None:
            return None
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise SecretStoreError(
                f"cannot decrypt {key}: wrong passphrase or corrupted file {self.path}"
            ) from exc

    def set(self, key: str, value: str) -> None:
        self._items[key] = self._fernet.encrypt(value.encode("utf-8")).decode("ascii")
        self._flush()

    def delete(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._flush()

    def keys(self) -> list[str]:
        return sorted(self._items)

    def _read_or_create(self) -> dict:
        if self.path.exists():
            try:
                document = json.loads(self.path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise SecretStoreError(f"secrets file is not valid JSON: {self.path}") from exc
            if not isinstance(document, dict) or "salt" not in document:
                raise SecretStoreError(f"secrets file has no salt: {self.path}")
            return document

        document = {
            "version": _FILE_FORMAT_VERSION,
            "salt": base64.b64encode(os.urandom(16)).decode("ascii"),
            "items": {},
        }
        _write_json_atomic(self.path, document)
        logger.info(f"[Secrets] Created encrypted secrets file at {self.path}")
        return document

    def _flush(self) -> None:
        _write_json_atomic(
            self.path,
            {
                "version": _FILE_FORMAT_VERSION,
                "salt": base64.b64encode(self._salt).decode("ascii"),
                "items": self._items,
            },
        )


def mask_secret(value: str, *, visible: int = 4) -> str:
    if not value:
        return value
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * min(8, len(value) - visible)


def _derive_key(*, passphrase: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=32, n=2**14, r=8, p=1)
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


def _write_json_atomic(path: Path, data: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)
