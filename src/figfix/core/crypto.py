"""Payload cipher for encrypted history rows.

The workspace key lives at ``.figfix/key``. It is read once per cipher, and
a fresh key is only generated when the caller allows it: regenerating the
key while encrypted rows exist would orphan every one of them.
"""

from __future__ import annotations

import threading
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from figfix.core.errors import CorruptHistoryError

KEY_FILE = "key"


class PayloadCipher:
    """Fernet cipher bound to one key file, loaded lazily."""

    def __init__(self, key_file: Path, create: bool = True) -> None:
        self.key_file = key_file
        self.create = create
        self._fernet: Fernet | None = None
        self._lock = threading.Lock()

    def _load(self) -> Fernet:
        with self._lock:
            if self._fernet is None:
                self._fernet = Fernet(self._read_key())
            return self._fernet

    def _read_key(self) -> bytes:
        if self.key_file.exists():
            return self.key_file.read_bytes().strip()
        if not self.create:
            raise CorruptHistoryError(
                f"Encryption key {self.key_file} is missing; encrypted history cannot be read"
            )
        key = Fernet.generate_key()
        self.key_file.parent.mkdir(parents=True, exist_ok=True)
        self.key_file.write_bytes(key)
        self.key_file.chmod(0o600)
        self.create = False
        return key

    def encrypt(self, data: bytes) -> bytes:
        return self._load().encrypt(data)

    def decrypt(self, token: bytes, label: str = "payload") -> bytes:
        """Decrypt ``token``; a wrong key or damaged blob raises :class:`CorruptHistoryError`."""
        try:
            return self._load().decrypt(token)
        except InvalidToken:
            raise CorruptHistoryError(f"Cannot decrypt {label} with {self.key_file}") from None
