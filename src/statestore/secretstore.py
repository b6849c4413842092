"""Named secret storage.

Secrets are generated lazily and exactly once per id. Generation for one id
is serialized in-process with a per-id lock; across processes the
exclusive-create write decides the winner and losers re-read its value.
"""

import base64
import json
import logging
import secrets
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from statestore.base import StateStoreError, read_optional, validate_id, write_exclusive

logger = logging.getLogger(__name__)

SECRET_BYTES = 32


@dataclass(frozen=True)
class Secret:
    """Generated secret material."""
    data: bytes

    def as_string(self) -> str:
        return self.data.decode('utf-8')

    def to_json(self) -> bytes:
        return json.dumps({'Data': base64.b64encode(self.data).decode('ascii')}).encode('utf-8')

    @classmethod
    def from_json(cls, raw: bytes) -> 'Secret':
        try:
            return cls(data=base64.b64decode(json.loads(raw)['Data']))
        except (ValueError, KeyError, TypeError) as e:
            raise StateStoreError(f"error parsing secret: {e}") from e


def generate_secret() -> Secret:
    """Generate random url-safe secret material."""
    return Secret(data=secrets.token_urlsafe(SECRET_BYTES).encode('ascii'))


class SecretStore:
    """Secrets persisted under <root>/secrets/<id>."""

    def __init__(self, root: Path):
        self.root = root
        self._lock = threading.Lock()
        self._id_locks: dict[str, threading.Lock] = {}
        # Counts generations performed by this store instance
        self.generated = 0

    def _path(self, secret_id: str) -> Path:
        validate_id('secret', secret_id)
        return self.root / secret_id

    def _id_lock(self, secret_id: str) -> threading.Lock:
        with self._lock:
            return self._id_locks.setdefault(secret_id, threading.Lock())

    def find_secret(self, secret_id: str) -> Optional[Secret]:
        """Return the stored secret, or None if it was never created."""
        raw = read_optional(self._path(secret_id))
        if raw is None:
            return None
        return Secret.from_json(raw)

    def get_or_create_secret(self, secret_id: str) -> tuple[Secret, bool]:
        """Return the secret for secret_id, generating and persisting it if needed.

        Returns:
            (secret, created) tuple; created is True only for the call that
            generated the material

        Raises:
            StateStoreError: If the store cannot be read or written
        """
        path = self._path(secret_id)
        with self._id_lock(secret_id):
            existing = self.find_secret(secret_id)
            if existing is not None:
                return existing, False

            secret = generate_secret()
            self.generated += 1
            if write_exclusive(path, secret.to_json(), mode=0o600):
                logger.info(f"Created secret {secret_id!r}")
                return secret, True

            # Another process created it first
            existing = self.find_secret(secret_id)
            if existing is None:
                raise StateStoreError(f"secret {secret_id!r} vanished after concurrent create")
            return existing, False

    def list_secrets(self) -> list[str]:
        """List ids of stored secrets."""
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_file() and not p.name.startswith('.'))
