"""Versioned state store.

Holds the cluster CA and named secrets. The store outlives a single run; two
runs against the same store at once are not protected against each other.

Layout:
    <base>/state.json   {"version": 1}
    <base>/pki/         CAStore
    <base>/secrets/     SecretStore
"""

import json
import logging
from pathlib import Path

from statestore.base import StateStoreError, read_optional, write_exclusive
from statestore.ca import CAStore
from statestore.secretstore import SecretStore

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class StateStore:
    """State store rooted at a filesystem path."""

    def __init__(self, base: Path):
        self.base = base
        self._check_version()
        # Built eagerly so concurrent tasks share one set of locks
        self._ca = CAStore(self.base / 'pki')
        self._secrets = SecretStore(self.base / 'secrets')

    def _check_version(self) -> None:
        marker = self.base / 'state.json'
        raw = read_optional(marker)
        if raw is None:
            write_exclusive(marker, json.dumps({'version': STATE_VERSION}).encode('utf-8'))
            logger.debug(f"Initialized state store at {self.base}")
            return
        try:
            version = json.loads(raw).get('version')
        except (ValueError, AttributeError) as e:
            raise StateStoreError(f"error parsing {marker}: {e}") from e
        if not isinstance(version, int) or version > STATE_VERSION:
            raise StateStoreError(
                f"state store {self.base} has version {version!r}; "
                f"this tool supports up to version {STATE_VERSION}"
            )

    def ca(self) -> CAStore:
        return self._ca

    def secrets(self) -> SecretStore:
        return self._secrets
