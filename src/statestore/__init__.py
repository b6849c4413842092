"""Durable cluster PKI and secret material."""

from statestore.base import StateStoreError
from statestore.ca import CAStore, CertificateRequest, Keypair
from statestore.secretstore import Secret, SecretStore
from statestore.store import StateStore

__all__ = [
    'StateStoreError',
    'CAStore',
    'CertificateRequest',
    'Keypair',
    'Secret',
    'SecretStore',
    'StateStore',
]
