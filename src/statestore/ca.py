"""Cluster certificate authority.

The CA key and self-signed certificate are generated on first use and
persisted; every later run reuses them. Component certificates (API server,
kubelet, kubecfg) are issued on demand and signed by the CA.

Layout under the store root:
    issued/<id>.crt   PEM certificate
    private/<id>.key  PEM private key (mode 0600)
"""

import datetime
import ipaddress
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from statestore.base import StateStoreError, read_optional, validate_id, write_exclusive

logger = logging.getLogger(__name__)

CA_ID = 'ca'
DEFAULT_KEY_SIZE = 2048
DEFAULT_CA_DAYS = 3650
DEFAULT_CERT_DAYS = 3650

USAGE_SERVER = 'server'
USAGE_CLIENT = 'client'


@dataclass
class Keypair:
    """A certificate and its private key."""
    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey

    @property
    def certificate_pem(self) -> str:
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode('ascii')

    @property
    def private_key_pem(self) -> str:
        return _private_key_bytes(self.private_key).decode('ascii')

    @property
    def fingerprint(self) -> str:
        """SHA256 fingerprint as colon-separated hex (e.g. "AB:CD:...")."""
        digest = self.certificate.fingerprint(hashes.SHA256())
        return ':'.join(f'{b:02X}' for b in digest)


@dataclass
class CertificateRequest:
    """Desired shape of a component certificate."""
    subject: str
    usage: str = USAGE_CLIENT
    alternate_names: list[str] = field(default_factory=list)


def _private_key_bytes(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def parse_subject(subject: str) -> x509.Name:
    """Parse "cn=kubelet,o=system:nodes" style subjects.

    A subject without '=' is treated as a bare common name.
    """
    oids = {'cn': NameOID.COMMON_NAME, 'o': NameOID.ORGANIZATION_NAME, 'ou': NameOID.ORGANIZATIONAL_UNIT_NAME}
    if '=' not in subject:
        return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, subject)])
    attributes = []
    for part in subject.split(','):
        key, _, value = part.partition('=')
        oid = oids.get(key.strip().lower())
        if oid is None:
            raise StateStoreError(f"unsupported subject attribute {key!r} in {subject!r}")
        attributes.append(x509.NameAttribute(oid, value.strip()))
    return x509.Name(attributes)


def _subject_alternative_names(names: list[str]) -> list[x509.GeneralName]:
    entries: list[x509.GeneralName] = []
    for name in names:
        try:
            entries.append(x509.IPAddress(ipaddress.ip_address(name)))
        except ValueError:
            entries.append(x509.DNSName(name))
    return entries


class CAStore:
    """Certificate authority backed by files under root."""

    def __init__(self, root: Path, key_size: int = DEFAULT_KEY_SIZE):
        self.root = root
        self.key_size = key_size
        self._lock = threading.RLock()
        self._ca: Optional[Keypair] = None

    def _cert_path(self, item_id: str) -> Path:
        validate_id('certificate', item_id)
        return self.root / 'issued' / f'{item_id}.crt'

    def _key_path(self, item_id: str) -> Path:
        validate_id('private key', item_id)
        return self.root / 'private' / f'{item_id}.key'

    def find_cert(self, item_id: str) -> Optional[x509.Certificate]:
        """Return the stored certificate for item_id, or None."""
        raw = read_optional(self._cert_path(item_id))
        if raw is None:
            return None
        try:
            return x509.load_pem_x509_certificate(raw)
        except ValueError as e:
            raise StateStoreError(f"error parsing certificate {item_id!r}: {e}") from e

    def find_private_key(self, item_id: str) -> Optional[rsa.RSAPrivateKey]:
        """Return the stored private key for item_id, or None."""
        raw = read_optional(self._key_path(item_id))
        if raw is None:
            return None
        try:
            key = serialization.load_pem_private_key(raw, password=None)
        except ValueError as e:
            raise StateStoreError(f"error parsing private key {item_id!r}: {e}") from e
        if not isinstance(key, rsa.RSAPrivateKey):
            raise StateStoreError(f"private key {item_id!r} is not an RSA key")
        return key

    def find_keypair(self, item_id: str) -> Optional[Keypair]:
        cert = self.find_cert(item_id)
        key = self.find_private_key(item_id)
        if cert is None or key is None:
            return None
        return Keypair(certificate=cert, private_key=key)

    def _persist(self, item_id: str, keypair: Keypair) -> Keypair:
        # Key first: a certificate on disk always has its key next to it
        if not write_exclusive(self._key_path(item_id), _private_key_bytes(keypair.private_key), mode=0o600):
            existing = self.find_keypair(item_id)
            if existing is None:
                raise StateStoreError(f"keypair {item_id!r} is incomplete in {self.root}")
            return existing
        if not write_exclusive(self._cert_path(item_id),
                               keypair.certificate.public_bytes(serialization.Encoding.PEM)):
            raise StateStoreError(f"certificate {item_id!r} exists without its private key in {self.root}")
        return keypair

    def ca_keypair(self) -> Keypair:
        """Return the CA keypair, creating and persisting it on first use."""
        with self._lock:
            if self._ca is not None:
                return self._ca
            existing = self.find_keypair(CA_ID)
            if existing is not None:
                self._ca = existing
                return existing

            logger.info(f"Creating cluster certificate authority in {self.root}")
            key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
            name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, 'kubernetes')])
            now = datetime.datetime.now(datetime.timezone.utc)
            cert = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - datetime.timedelta(hours=1))
                .not_valid_after(now + datetime.timedelta(days=DEFAULT_CA_DAYS))
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True, content_commitment=False, key_encipherment=False,
                        data_encipherment=False, key_agreement=False, key_cert_sign=True,
                        crl_sign=True, encipher_only=False, decipher_only=False,
                    ),
                    critical=True,
                )
                .sign(key, hashes.SHA256())
            )
            self._ca = self._persist(CA_ID, Keypair(certificate=cert, private_key=key))
            return self._ca

    def ca_certificate_pem(self) -> str:
        return self.ca_keypair().certificate_pem

    def issue_cert(self, item_id: str, request: CertificateRequest) -> Keypair:
        """Return the keypair for item_id, issuing a CA-signed one if absent."""
        if item_id == CA_ID:
            raise StateStoreError("the CA keypair cannot be reissued")
        with self._lock:
            existing = self.find_keypair(item_id)
            if existing is not None:
                return existing

            ca = self.ca_keypair()
            key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
            usage = ExtendedKeyUsageOID.SERVER_AUTH if request.usage == USAGE_SERVER else ExtendedKeyUsageOID.CLIENT_AUTH
            now = datetime.datetime.now(datetime.timezone.utc)
            builder = (
                x509.CertificateBuilder()
                .subject_name(parse_subject(request.subject))
                .issuer_name(ca.certificate.subject)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - datetime.timedelta(hours=1))
                .not_valid_after(now + datetime.timedelta(days=DEFAULT_CERT_DAYS))
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
            )
            if request.alternate_names:
                builder = builder.add_extension(
                    x509.SubjectAlternativeName(_subject_alternative_names(request.alternate_names)),
                    critical=False,
                )
            cert = builder.sign(ca.private_key, hashes.SHA256())
            logger.info(f"Issued certificate {item_id!r} ({request.subject})")
            return self._persist(item_id, Keypair(certificate=cert, private_key=key))

    def cert_pem(self, item_id: str) -> str:
        """PEM of an issued certificate.

        Raises:
            StateStoreError: If the certificate has not been issued
        """
        cert = self.find_cert(item_id)
        if cert is None:
            raise StateStoreError(f"certificate {item_id!r} not found")
        return cert.public_bytes(serialization.Encoding.PEM).decode('ascii')

    def private_key_pem(self, item_id: str) -> str:
        key = self.find_private_key(item_id)
        if key is None:
            raise StateStoreError(f"private key {item_id!r} not found")
        return _private_key_bytes(key).decode('ascii')
