"""Private key and certificate signing request generation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from . import store as slots
from .errors import CryptoError
from .ssl_config import RequestExtensions
from .store import ArtifactStore


logger = logging.getLogger(__name__)

DEFAULT_KEY_BITS = 2048

# OpenSSL short names accepted in "/C=../O=.." subject strings
SUBJECT_ATTRIBUTES = {
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "CN": NameOID.COMMON_NAME,
    "emailAddress": NameOID.EMAIL_ADDRESS,
    "serialNumber": NameOID.SERIAL_NUMBER,
    "DC": NameOID.DOMAIN_COMPONENT,
    "UID": NameOID.USER_ID,
}


@dataclass(frozen=True)
class KeyMaterial:
    private_key: rsa.RSAPrivateKey
    bits: int


@dataclass(frozen=True)
class CertificateRequest:
    subject: x509.Name
    sans: tuple[str, ...]
    pem: bytes

    def load(self) -> x509.CertificateSigningRequest:
        return x509.load_pem_x509_csr(self.pem)


@dataclass(frozen=True)
class IssuedCertificate:
    """A signed server certificate and, when known, the CA that issued it."""

    pem: bytes
    ca_pem: bytes | None = None

    def load(self) -> x509.Certificate:
        return x509.load_pem_x509_certificate(self.pem)

    def dns_names(self) -> list[str]:
        san = self.load().extensions.get_extension_for_class(x509.SubjectAlternativeName)
        return san.value.get_values_for_type(x509.DNSName)


def parse_subject(subject: str) -> x509.Name:
    """
    Parse an OpenSSL ``-subj`` style string into an X.509 name.

    Example: ``/C=RU/O=Example/OU=k8s``. A literal slash inside a value is
    written as ``\\/``.
    """
    if not subject or not subject.startswith("/"):
        raise CryptoError(f"Malformed subject {subject!r}: must start with '/'")

    attributes = []
    for part in re.split(r"(?<!\\)/", subject[1:]):
        if not part:
            continue
        key, sep, value = part.partition("=")
        value = value.replace("\\/", "/")
        if not sep or not value:
            raise CryptoError(f"Malformed subject {subject!r}: bad component {part!r}")
        if key not in SUBJECT_ATTRIBUTES:
            raise CryptoError(f"Malformed subject {subject!r}: unknown attribute {key!r}")
        try:
            attributes.append(x509.NameAttribute(SUBJECT_ATTRIBUTES[key], value))
        except ValueError as exc:
            raise CryptoError(f"Malformed subject {subject!r}: {exc}") from exc

    if not attributes:
        raise CryptoError(f"Malformed subject {subject!r}: no attributes")
    return x509.Name(attributes)


def new_rsa_key(bits: int) -> rsa.RSAPrivateKey:
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=bits)
    except (ValueError, TypeError) as exc:
        raise CryptoError(f"Cannot generate {bits}-bit RSA key: {exc}") from exc


def generate_key(store: ArtifactStore, bits: int = DEFAULT_KEY_BITS) -> KeyMaterial:
    """Generate the server key and persist it to ``server.key`` right away."""
    private_key = new_rsa_key(bits)
    store.write(
        slots.SERVER_KEY,
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ),
        private=True,
    )
    logger.info(f"Generated {bits}-bit RSA key in {store.path(slots.SERVER_KEY)}")
    return KeyMaterial(private_key=private_key, bits=bits)


def generate_csr(
    store: ArtifactStore,
    key: KeyMaterial,
    subject: str,
    sans: tuple[str, ...],
) -> CertificateRequest:
    name = parse_subject(subject)
    extensions = RequestExtensions(sans=tuple(sans))
    store.write(slots.SSL_CONF, extensions.render())

    builder = x509.CertificateSigningRequestBuilder().subject_name(name)
    for extension, critical in extensions.x509_extensions():
        builder = builder.add_extension(extension, critical=critical)
    try:
        csr = builder.sign(key.private_key, hashes.SHA256())
    except (ValueError, TypeError) as exc:
        raise CryptoError(f"Cannot sign certificate request: {exc}") from exc

    pem = csr.public_bytes(serialization.Encoding.PEM)
    store.write(slots.SERVER_CSR, pem)
    logger.info(f"Generated CSR for {subject} with SANs {', '.join(sans)}")
    return CertificateRequest(subject=name, sans=tuple(sans), pem=pem)
