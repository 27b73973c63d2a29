"""Issue server certificates from a CA generated for the current run."""

from __future__ import annotations

import datetime
import logging

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from . import store as slots
from .errors import CryptoError
from .keys import DEFAULT_KEY_BITS, CertificateRequest, IssuedCertificate, new_rsa_key, parse_subject
from .store import ArtifactStore


logger = logging.getLogger(__name__)

DEFAULT_CA_DAYS = 3650
DEFAULT_CRT_DAYS = 730


def next_serial(store: ArtifactStore) -> int:
    """
    Serial number for the next certificate signed by the store's CA.

    An existing ``ca.srl`` (hex, as OpenSSL writes it) is incremented,
    otherwise a random serial is picked. The chosen value is written back.
    """
    if store.exists(slots.CA_SERIAL):
        raw = store.read(slots.CA_SERIAL).decode("ascii", errors="replace").strip()
        try:
            serial = int(raw, 16) + 1
        except ValueError as exc:
            raise CryptoError(f"Unreadable serial file {store.path(slots.CA_SERIAL)}: {raw!r}") from exc
        if serial <= 0:
            raise CryptoError(f"Invalid serial {raw!r} in {store.path(slots.CA_SERIAL)}")
    else:
        serial = x509.random_serial_number()
    store.write(slots.CA_SERIAL, f"{serial:X}\n")
    return serial


def _validity(days: int) -> tuple[datetime.datetime, datetime.datetime]:
    now = datetime.datetime.now(datetime.timezone.utc)
    return now, now + datetime.timedelta(days=days)


class SelfSignedIssuer:
    """Signs a CSR with a throwaway CA written next to the server artifacts."""

    def __init__(
        self,
        store: ArtifactStore,
        ca_subject: str,
        ca_days: int = DEFAULT_CA_DAYS,
        crt_days: int = DEFAULT_CRT_DAYS,
        key_bits: int = DEFAULT_KEY_BITS,
    ):
        self.store = store
        self.ca_subject = ca_subject
        self.ca_days = ca_days
        self.crt_days = crt_days
        self.key_bits = key_bits

    def create_ca(self) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
        name = parse_subject(self.ca_subject)
        ca_key = new_rsa_key(self.key_bits)
        not_before, not_after = _validity(self.ca_days)

        builder = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(ca_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()), critical=False)
        )
        try:
            ca_cert = builder.sign(ca_key, hashes.SHA256())
        except (ValueError, TypeError) as exc:
            raise CryptoError(f"Cannot self-sign CA certificate: {exc}") from exc

        self.store.write(
            slots.CA_KEY,
            ca_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ),
            private=True,
        )
        self.store.write(slots.CA_CRT, ca_cert.public_bytes(serialization.Encoding.PEM))
        logger.info(f"Created CA {self.ca_subject} valid for {self.ca_days} days")
        return ca_key, ca_cert

    def sign(
        self,
        csr: CertificateRequest,
        ca_key: rsa.RSAPrivateKey,
        ca_cert: x509.Certificate,
    ) -> x509.Certificate:
        request = csr.load()
        if not request.is_signature_valid:
            raise CryptoError("Certificate request signature does not verify")

        not_before, not_after = _validity(self.crt_days)
        builder = (
            x509.CertificateBuilder()
            .subject_name(request.subject)
            .issuer_name(ca_cert.subject)
            .public_key(request.public_key())
            .serial_number(next_serial(self.store))
            .not_valid_before(not_before)
            .not_valid_after(not_after)
        )
        # extensions requested in ssl.conf are honoured as-is
        for extension in request.extensions:
            builder = builder.add_extension(extension.value, critical=extension.critical)
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
        try:
            return builder.sign(ca_key, hashes.SHA256())
        except (ValueError, TypeError) as exc:
            raise CryptoError(f"Cannot sign server certificate: {exc}") from exc

    def issue(self, csr: CertificateRequest) -> IssuedCertificate:
        ca_key, ca_cert = self.create_ca()
        certificate = self.sign(csr, ca_key, ca_cert)
        logger.info(
            f"Signed certificate serial {certificate.serial_number:X} "
            f"valid for {self.crt_days} days"
        )
        return IssuedCertificate(
            pem=certificate.public_bytes(serialization.Encoding.PEM),
            ca_pem=ca_cert.public_bytes(serialization.Encoding.PEM),
        )
