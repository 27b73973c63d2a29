"""SAN derivation and OpenSSL request-extension config generation."""

from __future__ import annotations

from dataclasses import dataclass

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID

from .errors import InputError


@dataclass(frozen=True)
class ServiceIdentity:
    name: str
    namespace: str = "default"

    @property
    def csr_name(self) -> str:
        """Name of the cluster CertificateSigningRequest for this service."""
        return f"{self.name}.{self.namespace}"


def cluster_sans(identity: ServiceIdentity) -> tuple[str, ...]:
    """DNS names a Service is reachable under from inside the cluster."""
    return (
        identity.name,
        f"{identity.name}.{identity.namespace}",
        f"{identity.name}.{identity.namespace}.svc",
    )


def parse_fqdn_list(value: str) -> tuple[str, ...]:
    """Split a comma-separated FQDN list, keeping the caller's order."""
    entries = tuple(value.split(","))
    if not entries or any(not entry for entry in entries):
        raise InputError(f"Invalid FQDN list {value!r}: entries must be non-empty")
    return RequestExtensions(sans=entries).sans


def build_sans(
    identity: ServiceIdentity,
    self_signed: bool,
    fqdns: str | None = None,
) -> tuple[str, ...]:
    if self_signed and fqdns is not None:
        return parse_fqdn_list(fqdns)
    return cluster_sans(identity)


def _render_numbered(prefix: str, values: tuple[str, ...]) -> list[str]:
    return [f"{prefix}.{index} = {value}" for index, value in enumerate(values, start=1)]


@dataclass(frozen=True)
class RequestExtensions:
    """
    Extensions a server CSR asks the signer for.

    The same object renders ``ssl.conf`` and builds the CSR extensions, so the
    file on disk always describes exactly what was requested.
    """

    sans: tuple[str, ...]

    def __post_init__(self):
        if not self.sans:
            raise InputError("At least one subject alternative name is required")
        if any(not san for san in self.sans):
            raise InputError("Subject alternative names must be non-empty")
        for san in self.sans:
            # x509.DNSName only takes A-labels; IDNs must be punycoded by the caller
            if not san.isascii():
                raise InputError(f"Invalid DNS name {san!r}: use the xn-- (A-label) form")

    def render(self) -> str:
        lines = [
            "[req]",
            "req_extensions = v3_req",
            "distinguished_name = req_distinguished_name",
            "",
            "[req_distinguished_name]",
            "",
            "[ v3_req ]",
            "basicConstraints = CA:FALSE",
            "keyUsage = nonRepudiation, digitalSignature, keyEncipherment",
            "extendedKeyUsage = serverAuth",
            "subjectAltName = @alt_names",
            "",
            "[alt_names]",
            *_render_numbered("DNS", self.sans),
        ]
        return "\n".join(lines) + "\n"

    def x509_extensions(self) -> list[tuple[x509.ExtensionType, bool]]:
        """(extension, critical) pairs in the order they appear in ``v3_req``."""
        return [
            (x509.BasicConstraints(ca=False, path_length=None), False),
            (
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=True,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                False,
            ),
            (x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), False),
            (x509.SubjectAlternativeName([x509.DNSName(san) for san in self.sans]), False),
        ]
