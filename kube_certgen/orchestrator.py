"""Sequencing of one issuance run: SANs, key, CSR, signing, persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from . import store as slots
from .cluster import (
    DEFAULT_CREATION_TIMEOUT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SIGNER_NAME,
    ClusterDelegatedIssuer,
    KubernetesSigningAuthority,
    SigningAuthority,
)
from .errors import InputError
from .keys import DEFAULT_KEY_BITS, CertificateRequest, IssuedCertificate, generate_csr, generate_key
from .self_signed import DEFAULT_CA_DAYS, DEFAULT_CRT_DAYS, SelfSignedIssuer
from .ssl_config import ServiceIdentity, build_sans
from .store import ArtifactStore


logger = logging.getLogger(__name__)

DEFAULT_OUT_DIR = "./pki"
DEFAULT_CA_SUBJECT = "/O=kube-certgen/OU=k8s/CN=kube-certgen-ca"


class Issuer(Protocol):
    def issue(self, csr: CertificateRequest) -> IssuedCertificate: ...


@dataclass(frozen=True)
class IssuanceSettings:
    """Everything one run needs; built by the CLI or directly by callers."""

    service_name: str
    namespace: str = "default"
    out_dir: str = DEFAULT_OUT_DIR
    self_signed: bool = False
    fqdns: str | None = None
    subject: str | None = None
    ca_subject: str = DEFAULT_CA_SUBJECT
    ca_days: int = DEFAULT_CA_DAYS
    crt_days: int = DEFAULT_CRT_DAYS
    key_bits: int = DEFAULT_KEY_BITS
    signer_name: str = DEFAULT_SIGNER_NAME
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    poll_interval: float = DEFAULT_POLL_INTERVAL
    creation_timeout: float | None = DEFAULT_CREATION_TIMEOUT
    kubeconfig: str | None = None
    context: str | None = None

    @property
    def identity(self) -> ServiceIdentity:
        return ServiceIdentity(name=self.service_name, namespace=self.namespace)

    def validate(self) -> None:
        if not self.service_name:
            raise InputError("Service name is required")
        if not self.namespace:
            raise InputError("Namespace must not be empty")
        if not self.out_dir:
            raise InputError("Output directory must not be empty")
        if self.self_signed and not self.ca_subject:
            raise InputError("CA subject is required for self-signed certificates")
        if self.ca_days <= 0 or self.crt_days <= 0:
            raise InputError("Validity days must be positive")
        if self.max_attempts < 1:
            raise InputError("At least one polling attempt is required")
        if self.poll_interval < 0:
            raise InputError("Poll interval must not be negative")
        if self.creation_timeout is not None and self.creation_timeout <= 0:
            raise InputError("Creation timeout must be positive")

    def server_subject(self, sans: tuple[str, ...]) -> str:
        if self.subject:
            return self.subject
        if self.self_signed:
            return f"/O=kube-certgen/OU=k8s/CN={sans[0]}"
        # kubernetes.io/kubelet-serving only signs node-shaped subjects
        return f"/O=system:nodes/CN=system:node:{self.identity.csr_name}.svc"


def make_issuer(
    settings: IssuanceSettings,
    store: ArtifactStore,
    authority: SigningAuthority | None = None,
) -> Issuer:
    if settings.self_signed:
        return SelfSignedIssuer(
            store,
            ca_subject=settings.ca_subject,
            ca_days=settings.ca_days,
            crt_days=settings.crt_days,
            key_bits=settings.key_bits,
        )

    if authority is None:
        authority = KubernetesSigningAuthority.from_config(settings.kubeconfig, settings.context)
    return ClusterDelegatedIssuer(
        authority,
        name=settings.identity.csr_name,
        signer_name=settings.signer_name,
        max_attempts=settings.max_attempts,
        interval=settings.poll_interval,
        creation_timeout=settings.creation_timeout,
    )


def issue_certificate(
    settings: IssuanceSettings,
    issuer: Issuer | None = None,
    authority: SigningAuthority | None = None,
) -> IssuedCertificate:
    """
    Run the whole workflow and leave the artifacts in ``settings.out_dir``.

    The first failing step aborts the run with its error. Files written
    before the failure are left in place.
    """
    settings.validate()
    sans = build_sans(settings.identity, settings.self_signed, settings.fqdns)
    mode = "self-signed" if settings.self_signed else "cluster CA"
    logger.info(f"Issuing {mode} certificate for {settings.identity.csr_name} into {settings.out_dir}")

    store = ArtifactStore.open(settings.out_dir)
    key = generate_key(store, settings.key_bits)
    csr = generate_csr(store, key, settings.server_subject(sans), sans)

    if issuer is None:
        issuer = make_issuer(settings, store, authority)
    certificate = issuer.issue(csr)

    store.write(slots.SERVER_CRT, certificate.pem)
    logger.info(f"Wrote {store.path(slots.SERVER_CRT)}")
    return certificate
