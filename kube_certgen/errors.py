"""Exception types raised by the certificate issuance workflow."""

from __future__ import annotations


class CertgenError(Exception):
    """Base class for every failure that aborts an issuance run."""

    stage = "issuance"

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class InputError(CertgenError):
    """Missing or invalid parameters, detected before any work starts."""

    stage = "input"


class CryptoError(CertgenError):
    """Key, CSR or certificate generation failed."""

    stage = "crypto"


class ClusterAPIError(CertgenError):
    """The Kubernetes API refused or failed a signing request operation."""

    stage = "cluster"


class StoreError(CryptoError):
    """The output directory or one of its artifact files could not be written."""

    stage = "store"


class CreationTimeout(CertgenError):
    """A created signing request never became visible for reads."""

    stage = "await-creation"


class IssuanceTimeout(CertgenError):
    """The signed certificate did not appear within the polling budget."""

    stage = "poll"

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts
