"""Certificate issuance through the Kubernetes CertificateSigningRequest API."""

from __future__ import annotations

import base64
import binascii
import datetime
import enum
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config import ConfigException
from urllib3.exceptions import HTTPError

from .errors import ClusterAPIError, CreationTimeout, IssuanceTimeout
from .keys import CertificateRequest, IssuedCertificate


logger = logging.getLogger(__name__)

DEFAULT_SIGNER_NAME = "kubernetes.io/kubelet-serving"
DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_CREATION_TIMEOUT = 30.0
CREATION_POLL_INTERVAL = 0.5

USAGES = ("digital signature", "key encipherment", "server auth")
GROUPS = ("system:authenticated",)


class NotFound(ClusterAPIError):
    """The named signing request does not exist."""


class AlreadyExists(ClusterAPIError):
    """A signing request with the same name already exists."""


@dataclass(frozen=True)
class SigningRequestResource:
    """The cluster-scoped object submitted to the signer."""

    name: str
    request: str
    signer_name: str = DEFAULT_SIGNER_NAME
    usages: tuple[str, ...] = USAGES
    groups: tuple[str, ...] = GROUPS

    @classmethod
    def from_csr(cls, name: str, csr: CertificateRequest, signer_name: str = DEFAULT_SIGNER_NAME):
        return cls(
            name=name,
            request=base64.b64encode(csr.pem).decode("ascii"),
            signer_name=signer_name,
        )


@dataclass(frozen=True)
class SigningRequestStatus:
    certificate: str | None = None
    conditions: tuple[str, ...] = field(default_factory=tuple)

    @property
    def rejected(self) -> str | None:
        for condition in ("Denied", "Failed"):
            if condition in self.conditions:
                return condition
        return None


class SigningAuthority(Protocol):
    """
    What the issuer needs from the cluster.

    ``delete`` raises NotFound for a missing resource, ``create`` raises
    AlreadyExists on a name conflict and ``read`` returns None while the
    resource is not visible.
    """

    def delete(self, name: str) -> None: ...

    def create(self, resource: SigningRequestResource) -> None: ...

    def read(self, name: str) -> SigningRequestStatus | None: ...

    def approve(self, name: str) -> None: ...


class SigningState(enum.Enum):
    NOT_SUBMITTED = "NotSubmitted"
    SUBMITTED = "Submitted"
    APPROVAL_REQUESTED = "ApprovalRequested"
    POLLING = "Polling"
    SIGNED = "Signed"
    FAILED = "Failed"


class ClusterDelegatedIssuer:
    """
    Drives one CertificateSigningRequest from submission to a signed certificate.

    The steps run strictly in order: submit, wait until the resource can be
    read, approve, then poll ``status.certificate``. Any failure moves the
    issuer to ``FAILED`` and propagates.
    """

    def __init__(
        self,
        authority: SigningAuthority,
        name: str,
        signer_name: str = DEFAULT_SIGNER_NAME,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval: float = DEFAULT_POLL_INTERVAL,
        creation_timeout: float | None = DEFAULT_CREATION_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.authority = authority
        self.name = name
        self.signer_name = signer_name
        self.max_attempts = max_attempts
        self.interval = interval
        self.creation_timeout = creation_timeout
        self.sleep = sleep
        self.clock = clock
        self.state = SigningState.NOT_SUBMITTED

    def _transition(self, state: SigningState) -> None:
        logger.info(f"CSR {self.name}: {self.state.value} -> {state.value}")
        self.state = state

    def _delete_existing(self, name: str) -> None:
        try:
            self.authority.delete(name)
            logger.info(f"Deleted previous CSR {name}")
        except NotFound:
            logger.debug(f"No previous CSR {name} to delete")

    def submit(self, csr: CertificateRequest) -> SigningRequestResource:
        resource = SigningRequestResource.from_csr(self.name, csr, self.signer_name)
        self._delete_existing(resource.name)
        try:
            self.authority.create(resource)
        except AlreadyExists:
            # a concurrent or lagging deletion; one more round only
            logger.warning(f"CSR {resource.name} still exists after delete, retrying once")
            self._delete_existing(resource.name)
            try:
                self.authority.create(resource)
            except AlreadyExists as exc:
                raise ClusterAPIError(f"CSR {resource.name} already exists after retry") from exc
        self._transition(SigningState.SUBMITTED)
        return resource

    def await_creation(self, name: str) -> SigningRequestStatus:
        """Block until ``name`` is readable; unbounded when creation_timeout is None."""
        deadline = None if self.creation_timeout is None else self.clock() + self.creation_timeout
        while True:
            status = self.authority.read(name)
            if status is not None:
                return status
            if deadline is not None and self.clock() >= deadline:
                raise CreationTimeout(f"CSR {name} not visible after {self.creation_timeout}s")
            self.sleep(CREATION_POLL_INTERVAL)

    def approve(self, name: str) -> None:
        self.authority.approve(name)
        self._transition(SigningState.APPROVAL_REQUESTED)

    def poll_for_certificate(self, name: str) -> IssuedCertificate:
        self._transition(SigningState.POLLING)
        for attempt in range(1, self.max_attempts + 1):
            status = self.authority.read(name) or SigningRequestStatus()
            logger.debug(f"CSR {name}: poll {attempt}/{self.max_attempts} conditions={list(status.conditions)}")
            if status.rejected:
                raise ClusterAPIError(f"CSR {name} was {status.rejected.lower()} by the cluster")
            if status.certificate:
                try:
                    pem = base64.b64decode(status.certificate, validate=True)
                except (binascii.Error, ValueError) as exc:
                    raise ClusterAPIError(f"CSR {name} carries an undecodable certificate") from exc
                self._transition(SigningState.SIGNED)
                return IssuedCertificate(pem=pem)
            if attempt < self.max_attempts:
                self.sleep(self.interval)

        raise IssuanceTimeout(
            f"After approving CSR {name}, the signed certificate did not appear on the resource. "
            f"Giving up after {self.max_attempts} attempts.",
            attempts=self.max_attempts,
        )

    def issue(self, csr: CertificateRequest) -> IssuedCertificate:
        try:
            resource = self.submit(csr)
            self.await_creation(resource.name)
            self.approve(resource.name)
            return self.poll_for_certificate(resource.name)
        except Exception:
            self.state = SigningState.FAILED
            raise


class KubernetesSigningAuthority:
    """SigningAuthority backed by ``kubernetes.client.CertificatesV1Api``."""

    def __init__(self, api=None):
        self.api = api if api is not None else client.CertificatesV1Api()

    @classmethod
    def from_config(cls, config_file: str | None = None, context: str | None = None):
        try:
            if config_file is None and context is None and os.environ.get("KUBERNETES_SERVICE_HOST"):
                config.load_incluster_config()
            else:
                config.load_kube_config(config_file=config_file, context=context)
        except (ConfigException, OSError) as exc:
            raise ClusterAPIError(f"Cannot load Kubernetes configuration: {exc}") from exc
        return cls()

    @staticmethod
    def _translate(exc, action: str, name: str) -> ClusterAPIError:
        if not isinstance(exc, ApiException):
            return ClusterAPIError(f"Cannot {action} CSR {name}: cluster unreachable ({exc})")
        message = f"Cannot {action} CSR {name}: {exc.status} {exc.reason}"
        if exc.status == 404:
            return NotFound(message)
        if exc.status == 409:
            return AlreadyExists(message)
        return ClusterAPIError(message)

    def delete(self, name: str) -> None:
        try:
            self.api.delete_certificate_signing_request(name)
        except (ApiException, HTTPError) as exc:
            raise self._translate(exc, "delete", name) from exc

    def create(self, resource: SigningRequestResource) -> None:
        body = client.V1CertificateSigningRequest(
            api_version="certificates.k8s.io/v1",
            kind="CertificateSigningRequest",
            metadata=client.V1ObjectMeta(name=resource.name),
            spec=client.V1CertificateSigningRequestSpec(
                groups=list(resource.groups),
                request=resource.request,
                signer_name=resource.signer_name,
                usages=list(resource.usages),
            ),
        )
        try:
            self.api.create_certificate_signing_request(body)
        except (ApiException, HTTPError) as exc:
            raise self._translate(exc, "create", resource.name) from exc

    def read(self, name: str) -> SigningRequestStatus | None:
        try:
            obj = self.api.read_certificate_signing_request(name)
        except (ApiException, HTTPError) as exc:
            if isinstance(exc, ApiException) and exc.status == 404:
                return None
            raise self._translate(exc, "read", name) from exc

        status = obj.status
        if status is None:
            return SigningRequestStatus()
        return SigningRequestStatus(
            certificate=status.certificate,
            conditions=tuple(condition.type for condition in status.conditions or ()),
        )

    def approve(self, name: str) -> None:
        try:
            body = self.api.read_certificate_signing_request(name)
            if body.status is None:
                body.status = client.V1CertificateSigningRequestStatus()
            conditions = list(body.status.conditions or [])
            conditions.append(
                client.V1CertificateSigningRequestCondition(
                    type="Approved",
                    status="True",
                    reason="KubeCertgenApprove",
                    message="This CSR was approved by kube-certgen.",
                    last_update_time=datetime.datetime.now(datetime.timezone.utc),
                )
            )
            body.status.conditions = conditions
            self.api.replace_certificate_signing_request_approval(name, body)
        except (ApiException, HTTPError) as exc:
            raise self._translate(exc, "approve", name) from exc
