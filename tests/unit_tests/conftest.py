"""Shared fixtures for unit tests, including an in-memory signing authority."""

import base64

import pytest

from kube_certgen.cluster import (
    AlreadyExists,
    NotFound,
    SigningRequestResource,
    SigningRequestStatus,
)
from kube_certgen.store import ArtifactStore


SIGNED_PEM = (
    b"-----BEGIN CERTIFICATE-----\n"
    b"MIIBszCCAVmgAwIBAgIUKubeCertgenFakeClusterSignedCertificate0wCgYIKoZIzj0EAwIw\n"
    b"-----END CERTIFICATE-----\n"
)


class FakeSigningAuthority:
    """
    In-memory stand-in for the CertificateSigningRequest API.

    visible_after: reads that return None after each create, to mimic
        the lag before a new object can be read back.
    sign_after: reads after approval until status.certificate is set,
        None means never.
    """

    def __init__(
        self,
        certificate=SIGNED_PEM,
        sign_after=1,
        visible_after=0,
        conflicts=0,
        condition=None,
    ):
        self.certificate = certificate
        self.sign_after = sign_after
        self.visible_after = visible_after
        self.conflicts = conflicts
        self.condition = condition
        self.resources = {}
        self.approved = set()
        self.calls = []
        self.reads = 0
        self.status_reads = 0
        self._hidden_reads = 0

    def delete(self, name):
        self.calls.append(("delete", name))
        if name not in self.resources:
            raise NotFound(f"{name} not found")
        del self.resources[name]
        self.approved.discard(name)

    def create(self, resource: SigningRequestResource):
        self.calls.append(("create", resource.name))
        if self.conflicts:
            self.conflicts -= 1
            raise AlreadyExists(f"{resource.name} already exists")
        if resource.name in self.resources:
            raise AlreadyExists(f"{resource.name} already exists")
        self.resources[resource.name] = resource
        self._hidden_reads = self.visible_after

    def read(self, name):
        self.calls.append(("read", name))
        self.reads += 1
        if name not in self.resources:
            return None
        if self._hidden_reads:
            self._hidden_reads -= 1
            return None
        if name not in self.approved:
            return SigningRequestStatus()

        self.status_reads += 1
        conditions = ("Approved",)
        if self.condition:
            return SigningRequestStatus(conditions=conditions + (self.condition,))
        if self.sign_after is not None and self.status_reads >= self.sign_after:
            encoded = base64.b64encode(self.certificate).decode("ascii")
            return SigningRequestStatus(certificate=encoded, conditions=conditions)
        return SigningRequestStatus(conditions=conditions)

    def approve(self, name):
        self.calls.append(("approve", name))
        if name not in self.resources:
            raise NotFound(f"{name} not found")
        self.approved.add(name)


@pytest.fixture
def fake_authority_factory():
    """Factory for fake signing authorities with different cluster behaviour"""
    def _create(**kwargs):
        return FakeSigningAuthority(**kwargs)

    return _create


@pytest.fixture
def fake_authority(fake_authority_factory):
    return fake_authority_factory()


@pytest.fixture
def artifact_store(tmp_path):
    return ArtifactStore.open(tmp_path / "pki")


@pytest.fixture
def no_sleep():
    """Records requested sleeps instead of sleeping"""
    sleeps = []
    return sleeps.append, sleeps
