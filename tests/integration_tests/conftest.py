"""Pytest fixtures for integration tests."""

import os
import shutil
import subprocess

import pytest
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from kube_certgen.cluster import KubernetesSigningAuthority


CLUSTER_NAME = "certgen-test"


def _skip_or_fail(reason: str) -> None:
    # CI must have a cluster; locally the suite is optional
    if os.environ.get("CI"):
        pytest.fail(reason)
    pytest.skip(f"Skipping integration tests: {reason}")


def _require_kind() -> None:
    missing = [binary for binary in ("docker", "kind", "kubectl") if shutil.which(binary) is None]
    if missing:
        _skip_or_fail(f"missing binaries: {', '.join(missing)}")

    docker_info = subprocess.run(["docker", "info"], check=False, capture_output=True, text=True)
    if docker_info.returncode != 0:
        output = (docker_info.stderr or docker_info.stdout).strip()
        detail = output.splitlines()[0] if output else "docker info failed"
        _skip_or_fail(f"Docker is unavailable ({detail}).")


def _cluster_exists(cluster_name: str) -> bool:
    result = subprocess.run(
        ["kind", "get", "clusters"],
        check=True,
        capture_output=True,
        text=True,
    )
    return cluster_name in result.stdout.split()


@pytest.fixture(scope="session")
def kind_cluster():
    """
    Create and manage a kind cluster for tests.

    The cluster is created once at session start and reused for all tests.
    Delete it with 'kind delete cluster --name certgen-test' when done; keeping
    it around makes repeated runs fast.
    """
    cluster_name = CLUSTER_NAME

    _require_kind()

    try:
        if not _cluster_exists(cluster_name):
            subprocess.run(
                ["kind", "create", "cluster", "--name", cluster_name, "--wait", "120s"],
                check=True,
                capture_output=True,
                text=True,
            )
    except subprocess.CalledProcessError as e:
        error_text = (e.stderr or e.stdout or "").lower()
        if "permission denied while trying to connect to the docker api" in error_text:
            _skip_or_fail("Docker socket is not accessible for kind.")
        pytest.fail(f"Failed to setup kind cluster: {e.stderr}")

    try:
        config.load_kube_config(context=f"kind-{cluster_name}")
    except Exception as e:
        pytest.fail(f"Failed to load kubeconfig: {e}")

    yield {"name": cluster_name, "context": f"kind-{cluster_name}"}


@pytest.fixture(scope="session")
def k8s_client(kind_cluster):
    """Get Kubernetes API clients."""
    return {
        "core": client.CoreV1Api(),
        "certificates": client.CertificatesV1Api(),
    }


@pytest.fixture(scope="session")
def signing_authority(k8s_client):
    return KubernetesSigningAuthority(api=k8s_client["certificates"])


@pytest.fixture(scope="function")
def csr_cleanup(k8s_client):
    """Collects CSR names to delete after each test."""
    names = []

    yield names

    for name in names:
        try:
            k8s_client["certificates"].delete_certificate_signing_request(name)
        except ApiException:
            pass  # Already deleted
