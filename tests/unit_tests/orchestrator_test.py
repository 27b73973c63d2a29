from unittest.mock import Mock, patch

import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID

from kube_certgen import store as slots
from kube_certgen.cluster import ClusterDelegatedIssuer
from kube_certgen.errors import InputError, IssuanceTimeout
from kube_certgen.orchestrator import IssuanceSettings, issue_certificate, make_issuer
from kube_certgen.self_signed import SelfSignedIssuer
from kube_certgen.store import ArtifactStore


@pytest.fixture
def settings_factory(tmp_path):
    def _create(**overrides):
        values = {
            "service_name": "webhook",
            "namespace": "prod",
            "out_dir": str(tmp_path / "pki"),
            "poll_interval": 0,
        }
        values.update(overrides)
        return IssuanceSettings(**values)

    return _create


def test_self_signed_end_to_end(settings_factory, tmp_path):
    """Self-signed run writes the full artifact set with service SANs"""
    settings = settings_factory(self_signed=True, ca_days=3650, crt_days=365)

    issued = issue_certificate(settings)

    store = ArtifactStore(tmp_path / "pki")
    for slot in (slots.CA_KEY, slots.CA_CRT, slots.SERVER_KEY, slots.SERVER_CSR, slots.SERVER_CRT, slots.SSL_CONF):
        assert store.exists(slot), slot
    certificate = x509.load_pem_x509_certificate(store.read(slots.SERVER_CRT))
    san = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    assert san.value.get_values_for_type(x509.DNSName) == ["webhook", "webhook.prod", "webhook.prod.svc"]
    assert issued.pem == store.read(slots.SERVER_CRT)


def test_self_signed_with_fqdn_list(settings_factory):
    settings = settings_factory(self_signed=True, fqdns="one.example.com,two.example.com")

    issued = issue_certificate(settings)

    assert issued.dns_names() == ["one.example.com", "two.example.com"]
    common_name = issued.load().subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
    assert common_name == "one.example.com"


def test_cluster_success_on_third_poll(settings_factory, fake_authority_factory, tmp_path):
    authority = fake_authority_factory(sign_after=3)
    settings = settings_factory()

    issue_certificate(settings, authority=authority)

    store = ArtifactStore(tmp_path / "pki")
    assert store.read(slots.SERVER_CRT) == authority.certificate
    assert authority.status_reads == 3
    assert not store.exists(slots.CA_KEY)
    assert not store.exists(slots.CA_CRT)


def test_cluster_csr_carries_service_sans(settings_factory, fake_authority, tmp_path):
    issue_certificate(settings_factory(), authority=fake_authority)

    csr = x509.load_pem_x509_csr(ArtifactStore(tmp_path / "pki").read(slots.SERVER_CSR))
    san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    assert san.value.get_values_for_type(x509.DNSName) == ["webhook", "webhook.prod", "webhook.prod.svc"]
    assert csr.subject.rfc4514_string() == "CN=system:node:webhook.prod.svc,O=system:nodes"
    assert list(fake_authority.resources) == ["webhook.prod"]


def test_cluster_timeout_leaves_no_certificate(settings_factory, fake_authority_factory, tmp_path):
    authority = fake_authority_factory(sign_after=None)

    with pytest.raises(IssuanceTimeout) as exc_info:
        issue_certificate(settings_factory(), authority=authority)

    store = ArtifactStore(tmp_path / "pki")
    assert exc_info.value.attempts == 10
    assert authority.status_reads == 10
    assert not store.exists(slots.SERVER_CRT)
    # partial output is kept for inspection
    assert store.exists(slots.SERVER_KEY)
    assert store.exists(slots.SERVER_CSR)


def test_missing_service_name_touches_nothing(settings_factory, tmp_path):
    """Test that input validation runs before any file or cluster call"""
    authority = Mock()
    issuer = Mock()

    with pytest.raises(InputError):
        issue_certificate(settings_factory(service_name=""), issuer=issuer, authority=authority)

    assert authority.method_calls == []
    assert issuer.method_calls == []
    assert not (tmp_path / "pki").exists()


@pytest.mark.parametrize(
    "overrides",
    [
        {"namespace": ""},
        {"self_signed": True, "ca_subject": ""},
        {"ca_days": 0},
        {"crt_days": -1},
        {"max_attempts": 0},
        {"creation_timeout": 0},
    ],
)
def test_invalid_settings(settings_factory, overrides):
    with pytest.raises(InputError):
        settings_factory(**overrides).validate()


def test_rerun_overwrites_artifacts(settings_factory, fake_authority, tmp_path):
    settings = settings_factory()
    issue_certificate(settings, authority=fake_authority)
    first_key = ArtifactStore(tmp_path / "pki").read(slots.SERVER_KEY)

    issue_certificate(settings, authority=fake_authority)

    assert ArtifactStore(tmp_path / "pki").read(slots.SERVER_KEY) != first_key
    assert list(fake_authority.resources) == ["webhook.prod"]


def test_custom_issuer_is_used(settings_factory):
    issuer = Mock()
    issuer.issue.return_value.pem = b"issued"

    issued = issue_certificate(settings_factory(), issuer=issuer)

    assert issued.pem == b"issued"
    issuer.issue.assert_called_once()


def test_make_issuer_selects_strategy(settings_factory, fake_authority, tmp_path):
    store = ArtifactStore.open(tmp_path / "pki")

    assert isinstance(make_issuer(settings_factory(self_signed=True), store), SelfSignedIssuer)
    cluster_issuer = make_issuer(settings_factory(), store, fake_authority)
    assert isinstance(cluster_issuer, ClusterDelegatedIssuer)
    assert cluster_issuer.name == "webhook.prod"


def test_make_issuer_loads_kubernetes_config(settings_factory, tmp_path):
    store = ArtifactStore.open(tmp_path / "pki")
    settings = settings_factory(kubeconfig="/tmp/kubeconfig", context="kind-test")

    with patch("kube_certgen.orchestrator.KubernetesSigningAuthority") as authority_class:
        issuer = make_issuer(settings, store)

    authority_class.from_config.assert_called_once_with("/tmp/kubeconfig", "kind-test")
    assert issuer.authority is authority_class.from_config.return_value
