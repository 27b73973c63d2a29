"""
Kubernetes Webhook Certificate Package

This package provisions TLS server certificates for Services in a cluster,
either signed by a throwaway local CA or by the cluster CA through the
CertificateSigningRequest API.
"""

from .cluster import ClusterDelegatedIssuer, KubernetesSigningAuthority
from .errors import (
    CertgenError,
    ClusterAPIError,
    CreationTimeout,
    CryptoError,
    InputError,
    IssuanceTimeout,
    StoreError,
)
from .orchestrator import IssuanceSettings, issue_certificate
from .self_signed import SelfSignedIssuer

__all__ = [
    'CertgenError',
    'ClusterAPIError',
    'ClusterDelegatedIssuer',
    'CreationTimeout',
    'CryptoError',
    'InputError',
    'IssuanceSettings',
    'IssuanceTimeout',
    'KubernetesSigningAuthority',
    'SelfSignedIssuer',
    'StoreError',
    'issue_certificate',
]
