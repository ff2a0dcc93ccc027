"""Pytest configuration and fixtures for clone controller tests."""

import time
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt
from kubernetes import client
from kubernetes.client import (
    V1ObjectMeta,
    V1OwnerReference,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1PersistentVolumeClaimStatus,
    V1Pod,
    V1PodStatus,
    V1StorageClass,
    V1VolumeResourceRequirements,
)

from cdi_clone import CloneController, ControllerExpectations, ObjectCache, TokenValidator
from cdi_clone.constants import (
    ANN_CLONE_REQUEST,
    ANN_CLONE_TOKEN,
    CLONE_UNIQUE_ID,
    LABEL_TARGET_POD_NAMESPACE,
)
from cdi_clone.events import EventRecorder


def _generate_key_pair():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return private_pem, public_pem


@pytest.fixture(scope="session")
def key_pair():
    """RSA key pair standing in for the apiserver signing key."""
    return _generate_key_pair()


@pytest.fixture(scope="session")
def other_key_pair():
    """A second, unrelated RSA key pair."""
    return _generate_key_pair()


@pytest.fixture
def private_key(key_pair):
    return key_pair[0]


@pytest.fixture
def public_key(key_pair):
    return key_pair[1]


@pytest.fixture
def make_token(private_key):
    """Factory for signed clone tokens."""

    def _make_token(
        source_namespace="ns2",
        source_name="source",
        target_namespace="ns",
        target_name="target",
        operation="Clone",
        resource="persistentvolumeclaims",
        issuer="cdi-apiserver",
        expires_in=300,
        key=None,
    ):
        now = int(time.time())
        claims = {
            "iss": issuer,
            "iat": now,
            "nbf": now,
            "exp": now + expires_in,
            "operation": operation,
            "name": source_name,
            "namespace": source_namespace,
            "resource": {"group": "", "version": "v1", "resource": resource},
            "params": {"targetNamespace": target_namespace, "targetName": target_name},
        }
        return jwt.encode(claims, key or private_key, algorithm="RS256")

    return _make_token


@pytest.fixture
def make_claim():
    """Factory for PersistentVolumeClaim objects."""

    def _make_claim(
        name="target",
        namespace="ns",
        uid=None,
        phase="Bound",
        annotations=None,
        labels=None,
        storage="1Gi",
        storage_class=None,
        volume_mode=None,
    ):
        return V1PersistentVolumeClaim(
            api_version="v1",
            kind="PersistentVolumeClaim",
            metadata=V1ObjectMeta(
                name=name,
                namespace=namespace,
                uid=uid or f"{name}-uid",
                resource_version="1",
                annotations=annotations,
                labels=labels,
            ),
            spec=V1PersistentVolumeClaimSpec(
                access_modes=["ReadWriteOnce"],
                storage_class_name=storage_class,
                volume_mode=volume_mode,
                resources=V1VolumeResourceRequirements(requests={"storage": storage}),
            ),
            status=V1PersistentVolumeClaimStatus(phase=phase),
        )

    return _make_claim


@pytest.fixture
def make_clone_claim(make_claim, make_token):
    """Factory for target claims carrying a valid clone request and token."""

    def _make_clone_claim(source="ns2/source", token=None, annotations=None, **kwargs):
        namespace = kwargs.get("namespace", "ns")
        name = kwargs.get("name", "target")
        source_namespace, source_name = source.split("/")
        all_annotations = {
            ANN_CLONE_REQUEST: source,
            ANN_CLONE_TOKEN: token
            or make_token(
                source_namespace=source_namespace,
                source_name=source_name,
                target_namespace=namespace,
                target_name=name,
            ),
        }
        all_annotations.update(annotations or {})
        return make_claim(annotations=all_annotations, **kwargs)

    return _make_clone_claim


@pytest.fixture
def make_pod():
    """Factory for clone role pods."""

    def _make_pod(
        name,
        namespace,
        owner=None,
        unique_id=None,
        phase="Running",
        target_namespace=None,
        resource_version="1",
        controller=True,
    ):
        labels = {}
        if unique_id:
            labels[CLONE_UNIQUE_ID] = unique_id
        if target_namespace:
            labels[LABEL_TARGET_POD_NAMESPACE] = target_namespace
        owner_references = None
        if owner is not None:
            owner_references = [
                V1OwnerReference(
                    api_version="v1",
                    kind="PersistentVolumeClaim",
                    name=owner.metadata.name,
                    uid=owner.metadata.uid,
                    controller=controller,
                )
            ]
        return V1Pod(
            metadata=V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=labels,
                owner_references=owner_references,
                resource_version=resource_version,
            ),
            status=V1PodStatus(phase=phase),
        )

    return _make_pod


@pytest.fixture
def make_storage_class():
    """Factory for StorageClass objects."""

    def _make_storage_class(name="standard", binding_mode="Immediate"):
        return V1StorageClass(
            metadata=V1ObjectMeta(name=name),
            provisioner="kubernetes.io/no-provisioner",
            volume_binding_mode=binding_mode,
        )

    return _make_storage_class


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.storage_v1 = MagicMock(spec=client.StorageV1Api)

    created = {"count": 0}

    def _create_pod(namespace, body):
        created["count"] += 1
        body.metadata.name = f"{body.metadata.generate_name}{created['count']}"
        body.metadata.namespace = namespace
        return body

    mock_conn.core_v1.create_namespaced_pod.side_effect = _create_pod
    mock_conn.core_v1.replace_namespaced_persistent_volume_claim.side_effect = (
        lambda name, namespace, body: body
    )
    return mock_conn


@pytest.fixture
def claim_cache():
    return ObjectCache("persistentvolumeclaim")


@pytest.fixture
def pod_cache():
    return ObjectCache("pod")


@pytest.fixture
def storage_class_cache():
    return ObjectCache("storageclass")


@pytest.fixture
def expectations():
    return ControllerExpectations()


@pytest.fixture
def recorder():
    return MagicMock(spec=EventRecorder)


@pytest.fixture
def controller(
    mock_cluster_connection,
    claim_cache,
    pod_cache,
    storage_class_cache,
    expectations,
    recorder,
    public_key,
):
    """Clone controller wired to mocks and in-memory caches."""
    return CloneController(
        mock_cluster_connection,
        claim_cache,
        pod_cache,
        storage_class_cache,
        image="kubevirt/cdi-cloner:test",
        pull_policy="IfNotPresent",
        verbose="2",
        token_validator=TokenValidator(public_key),
        expectations=expectations,
        recorder=recorder,
    )
