"""Clone source/target pod construction, discovery and deletion."""

import logging
from typing import Any, Optional

from kubernetes.client import (
    V1Affinity,
    V1Container,
    V1EnvVar,
    V1HostPathVolumeSource,
    V1LabelSelector,
    V1ObjectMeta,
    V1OwnerReference,
    V1PersistentVolumeClaimVolumeSource,
    V1Pod,
    V1PodAffinity,
    V1PodAffinityTerm,
    V1PodSpec,
    V1Volume,
    V1VolumeDevice,
    V1VolumeMount,
)
from kubernetes.client.exceptions import ApiException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .cache import ObjectCache
from .cluster import ClusterConnection
from .constants import (
    BLOCK_DEVICE_PATH,
    CDI_LABEL_KEY,
    CDI_LABEL_VALUE,
    CLONE_UNIQUE_ID,
    HOSTNAME_TOPOLOGY_KEY,
    LABEL_TARGET_POD_NAMESPACE,
    SOCKET_HOST_PATH,
    SOURCE_CONTAINER_NAME,
    SOURCE_MOUNT_PATH,
    SOURCE_POD_PREFIX,
    SOURCE_POD_SUFFIX,
    TARGET_CONTAINER_NAME,
    TARGET_MOUNT_PATH,
    TARGET_POD_PREFIX,
    TARGET_POD_SUFFIX,
    VOLUME_MODE_BLOCK,
)
from .errors import ConsistencyError
from .models import ClaimRef, PodRole

logger = logging.getLogger(__name__)

DATA_VOLUME_NAME = "cdi-data-vol"
SOCKET_VOLUME_NAME = "socket-dir"
SOCKET_MOUNT_PATH = "/tmp/clone/socket"


def clone_unique_id(claim_uid: str, role: PodRole) -> str:
    suffix = SOURCE_POD_SUFFIX if role == PodRole.SOURCE else TARGET_POD_SUFFIX
    return f"{claim_uid}{suffix}"


def clone_pod_selector(claim_uid: str, role: PodRole) -> dict[str, str]:
    """
    Label selector matching the pod of one role for a claim.

    Args:
        claim_uid: UID of the target claim
        role: Source or target

    Returns:
        Equality-based selector dict
    """
    return {CLONE_UNIQUE_ID: clone_unique_id(claim_uid, role)}


def is_controlled_by(obj: Any, owner: Any) -> bool:
    """Check whether ``owner`` is the controlling owner of ``obj``."""
    for ref in obj.metadata.owner_references or []:
        if ref.controller and ref.uid == owner.metadata.uid:
            return True
    return False


def find_role_pod(pod_cache: ObjectCache, claim: Any, role: PodRole, namespace: str) -> Optional[Any]:
    """
    Find the pod of one role for a claim in the cache.

    Args:
        pod_cache: Pod cache
        claim: Target claim
        role: Source or target
        namespace: Namespace the role pod lives in

    Returns:
        The pod, or None if there is none

    Raises:
        ConsistencyError: If more than one pod matches
    """
    pods = pod_cache.list(namespace=namespace, selector=clone_pod_selector(claim.metadata.uid, role))
    if not pods:
        return None
    if len(pods) > 1:
        raise ConsistencyError(
            f"multiple {role.value} pods found for clone PVC "
            f"{claim.metadata.namespace}/{claim.metadata.name}"
        )
    return pods[0]


def _owner_reference(claim: Any) -> V1OwnerReference:
    return V1OwnerReference(
        api_version="v1",
        kind="PersistentVolumeClaim",
        name=claim.metadata.name,
        uid=claim.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )


def _pod_labels(claim: Any, role: PodRole) -> dict[str, str]:
    return {
        CDI_LABEL_KEY: CDI_LABEL_VALUE,
        CLONE_UNIQUE_ID: clone_unique_id(claim.metadata.uid, role),
        LABEL_TARGET_POD_NAMESPACE: claim.metadata.namespace,
    }


def _socket_volume(claim: Any) -> V1Volume:
    return V1Volume(
        name=SOCKET_VOLUME_NAME,
        host_path=V1HostPathVolumeSource(
            path=f"{SOCKET_HOST_PATH}/{claim.metadata.uid}",
            type="DirectoryOrCreate",
        ),
    )


def _attach_data_volume(container: V1Container, volume_mode: Optional[str], mount_path: str, read_only: bool) -> None:
    if volume_mode == VOLUME_MODE_BLOCK:
        container.volume_devices = [V1VolumeDevice(name=DATA_VOLUME_NAME, device_path=BLOCK_DEVICE_PATH)]
    else:
        container.volume_mounts.append(
            V1VolumeMount(name=DATA_VOLUME_NAME, mount_path=mount_path, read_only=read_only)
        )


def build_source_pod(
    image: str,
    pull_policy: str,
    verbose: str,
    source: ClaimRef,
    target_claim: Any,
) -> V1Pod:
    """
    Build the pod exporting data from the source claim.

    The pod lives in the source claim's namespace and is controlled by the
    target claim.
    """
    container = V1Container(
        name=SOURCE_CONTAINER_NAME,
        image=image,
        image_pull_policy=pull_policy,
        args=["source", f"-v={verbose}"],
        env=[
            V1EnvVar(name="CLONER_SOCKET_DIR", value=SOCKET_MOUNT_PATH),
            V1EnvVar(name="CLONER_MOUNT_PATH", value=SOURCE_MOUNT_PATH),
        ],
        volume_mounts=[V1VolumeMount(name=SOCKET_VOLUME_NAME, mount_path=SOCKET_MOUNT_PATH)],
    )
    _attach_data_volume(container, target_claim.spec.volume_mode, SOURCE_MOUNT_PATH, read_only=True)

    return V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=V1ObjectMeta(
            generate_name=SOURCE_POD_PREFIX,
            namespace=source.namespace,
            labels=_pod_labels(target_claim, PodRole.SOURCE),
            owner_references=[_owner_reference(target_claim)],
        ),
        spec=V1PodSpec(
            containers=[container],
            restart_policy="OnFailure",
            volumes=[
                V1Volume(
                    name=DATA_VOLUME_NAME,
                    persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                        claim_name=source.name, read_only=True
                    ),
                ),
                _socket_volume(target_claim),
            ],
        ),
    )


def build_target_pod(
    image: str,
    pull_policy: str,
    verbose: str,
    target_claim: Any,
    source_pod_namespace: str,
) -> V1Pod:
    """
    Build the pod importing data into the target claim.

    The pod must run on the node of the source pod, so it carries a required
    pod affinity to the source pod's labels in ``source_pod_namespace``.
    """
    container = V1Container(
        name=TARGET_CONTAINER_NAME,
        image=image,
        image_pull_policy=pull_policy,
        args=["target", f"-v={verbose}"],
        env=[
            V1EnvVar(name="CLONER_SOCKET_DIR", value=SOCKET_MOUNT_PATH),
            V1EnvVar(name="CLONER_MOUNT_PATH", value=TARGET_MOUNT_PATH),
        ],
        volume_mounts=[V1VolumeMount(name=SOCKET_VOLUME_NAME, mount_path=SOCKET_MOUNT_PATH)],
    )
    _attach_data_volume(container, target_claim.spec.volume_mode, TARGET_MOUNT_PATH, read_only=False)

    affinity = V1Affinity(
        pod_affinity=V1PodAffinity(
            required_during_scheduling_ignored_during_execution=[
                V1PodAffinityTerm(
                    label_selector=V1LabelSelector(
                        match_labels=clone_pod_selector(target_claim.metadata.uid, PodRole.SOURCE)
                    ),
                    namespaces=[source_pod_namespace],
                    topology_key=HOSTNAME_TOPOLOGY_KEY,
                )
            ]
        )
    )

    return V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=V1ObjectMeta(
            generate_name=TARGET_POD_PREFIX,
            namespace=target_claim.metadata.namespace,
            labels=_pod_labels(target_claim, PodRole.TARGET),
            owner_references=[_owner_reference(target_claim)],
        ),
        spec=V1PodSpec(
            containers=[container],
            restart_policy="OnFailure",
            affinity=affinity,
            volumes=[
                V1Volume(
                    name=DATA_VOLUME_NAME,
                    persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                        claim_name=target_claim.metadata.name
                    ),
                ),
                _socket_volume(target_claim),
            ],
        ),
    )


def _is_retryable(e: BaseException) -> bool:
    return isinstance(e, ApiException) and e.status in (429, 500, 503, 504)


class ClonePodManager:
    """Creates and deletes clone pods through the API server."""

    def __init__(
        self,
        cluster: ClusterConnection,
        pod_cache: ObjectCache,
        image: str,
        pull_policy: str,
        verbose: str = "1",
    ):
        """
        Initialize pod manager.

        Args:
            cluster: Cluster connection
            pod_cache: Pod cache, consulted before deleting
            image: Cloner image
            pull_policy: Image pull policy
            verbose: Cloner log verbosity
        """
        self.cluster = cluster
        self.core_v1 = cluster.core_v1
        self.pod_cache = pod_cache
        self.image = image
        self.pull_policy = pull_policy
        self.verbose = verbose

    def create_source_pod(self, source: ClaimRef, target_claim: Any) -> V1Pod:
        """
        Create the source pod.

        Not retried here: a retry after an ambiguous failure could create a
        second pod for the same role.

        Raises:
            ApiException: If creation fails
        """
        pod = build_source_pod(self.image, self.pull_policy, self.verbose, source, target_claim)
        created = self.core_v1.create_namespaced_pod(namespace=source.namespace, body=pod)
        logger.info(
            f"Created clone source pod {created.metadata.namespace}/{created.metadata.name} "
            f"for claim {target_claim.metadata.namespace}/{target_claim.metadata.name}"
        )
        return created

    def create_target_pod(self, target_claim: Any, source_pod_namespace: str) -> V1Pod:
        """
        Create the target pod.

        Raises:
            ApiException: If creation fails
        """
        pod = build_target_pod(
            self.image, self.pull_policy, self.verbose, target_claim, source_pod_namespace
        )
        created = self.core_v1.create_namespaced_pod(
            namespace=target_claim.metadata.namespace, body=pod
        )
        logger.info(
            f"Created clone target pod {created.metadata.namespace}/{created.metadata.name} "
            f"for claim {target_claim.metadata.namespace}/{target_claim.metadata.name}"
        )
        return created

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def delete(self, name: str, namespace: str) -> bool:
        """
        Delete a pod known to the cache.

        Args:
            name: Pod name
            namespace: Pod namespace

        Returns:
            True if deleted, False if the pod was already gone

        Raises:
            ApiException: If deletion fails
        """
        if self.pod_cache.get(name, namespace) is None:
            logger.debug(f"Pod {namespace}/{name} not in cache, skipping delete")
            return False

        try:
            self.core_v1.delete_namespaced_pod(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        logger.info(f"Deleted clone pod {namespace}/{name}")
        return True
