"""Helpers for reading and updating persistent volume claims."""

import logging
from typing import Any, Optional

from kubernetes.client import CoreV1Api
from kubernetes.client.exceptions import ApiException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)


def get_annotations(obj: Any) -> dict[str, str]:
    return obj.metadata.annotations or {}


def has_annotation(obj: Any, key: str) -> bool:
    return key in get_annotations(obj)


def has_label(obj: Any, key: str, value: str) -> bool:
    return (obj.metadata.labels or {}).get(key) == value


def claim_phase(claim: Any) -> Optional[str]:
    return claim.status.phase if claim.status else None


def _is_conflict(e: BaseException) -> bool:
    return isinstance(e, ApiException) and e.status == 409


@retry(
    retry=retry_if_exception(_is_conflict),
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    reraise=True,
)
def update_claim(
    core_v1: CoreV1Api,
    claim: Any,
    annotations: Optional[dict[str, str]] = None,
    labels: Optional[dict[str, str]] = None,
) -> Any:
    """
    Merge annotations and labels into the live claim.

    The claim is re-read from the API server on every attempt so that a write
    conflict is resolved against the latest version.

    Args:
        core_v1: CoreV1Api client
        claim: Claim to update (only its namespace and name are used)
        annotations: Annotations to set
        labels: Labels to set

    Returns:
        Updated V1PersistentVolumeClaim

    Raises:
        ApiException: If the update fails for a reason other than a conflict,
            or keeps conflicting
    """
    name = claim.metadata.name
    namespace = claim.metadata.namespace

    live = core_v1.read_namespaced_persistent_volume_claim(name, namespace)
    if annotations:
        live.metadata.annotations = {**(live.metadata.annotations or {}), **annotations}
    if labels:
        live.metadata.labels = {**(live.metadata.labels or {}), **labels}

    updated = core_v1.replace_namespaced_persistent_volume_claim(name, namespace, body=live)
    logger.debug(f"Updated claim {namespace}/{name}: annotations={annotations} labels={labels}")
    return updated
