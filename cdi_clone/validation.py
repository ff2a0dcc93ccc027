"""Clone request parsing and source/target compatibility checks."""

import logging
from decimal import Decimal
from typing import Any

from kubernetes.utils import parse_quantity

from .cache import ObjectCache
from .constants import ANN_CLONE_REQUEST, ANN_CLONE_TOKEN, VOLUME_MODE_FILESYSTEM
from .errors import CloneValidationError, InvalidCloneRequestError
from .models import ClaimRef
from .token import TokenValidator

logger = logging.getLogger(__name__)


def parse_clone_request(value: str) -> ClaimRef:
    """
    Parse a "namespace/name" clone request annotation value.

    Raises:
        InvalidCloneRequestError: If the value is not of the expected form
    """
    parts = (value or "").split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidCloneRequestError(f"Bad CloneRequest Annotation: {value!r}")
    return ClaimRef(namespace=parts[0], name=parts[1])


def claim_ref(claim: Any) -> ClaimRef:
    return ClaimRef(namespace=claim.metadata.namespace, name=claim.metadata.name)


def get_source_ref(target_claim: Any) -> ClaimRef:
    """
    Get the source claim named by a target claim's clone request.

    Raises:
        InvalidCloneRequestError: If the annotation is missing or malformed
    """
    annotations = target_claim.metadata.annotations or {}
    if ANN_CLONE_REQUEST not in annotations:
        raise InvalidCloneRequestError(
            f"claim {target_claim.metadata.namespace}/{target_claim.metadata.name} "
            f"has no {ANN_CLONE_REQUEST} annotation"
        )
    return parse_clone_request(annotations[ANN_CLONE_REQUEST])


def get_source_claim(target_claim: Any, claim_cache: ObjectCache) -> Any:
    """
    Resolve the source claim of a clone request from the cache.

    Raises:
        InvalidCloneRequestError: If the clone request is malformed
        CloneValidationError: If the source claim does not exist
    """
    source = get_source_ref(target_claim)
    source_claim = claim_cache.get_by_key(source.key)
    if source_claim is None:
        raise CloneValidationError(f"source claim {source.key} not found")
    return source_claim


def _storage_request(spec: Any) -> Decimal:
    resources = spec.resources
    requests = (resources.requests if resources else None) or {}
    return parse_quantity(requests.get("storage", 0))


def _volume_mode(spec: Any) -> str:
    return spec.volume_mode or VOLUME_MODE_FILESYSTEM


def validate_can_clone(source_spec: Any, target_spec: Any) -> None:
    """
    Check that a source claim spec can be cloned into a target claim spec.

    The target must request at least as much storage as the source and both
    claims must use the same volume mode.

    Raises:
        CloneValidationError: If the claims are incompatible
    """
    source_request = _storage_request(source_spec)
    target_request = _storage_request(target_spec)
    if source_request > target_request:
        raise CloneValidationError(
            "target resources requests storage size is smaller than the source"
        )

    source_mode = _volume_mode(source_spec)
    target_mode = _volume_mode(target_spec)
    if source_mode != target_mode:
        raise CloneValidationError(
            f"source volumeMode ({source_mode}) and target volumeMode ({target_mode}) do not match"
        )


def validate_clone_token(validator: TokenValidator, source_claim: Any, target_claim: Any) -> None:
    """
    Check the clone token carried by the target claim.

    Raises:
        TokenValidationError: If the token is missing, invalid or for another pair
    """
    annotations = target_claim.metadata.annotations or {}
    validator.validate_clone(
        annotations.get(ANN_CLONE_TOKEN, ""),
        source=claim_ref(source_claim),
        target=claim_ref(target_claim),
    )
