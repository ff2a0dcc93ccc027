"""Clone controller: reconciles PVCs carrying a clone request."""

import logging
from threading import Event
from typing import Any, Optional, Union

from kubernetes.client.exceptions import ApiException

from .cache import Informer, ObjectCache
from .claims import claim_phase, get_annotations, has_annotation, has_label, update_claim
from .cluster import ClusterConnection
from .constants import (
    ANN_CLONE_OF,
    ANN_CLONE_REQUEST,
    ANN_POD_PHASE,
    CDI_LABEL_KEY,
    CDI_LABEL_VALUE,
    CLAIM_BOUND,
    CLAIM_PENDING,
    CONTROLLER_AGENT_NAME,
    ERR_INCOMPATIBLE_PVC,
    EVENT_TYPE_WARNING,
    POD_SUCCEEDED,
    WAIT_FOR_FIRST_CONSUMER,
)
from .controller import ClaimEventRouter, ReconciliationRunner
from .errors import CloneError, ConsistencyError
from .events import EventRecorder
from .expectations import ControllerExpectations
from .models import ClonePods, CloneObservation, CloneState, PodRole
from .pods import ClonePodManager, find_role_pod, is_controlled_by
from .queue import WorkQueue
from .token import TokenValidator
from .validation import get_source_claim, get_source_ref, validate_can_clone, validate_clone_token

logger = logging.getLogger(__name__)


class CloneController:
    """
    Reconciles target claims annotated with a clone request.

    For every such claim the controller creates one source pod (in the source
    claim's namespace) and one target pod (in the target claim's namespace),
    mirrors the target pod's phase onto the claim and, once the target pod has
    succeeded, marks the claim with ``k8s.io/CloneOf`` and removes both pods.

    Progress is derived from the claim, the pod cache and the expectation
    tracker on every pass; claim annotations are the only persisted state.
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        claim_cache: ObjectCache,
        pod_cache: ObjectCache,
        storage_class_cache: ObjectCache,
        image: str,
        pull_policy: str,
        verbose: str,
        public_key: Union[str, bytes, None] = None,
        token_validator: Optional[TokenValidator] = None,
        expectations: Optional[ControllerExpectations] = None,
        recorder: Optional[EventRecorder] = None,
        queue: Optional[WorkQueue] = None,
    ):
        """
        Initialize clone controller.

        Args:
            cluster: Cluster connection
            claim_cache: PVC cache
            pod_cache: Pod cache
            storage_class_cache: StorageClass cache
            image: Cloner image
            pull_policy: Cloner image pull policy
            verbose: Cloner log verbosity
            public_key: PEM encoded apiserver key used to verify clone tokens
            token_validator: Prebuilt validator, takes precedence over public_key
            expectations: Expectation tracker (a new one is created if omitted)
            recorder: Event recorder (a new one is created if omitted)
            queue: Work queue (a new one is created if omitted)

        Raises:
            ValueError: If neither a token validator nor a public key is given
        """
        if token_validator is None:
            if public_key is None:
                raise ValueError("a public key or a token validator is required")
            token_validator = TokenValidator(public_key)

        self.cluster = cluster
        self.core_v1 = cluster.core_v1
        self.claim_cache = claim_cache
        self.pod_cache = pod_cache
        self.storage_class_cache = storage_class_cache
        self.token_validator = token_validator
        self.expectations = expectations if expectations is not None else ControllerExpectations()
        self.recorder = recorder if recorder is not None else EventRecorder(cluster.core_v1)
        self.queue = queue if queue is not None else WorkQueue(name=CONTROLLER_AGENT_NAME)
        self.pods = ClonePodManager(cluster, pod_cache, image, pull_policy, verbose)
        self.router = ClaimEventRouter(self.queue, self.expectations)
        self.runner = ReconciliationRunner(self, self.queue, name=CONTROLLER_AGENT_NAME)

    def register(self, claim_informer: Informer, pod_informer: Informer) -> None:
        """Subscribe to claim and pod cache changes."""
        claim_informer.add_event_handler(self.router.claim_handler())
        pod_informer.add_event_handler(self.router.pod_handler())

    def run(self, threadiness: int, stop_event: Event) -> None:
        """
        Run reconciliation workers until ``stop_event`` is set.

        Args:
            threadiness: Number of worker threads
            stop_event: Shutdown signal
        """
        logger.info(f"Starting clone controller with {threadiness} workers")
        self.runner.run(threadiness, stop_event)
        logger.info("Clone controller stopped")

    def resolve_by_key(self, key: str) -> Optional[Any]:
        return self.claim_cache.get_by_key(key)

    def reconcile(self, key: str, claim: Optional[Any]) -> None:
        """
        Reconcile one target claim.

        Args:
            key: Reconciliation key (namespace/name)
            claim: Claim from the cache, None if it was deleted

        Raises:
            CloneError: On consistency, validation or annotation errors
            ApiException: On API failures
        """
        if claim is None:
            logger.debug(f"Claim {key} is gone, dropping expectations")
            self.expectations.delete_expectations(key)
            return

        observation = self.observe(key, claim)
        logger.debug(f"Claim {key} is in state {observation.state.value}")

        if observation.state == CloneState.AWAITING_PODS:
            self._create_clone_pods(key, claim, observation)
        elif observation.state == CloneState.AWAITING_COMPLETION:
            self._sync_progress(claim, observation.pods)

    def observe(self, key: str, claim: Any) -> CloneObservation:
        """
        Derive the clone state of a claim from the cache.

        Raises:
            InvalidCloneRequestError: If the clone request is malformed
            ConsistencyError: If the role pods break the one-owned-pod rule
            CloneError: If the claim's storage class is not cached
        """
        if not has_annotation(claim, ANN_CLONE_REQUEST):
            return CloneObservation(CloneState.UNREQUESTED, ClonePods())

        if not self._ready_for_clone(claim):
            logger.debug(
                f"Claim {key} is neither bound nor pending with {WAIT_FOR_FIRST_CONSUMER}, ignoring"
            )
            return CloneObservation(CloneState.DEFERRED, ClonePods())

        if has_annotation(claim, ANN_CLONE_OF):
            logger.debug(f"Claim {key} has {ANN_CLONE_OF}, cloning completed")
            return CloneObservation(CloneState.COMPLETED, ClonePods())

        # Read before the pod cache: a pod observed after this point must
        # already be visible to the lookups below.
        satisfied = self.expectations.satisfied_expectations(key)

        source = get_source_ref(claim)
        pods = ClonePods(
            source=find_role_pod(self.pod_cache, claim, PodRole.SOURCE, source.namespace),
            target=find_role_pod(self.pod_cache, claim, PodRole.TARGET, claim.metadata.namespace),
        )
        for pod in (pods.source, pods.target):
            if pod is not None and not is_controlled_by(pod, claim):
                raise ConsistencyError(
                    f"found pod {pod.metadata.namespace}/{pod.metadata.name} "
                    f"not owned by pvc {key}"
                )

        if pods.complete:
            state = CloneState.AWAITING_COMPLETION
        elif get_annotations(claim).get(ANN_POD_PHASE) == POD_SUCCEEDED:
            # Never reprocess a finished clone, even if its pods are gone
            state = CloneState.COMPLETED
        elif not satisfied:
            state = CloneState.AWAITING_EXPECTATIONS
        else:
            state = CloneState.AWAITING_PODS
        return CloneObservation(state, pods, source)

    def _ready_for_clone(self, claim: Any) -> bool:
        """Only clone into claims that are bound, or pending on a WaitForFirstConsumer class."""
        class_name = claim.spec.storage_class_name if claim.spec else None
        if not class_name:
            return True

        storage_class = self.storage_class_cache.get_by_key(class_name)
        if storage_class is None:
            raise CloneError(f"storage class {class_name} not found")

        phase = claim_phase(claim)
        if phase == CLAIM_BOUND:
            return True
        return phase == CLAIM_PENDING and storage_class.volume_binding_mode == WAIT_FOR_FIRST_CONSUMER

    def validate_source_and_target(self, target_claim: Any) -> None:
        """
        Check that the target claim may be cloned from its source.

        Raises:
            InvalidCloneRequestError: If the clone request is malformed
            CloneValidationError: If the source is missing, the token is
                rejected or the claims are incompatible
        """
        source_claim = get_source_claim(target_claim, self.claim_cache)
        validate_clone_token(self.token_validator, source_claim, target_claim)
        validate_can_clone(source_claim.spec, target_claim.spec)

    def _create_clone_pods(self, key: str, claim: Any, observation: CloneObservation) -> None:
        self.expectations.set_expectations(key, 0, 0)

        try:
            self.validate_source_and_target(claim)
        except CloneError as e:
            self.recorder.event(claim, EVENT_TYPE_WARNING, ERR_INCOMPATIBLE_PVC, str(e))
            raise

        source_pod = observation.pods.source
        if source_pod is None:
            self.expectations.raise_expectations(key, 1, 0)
            try:
                source_pod = self.pods.create_source_pod(observation.source, claim)
            except Exception:
                self.expectations.creation_observed(key)
                raise

        if observation.pods.target is None:
            self.expectations.raise_expectations(key, 1, 0)
            try:
                self.pods.create_target_pod(claim, source_pod.metadata.namespace)
            except Exception:
                self.expectations.creation_observed(key)
                raise

    def _sync_progress(self, claim: Any, pods: ClonePods) -> None:
        """Mirror the target pod phase onto the claim; finish the clone once it succeeded."""
        key = f"{claim.metadata.namespace}/{claim.metadata.name}"
        phase = pods.target.status.phase if pods.target.status else None

        annotations = {}
        if phase:
            annotations[ANN_POD_PHASE] = phase
        if phase == POD_SUCCEEDED:
            annotations[ANN_CLONE_OF] = "true"

        labels = None
        if not has_label(claim, CDI_LABEL_KEY, CDI_LABEL_VALUE):
            labels = {CDI_LABEL_KEY: CDI_LABEL_VALUE}

        current = get_annotations(claim)
        if labels is None and all(current.get(k) == v for k, v in annotations.items()):
            return

        try:
            updated = update_claim(self.core_v1, claim, annotations, labels)
        except ApiException as e:
            raise CloneError(f"could not update pvc {key} annotation and/or label: {e}") from e

        if get_annotations(updated).get(ANN_CLONE_OF) == "true":
            logger.info(f"Clone into claim {key} completed")
            self._delete_clone_pods(key, pods)

    def _delete_clone_pods(self, key: str, pods: ClonePods) -> None:
        """Delete both role pods; failures are logged and never fail the pass."""
        for pod in (pods.source, pods.target):
            self.expectations.raise_expectations(key, 0, 1)
            try:
                deleted = self.pods.delete(pod.metadata.name, pod.metadata.namespace)
            except Exception as e:
                self.expectations.deletion_observed(key)
                logger.error(
                    f"Failed to delete clone pod {pod.metadata.namespace}/{pod.metadata.name}: {e}"
                )
                continue
            if not deleted:
                self.expectations.deletion_observed(key)
