"""CDI Clone Controller - clones PVC data with paired source/target pods."""

from .cache import EventHandler, Informer, ObjectCache, meta_namespace_key
from .clone_controller import CloneController
from .cluster import ClusterConnection
from .controller import ClaimEventRouter, ReconciliationRunner, Reconciler
from .errors import (
    CloneError,
    CloneValidationError,
    ConsistencyError,
    InvalidCloneRequestError,
    TokenValidationError,
)
from .expectations import ControllerExpectations
from .models import (
    ClaimRef,
    CloneObservation,
    ClonePods,
    CloneState,
    CloneTokenPayload,
    ExpectationRecord,
    PodRole,
    TokenRejection,
)
from .pods import ClonePodManager, clone_pod_selector
from .queue import ExponentialBackoff, WorkQueue
from .token import TokenValidator, load_public_key

__version__ = "0.1.0"

__all__ = [
    # Controller
    "CloneController",
    "ReconciliationRunner",
    "Reconciler",
    "ClaimEventRouter",
    # Cache and dispatch
    "ObjectCache",
    "Informer",
    "EventHandler",
    "meta_namespace_key",
    "WorkQueue",
    "ExponentialBackoff",
    "ControllerExpectations",
    # Cluster access
    "ClusterConnection",
    "ClonePodManager",
    "clone_pod_selector",
    # Tokens
    "TokenValidator",
    "load_public_key",
    # Errors
    "CloneError",
    "CloneValidationError",
    "ConsistencyError",
    "InvalidCloneRequestError",
    "TokenValidationError",
    # Models
    "ClaimRef",
    "CloneObservation",
    "ClonePods",
    "CloneState",
    "CloneTokenPayload",
    "ExpectationRecord",
    "PodRole",
    "TokenRejection",
]
