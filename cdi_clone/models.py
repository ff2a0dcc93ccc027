"""Data models for the clone controller."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class CloneState(str, Enum):
    """Clone progress of a target claim, derived from cache facts on every pass."""

    UNREQUESTED = "unrequested"
    DEFERRED = "deferred"
    AWAITING_PODS = "awaiting_pods"
    AWAITING_EXPECTATIONS = "awaiting_expectations"
    AWAITING_COMPLETION = "awaiting_completion"
    COMPLETED = "completed"


class PodRole(str, Enum):
    """Role of a clone pod."""

    SOURCE = "source"
    TARGET = "target"


class TokenRejection(str, Enum):
    """Reason a clone token was rejected."""

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    INVALID_CLAIMS = "invalid_claims"
    SUBJECT_MISMATCH = "subject_mismatch"


class ClaimRef(BaseModel):
    """Namespace and name of a claim."""

    namespace: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


class GroupVersionResource(BaseModel):
    """API resource a token grants access to."""

    group: str = ""
    version: str = ""
    resource: str = ""


class CloneTokenPayload(BaseModel):
    """Claims carried by a clone authorization token."""

    operation: str
    name: str
    namespace: str
    resource: GroupVersionResource = Field(default_factory=GroupVersionResource)
    params: dict[str, str] = Field(default_factory=dict)

    # Standard JWT claims
    iss: Optional[str] = None
    exp: Optional[int] = None
    iat: Optional[int] = None
    nbf: Optional[int] = None


@dataclass
class ClonePods:
    """Role pods found in the cache for one claim."""

    source: Optional[Any] = None
    target: Optional[Any] = None

    @property
    def complete(self) -> bool:
        return self.source is not None and self.target is not None


@dataclass
class ExpectationRecord:
    """Outstanding pod additions and deletions for one reconciliation key."""

    key: str
    adds: int
    deletes: int
    timestamp: float

    def fulfilled(self) -> bool:
        return self.adds <= 0 and self.deletes <= 0


@dataclass
class CloneObservation:
    """Everything one reconciliation pass learned about a target claim."""

    state: CloneState
    pods: ClonePods
    source: Optional[ClaimRef] = None
