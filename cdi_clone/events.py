"""Kubernetes event recording."""

import logging
from datetime import datetime, timezone
from typing import Any

from kubernetes.client import CoreV1Api, CoreV1Event, V1EventSource, V1ObjectMeta, V1ObjectReference
from kubernetes.client.exceptions import ApiException

from .constants import CONTROLLER_AGENT_NAME

logger = logging.getLogger(__name__)


class EventRecorder:
    """
    Records events against API objects.

    Recording is best effort: a failure is logged and never raised to the
    caller.
    """

    def __init__(self, core_v1: CoreV1Api, component: str = CONTROLLER_AGENT_NAME):
        """
        Initialize event recorder.

        Args:
            core_v1: CoreV1Api client
            component: Reporting component name
        """
        self.core_v1 = core_v1
        self.component = component

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> bool:
        """
        Record an event.

        Args:
            obj: Object the event is about
            event_type: "Normal" or "Warning"
            reason: Short machine readable reason
            message: Human readable message

        Returns:
            True if recorded successfully, False otherwise
        """
        metadata = obj.metadata
        now = datetime.now(timezone.utc)
        body = CoreV1Event(
            metadata=V1ObjectMeta(generate_name=f"{metadata.name}.", namespace=metadata.namespace),
            involved_object=V1ObjectReference(
                api_version=getattr(obj, "api_version", None) or "v1",
                kind=getattr(obj, "kind", None) or "PersistentVolumeClaim",
                name=metadata.name,
                namespace=metadata.namespace,
                uid=metadata.uid,
                resource_version=metadata.resource_version,
            ),
            reason=reason,
            message=message,
            type=event_type,
            source=V1EventSource(component=self.component),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )

        try:
            self.core_v1.create_namespaced_event(namespace=metadata.namespace, body=body)
            logger.debug(f"Recorded {event_type} event {reason} for {metadata.namespace}/{metadata.name}")
            return True
        except ApiException as e:
            logger.error(f"Failed to record event {reason} for {metadata.namespace}/{metadata.name}: {e}")
            return False
