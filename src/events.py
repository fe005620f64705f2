"""
Event Recording - Kubernetes Events on the resources being reconciled.

Events surface reconcile outcomes to ``kubectl describe``. Recording is best
effort: a failure to write an event is logged and never fails a reconcile.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from resources import ResourceKind

logger = logging.getLogger(__name__)

COMPONENT_NAME = "runner-webhook-controller"


class EventType(Enum):
    """Kubernetes event types."""

    NORMAL = "Normal"
    WARNING = "Warning"


def object_reference(
    kind: ResourceKind, namespace: str, name: str, uid: str = ""
) -> client.V1ObjectReference:
    """Build a reference to the object an event is about."""
    return client.V1ObjectReference(
        api_version=kind.api_version,
        kind=kind.kind,
        namespace=namespace,
        name=name,
        uid=uid or None,
    )


class EventRecorder:
    """Writes ``v1.Event`` objects through the core API."""

    def __init__(
        self,
        api: Optional[client.CoreV1Api] = None,
        component: str = COMPONENT_NAME,
    ):
        self.api = api or client.CoreV1Api()
        self.component = component

    def build_event(
        self,
        ref: client.V1ObjectReference,
        event_type: EventType,
        reason: str,
        message: str,
    ) -> client.CoreV1Event:
        """Build an event for the referenced object."""
        now = datetime.now(timezone.utc)
        return client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                name=f"{ref.name}.{uuid.uuid4().hex[:16]}",
                namespace=ref.namespace,
            ),
            involved_object=ref,
            type=event_type.value,
            reason=reason,
            message=message,
            source=client.V1EventSource(component=self.component),
            reporting_component=self.component,
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )

    async def record(
        self,
        ref: client.V1ObjectReference,
        event_type: EventType,
        reason: str,
        message: str,
    ) -> None:
        """
        Record an event on the referenced object.

        Args:
            ref: The object the event is about
            event_type: Normal or Warning
            reason: Short CamelCase reason (e.g. ``WebhookCreated``)
            message: Human-readable description
        """
        event = self.build_event(ref, event_type, reason, message)
        try:
            await asyncio.to_thread(
                self.api.create_namespaced_event, ref.namespace, event
            )
        except (ApiException, HTTPError) as e:
            logger.warning(
                f"Dropped event {reason} for {ref.kind} "
                f"{ref.namespace}/{ref.name}: {e}"
            )
