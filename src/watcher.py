"""
Resource Watcher - Streams autoscaler changes into the controller.

The Kubernetes watch client is blocking, so the stream runs in a worker thread
and hands keys back to the event loop. Only changes to an object's spec
(``metadata.generation``) trigger a reconcile; status-only updates are
ignored. Periodic resync is the controller's job, not the watcher's.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional

from kubernetes import client, watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from reconciler import ReconcileRequest
from resources import ResourceKind

logger = logging.getLogger(__name__)

RequestCallback = Callable[[ReconcileRequest], None]

# A blocked watch read delays shutdown by at most this plus the client slack,
# which must stay inside the pod termination grace period (30s by default).
WATCH_TIMEOUT_SECONDS = 15
READ_TIMEOUT_SLACK_SECONDS = 5


class ResourceWatcher:
    """Watches one custom resource kind and enqueues changed objects."""

    def __init__(
        self,
        kind: ResourceKind,
        on_request: RequestCallback,
        namespace: str = "",
        api: Optional[client.CustomObjectsApi] = None,
        timeout_seconds: int = WATCH_TIMEOUT_SECONDS,
        retry_delay: float = 5.0,
    ):
        self.kind = kind
        self.on_request = on_request
        self.namespace = namespace
        self.api = api or client.CustomObjectsApi()
        self.timeout_seconds = timeout_seconds
        self.retry_delay = retry_delay

        self._generations: Dict[ReconcileRequest, int] = {}
        self._resource_version: Optional[str] = None
        self._stop_event = threading.Event()
        self._watch: Optional[watch.Watch] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def start(self) -> None:
        """Run the watch until :meth:`stop` is called."""
        self._loop = asyncio.get_running_loop()
        self._stop_event.clear()
        scope = f"namespace {self.namespace}" if self.namespace else "all namespaces"
        logger.info(f"Watching {self.kind.kind} in {scope}")
        await asyncio.to_thread(self._run)

    def stop(self) -> None:
        """Stop the watch stream."""
        logger.info(f"Stopping {self.kind.kind} watcher")
        self._stop_event.set()
        if self._watch is not None:
            self._watch.stop()

    def should_enqueue(self, event_type: str, obj: Dict[str, Any]) -> bool:
        """
        Decide whether a watch event warrants a reconcile.

        Additions and deletions always do. Modifications only do when the
        object's generation differs from the last one seen.
        """
        request = self._request_for(obj)
        generation = (obj.get("metadata") or {}).get("generation", 0)

        if event_type == "ADDED":
            self._generations[request] = generation
            return True
        if event_type == "MODIFIED":
            previous = self._generations.get(request)
            self._generations[request] = generation
            return previous != generation
        if event_type == "DELETED":
            self._generations.pop(request, None)
            return True
        return False

    def handle_event(self, event: Dict[str, Any]) -> None:
        """Process one watch event from the stream."""
        event_type = event.get("type", "")
        obj = event.get("object") or {}
        metadata = obj.get("metadata") or {}

        if metadata.get("resourceVersion"):
            self._resource_version = metadata["resourceVersion"]

        if not self.should_enqueue(event_type, obj):
            return

        request = self._request_for(obj)
        logger.debug(f"{event_type} {self.kind.kind} {request}, enqueueing")
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.on_request, request)
        else:
            self.on_request(request)

    def _request_for(self, obj: Dict[str, Any]) -> ReconcileRequest:
        metadata = obj.get("metadata") or {}
        return ReconcileRequest(
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
        )

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._watch_once()
            except ApiException as e:
                if e.status == 410:
                    logger.info(
                        f"{self.kind.kind} watch expired, restarting from a fresh list"
                    )
                    self._resource_version = None
                    continue
                logger.error(f"{self.kind.kind} watch failed: {e.status} {e.reason}")
                self._stop_event.wait(self.retry_delay)
            except HTTPError as e:
                logger.error(f"{self.kind.kind} watch connection error: {e}")
                self._stop_event.wait(self.retry_delay)

    def _watch_once(self) -> None:
        self._watch = watch.Watch()
        kwargs: Dict[str, Any] = {
            "timeout_seconds": self.timeout_seconds,
            "_request_timeout": self.timeout_seconds + READ_TIMEOUT_SLACK_SECONDS,
        }
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        if self.namespace:
            stream = self._watch.stream(
                self.api.list_namespaced_custom_object,
                self.kind.group,
                self.kind.version,
                self.namespace,
                self.kind.plural,
                **kwargs,
            )
        else:
            stream = self._watch.stream(
                self.api.list_cluster_custom_object,
                self.kind.group,
                self.kind.version,
                self.kind.plural,
                **kwargs,
            )

        for event in stream:
            if self._stop_event.is_set():
                self._watch.stop()
                break
            self.handle_event(event)
