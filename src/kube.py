"""
Cluster Store - Read access to custom resources through the Kubernetes API.

Objects are returned as the raw JSON response body so that decoding stays in
one place (``resources.py``) and does not depend on the client's object model.
"""

import asyncio
import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from errors import NotFoundError, TransportError
from resources import ResourceKind

logger = logging.getLogger(__name__)


def load_kubernetes_config(kubeconfig: Optional[str] = None) -> None:
    """
    Load cluster credentials.

    Uses the in-cluster service account when running in a pod, otherwise
    falls back to a kubeconfig file (``KUBECONFIG`` or ``~/.kube/config``).
    """
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        logger.info(f"Loaded kubeconfig from {kubeconfig}")
        return

    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        logger.info("Loaded Kubernetes configuration from kubeconfig")


class ClusterStore:
    """Get-by-key access to namespaced custom objects."""

    def __init__(self, api: Optional[client.CustomObjectsApi] = None):
        self.api = api or client.CustomObjectsApi()

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> bytes:
        """
        Fetch a namespaced custom object.

        Args:
            kind: The resource kind to fetch
            namespace: Object namespace
            name: Object name

        Returns:
            The serialized object as returned by the API server

        Raises:
            NotFoundError: If the object does not exist
            TransportError: If the API server call fails
        """
        try:
            response = await asyncio.to_thread(
                self.api.get_namespaced_custom_object,
                kind.group,
                kind.version,
                namespace,
                kind.plural,
                name,
                _preload_content=False,
            )
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(
                    f"{kind.kind} {namespace}/{name} not found"
                ) from e
            raise TransportError(
                f"Failed to get {kind.kind} {namespace}/{name}: "
                f"{e.status} {e.reason}",
                status=e.status,
            ) from e
        except HTTPError as e:
            raise TransportError(
                f"Failed to get {kind.kind} {namespace}/{name}: {e}"
            ) from e

        return response.data
