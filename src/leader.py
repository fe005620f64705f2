"""
Leader Election - A ``coordination.k8s.io/v1`` Lease shared by all replicas.

Only the replica holding the lease reconciles. The holder renews the lease
every retry period; other replicas take it over once it has not been renewed
for a full lease duration. Writes use the lease's resourceVersion, so two
replicas racing for an expired lease cannot both win.
"""

import asyncio
import logging
import socket
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from metrics import LEADER

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"


def default_lease_namespace() -> str:
    """Namespace of the running pod, or ``default`` outside a cluster."""
    try:
        with open(SERVICE_ACCOUNT_NAMESPACE) as f:
            namespace = f.read().strip()
    except OSError:
        return "default"
    return namespace or "default"


def default_identity() -> str:
    """Unique holder identity for this process."""
    return f"{socket.gethostname()}_{uuid.uuid4()}"


class LeaderElector:
    """Acquires, renews and releases one named Lease."""

    def __init__(
        self,
        lease_name: str,
        namespace: str = "",
        identity: str = "",
        api: Optional[client.CoordinationV1Api] = None,
        lease_duration: float = 15,
        renew_deadline: float = 10,
        retry_period: float = 2,
    ):
        self.lease_name = lease_name
        self.namespace = namespace or default_lease_namespace()
        self.identity = identity or default_identity()
        self.api = api or client.CoordinationV1Api()
        self.lease_duration = lease_duration
        self.renew_deadline = renew_deadline
        self.retry_period = retry_period
        self.is_leader = False

    async def try_acquire_or_renew(self) -> bool:
        """
        Make one attempt to take or extend the lease.

        Returns:
            True if this replica holds the lease afterwards
        """
        now = datetime.now(timezone.utc)
        try:
            lease = await asyncio.to_thread(
                self.api.read_namespaced_lease, self.lease_name, self.namespace
            )
        except ApiException as e:
            if e.status != 404:
                return self._attempt_failed(f"{e.status} {e.reason}")
            return await self._create(now)
        except HTTPError as e:
            return self._attempt_failed(str(e))

        spec = lease.spec or client.V1LeaseSpec()
        if spec.holder_identity and spec.holder_identity != self.identity:
            if not self._expired(spec, now):
                self._set_leader(False)
                return False
            logger.info(
                f"Lease {self.namespace}/{self.lease_name} held by "
                f"{spec.holder_identity} expired, taking over"
            )

        if spec.holder_identity != self.identity:
            spec.acquire_time = now
            spec.lease_transitions = (spec.lease_transitions or 0) + 1
        spec.holder_identity = self.identity
        spec.lease_duration_seconds = int(self.lease_duration)
        spec.renew_time = now
        lease.spec = spec

        try:
            await asyncio.to_thread(
                self.api.replace_namespaced_lease,
                self.lease_name,
                self.namespace,
                lease,
            )
        except ApiException as e:
            # 409 means another replica wrote the lease first
            return self._attempt_failed(f"{e.status} {e.reason}")
        except HTTPError as e:
            return self._attempt_failed(str(e))

        self._set_leader(True)
        return True

    async def renew(self) -> bool:
        """
        Keep the lease, retrying until the renew deadline passes.

        Returns:
            False once the lease could not be renewed in time
        """
        deadline = time.monotonic() + self.renew_deadline
        while True:
            if await self.try_acquire_or_renew():
                return True
            if time.monotonic() + self.retry_period > deadline:
                break
            await asyncio.sleep(self.retry_period)

        self._set_leader(False)
        return False

    async def release(self) -> None:
        """Give up the lease so another replica can take over at once."""
        if not self.is_leader:
            return
        self._set_leader(False)
        try:
            lease = await asyncio.to_thread(
                self.api.read_namespaced_lease, self.lease_name, self.namespace
            )
            if lease.spec is None or lease.spec.holder_identity != self.identity:
                return
            lease.spec.holder_identity = None
            lease.spec.lease_duration_seconds = 1
            lease.spec.renew_time = datetime.now(timezone.utc)
            await asyncio.to_thread(
                self.api.replace_namespaced_lease,
                self.lease_name,
                self.namespace,
                lease,
            )
        except (ApiException, HTTPError) as e:
            logger.warning(f"Failed to release lease {self.lease_name}: {e}")
            return
        logger.info(f"Released lease {self.namespace}/{self.lease_name}")

    async def _create(self, now: datetime) -> bool:
        lease = client.V1Lease(
            metadata=client.V1ObjectMeta(
                name=self.lease_name, namespace=self.namespace
            ),
            spec=client.V1LeaseSpec(
                holder_identity=self.identity,
                lease_duration_seconds=int(self.lease_duration),
                acquire_time=now,
                renew_time=now,
                lease_transitions=0,
            ),
        )
        try:
            await asyncio.to_thread(
                self.api.create_namespaced_lease, self.namespace, lease
            )
        except ApiException as e:
            return self._attempt_failed(f"{e.status} {e.reason}")
        except HTTPError as e:
            return self._attempt_failed(str(e))

        self._set_leader(True)
        return True

    def _expired(self, spec: client.V1LeaseSpec, now: datetime) -> bool:
        renewed = spec.renew_time or spec.acquire_time
        if renewed is None:
            return True
        if renewed.tzinfo is None:
            renewed = renewed.replace(tzinfo=timezone.utc)
        duration = spec.lease_duration_seconds or self.lease_duration
        return renewed + timedelta(seconds=duration) < now

    def _attempt_failed(self, reason: str) -> bool:
        logger.warning(
            f"Lease {self.namespace}/{self.lease_name} update failed: {reason}"
        )
        return False

    def _set_leader(self, leader: bool) -> None:
        if leader and not self.is_leader:
            logger.info(
                f"Acquired lease {self.namespace}/{self.lease_name} as {self.identity}"
            )
        self.is_leader = leader
        LEADER.set(1 if leader else 0)
