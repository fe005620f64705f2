"""
Runner Webhook Reconciler - Keeps repository webhooks in line with autoscalers.

For each HorizontalRunnerAutoscaler with scale-up triggers, the repository of
its target RunnerDeployment must carry the configured webhook. Existing hooks
are never updated or deleted; a missing match is fixed by adding a new hook.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from errors import DecodeError, NotFoundError, OperatorError, WebhookSyncError
from events import EventRecorder, EventType, object_reference
from kube import ClusterStore
from metrics import WEBHOOKS_CREATED
from repository import RepositoryClient
from resources import (
    HORIZONTAL_RUNNER_AUTOSCALER,
    RUNNER_DEPLOYMENT,
    HorizontalRunnerAutoscaler,
    RunnerDeployment,
    decode_autoscaler,
    decode_runner_deployment,
)
from webhooks import DesiredWebhook, has_matching_webhook

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileRequest:
    """Identity of the autoscaler to reconcile."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ReconcileResult:
    """Result from a reconcile() call."""

    message: str = ""
    requeue_after: Optional[float] = None


class RunnerWebhookReconciler:
    """Reconciles GitHub webhooks for HorizontalRunnerAutoscalers."""

    def __init__(
        self,
        store: ClusterStore,
        repository: RepositoryClient,
        webhook: DesiredWebhook,
        sync_period: float,
        recorder: Optional[EventRecorder] = None,
    ):
        self.store = store
        self.repository = repository
        self.webhook = webhook
        self.sync_period = sync_period
        self.recorder = recorder

    async def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        """
        Reconcile the webhook for one autoscaler.

        A deleted autoscaler, an autoscaler without triggers and a missing
        RunnerDeployment all end the pass successfully without requeue.

        Raises:
            OperatorError: On decode, cluster or repository host failures
        """
        try:
            data = await self.store.get(
                HORIZONTAL_RUNNER_AUTOSCALER, request.namespace, request.name
            )
        except NotFoundError:
            logger.debug(f"Autoscaler {request} not found, skipping")
            return ReconcileResult(message="Autoscaler not found")
        except OperatorError as e:
            await self._record_warning(
                request.namespace,
                request.name,
                "",
                "GetFailed",
                f"Failed to get {HORIZONTAL_RUNNER_AUTOSCALER.kind}: {e}",
            )
            raise

        try:
            hra = decode_autoscaler(data)
        except DecodeError as e:
            logger.error(f"Failed to decode autoscaler {request}: {e}")
            await self._record_warning(
                request.namespace, request.name, "", "DecodeFailed", str(e)
            )
            raise

        logger.info(
            f"Reconciling {HORIZONTAL_RUNNER_AUTOSCALER.kind} "
            f"namespace={hra.metadata.namespace} name={hra.metadata.name} "
            f"generation={hra.metadata.generation}"
        )

        if not hra.has_triggers():
            logger.info(f"No webhook configured for {request}")
            return ReconcileResult(message="No scale-up triggers")

        try:
            runner = await self.get_runner_deployment(hra)
        except NotFoundError:
            logger.info(
                f"RunnerDeployment {hra.metadata.namespace}/"
                f"{hra.spec.scale_target_ref.name} not found for {request}"
            )
            return ReconcileResult(message="RunnerDeployment not found")
        except OperatorError as e:
            await self._record_autoscaler_warning(
                hra, "RunnerDeploymentFailed", str(e)
            )
            raise

        logger.info(f"Repository for {request}: {runner.repository}")

        try:
            created = await self.reconcile_webhook(
                runner.owner, runner.repository_name
            )
        except WebhookSyncError as e:
            logger.error(f"Failed to reconcile webhook for {request}: {e}")
            await self._record_autoscaler_warning(hra, "WebhookSyncFailed", str(e))
            raise

        if created and self.recorder:
            ref = object_reference(
                HORIZONTAL_RUNNER_AUTOSCALER,
                hra.metadata.namespace,
                hra.metadata.name,
                hra.metadata.uid,
            )
            await self.recorder.record(
                ref,
                EventType.NORMAL,
                "WebhookCreated",
                f"Created webhook for {runner.repository}",
            )

        return ReconcileResult(
            message="Webhook in sync", requeue_after=self.sync_period
        )

    async def get_runner_deployment(
        self, hra: HorizontalRunnerAutoscaler
    ) -> RunnerDeployment:
        """
        Fetch the RunnerDeployment targeted by an autoscaler.

        Raises:
            NotFoundError: If the RunnerDeployment does not exist
            DecodeError: If the RunnerDeployment cannot be decoded
            TransportError: If the cluster store call fails
        """
        data = await self.store.get(
            RUNNER_DEPLOYMENT,
            hra.metadata.namespace,
            hra.spec.scale_target_ref.name,
        )
        return decode_runner_deployment(data)

    async def reconcile_webhook(self, owner: str, repository: str) -> bool:
        """
        Make sure the repository carries the desired webhook.

        Returns:
            True if a hook was created, False if a matching one already existed

        Raises:
            WebhookSyncError: If listing or creating hooks fails
        """
        try:
            hooks = await self.repository.list_hooks(owner, repository)
        except OperatorError as e:
            raise WebhookSyncError(
                f"error listing webhooks for repository: {e}"
            ) from e

        if has_matching_webhook(hooks, self.webhook):
            return False

        try:
            hook = await self.repository.create_hook(owner, repository, self.webhook)
        except OperatorError as e:
            raise WebhookSyncError(f"error creating webhook: {e}") from e

        WEBHOOKS_CREATED.inc()
        logger.info(f"Created webhook on {owner}/{repository}: {hook.api_url}")
        return True

    async def _record_warning(
        self, namespace: str, name: str, uid: str, reason: str, message: str
    ) -> None:
        if not self.recorder:
            return
        ref = object_reference(HORIZONTAL_RUNNER_AUTOSCALER, namespace, name, uid)
        await self.recorder.record(ref, EventType.WARNING, reason, message)

    async def _record_autoscaler_warning(
        self, hra: HorizontalRunnerAutoscaler, reason: str, message: str
    ) -> None:
        await self._record_warning(
            hra.metadata.namespace, hra.metadata.name, hra.metadata.uid, reason, message
        )
