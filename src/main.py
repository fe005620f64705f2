"""
Main entry point for the Runner Webhook Operator.

Wires the watcher, controller, reconciler and probe server together and runs
them until a shutdown signal arrives.
"""

import asyncio
import dataclasses
import logging
import signal
from typing import List, Optional

import click

from config import Config, ControllerConfig, parse_bind_address, split_events
from controller import Controller
from controller import ControllerConfig as WorkerPoolConfig
from durations import parse_duration
from events import EventRecorder
from github_client import GitHubRepositoryClient
from health import ProbeServer
from kube import ClusterStore, load_kubernetes_config
from leader import LeaderElector
from metrics import start_metrics_server
from reconciler import RunnerWebhookReconciler
from resources import HORIZONTAL_RUNNER_AUTOSCALER
from watcher import ResourceWatcher
from webhooks import DesiredWebhook

__version__ = "0.1.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Application:
    """Main application that orchestrates the controller, watcher and probes."""

    def __init__(self, config: Config):
        self.config = config
        self.controller: Optional[Controller] = None
        self.watcher: Optional[ResourceWatcher] = None
        self.probe_server: Optional[ProbeServer] = None
        self.running = False
        self.stop_task: Optional[asyncio.Task] = None

    def initialize(self):
        """Initialize all components."""
        logger.info("Initializing Runner Webhook Operator")
        cfg = self.config
        cfg.validate()

        load_kubernetes_config(cfg.kubernetes.kubeconfig)

        webhook = DesiredWebhook.create(cfg.webhook.url, cfg.webhook.events)
        logger.info(
            f"Desired webhook: url={webhook.url} events={','.join(webhook.events)}"
        )

        reconciler = RunnerWebhookReconciler(
            store=ClusterStore(),
            repository=GitHubRepositoryClient(
                token=cfg.github.token,
                api_base_url=cfg.github.api_base_url,
                timeout=cfg.github.request_timeout,
            ),
            webhook=webhook,
            sync_period=cfg.controller.sync_period,
            recorder=EventRecorder(),
        )

        elector = None
        if cfg.leader_election.enabled:
            election = cfg.leader_election
            elector = LeaderElector(
                lease_name=election.lease_name,
                namespace=election.namespace,
                identity=election.identity,
                lease_duration=election.lease_duration,
                renew_deadline=election.renew_deadline,
                retry_period=election.retry_period,
            )

        self.controller = Controller(
            reconciler=reconciler,
            config=WorkerPoolConfig(
                max_concurrent_reconciles=cfg.controller.max_concurrent_reconciles,
                backoff_base_delay=cfg.controller.backoff_base_delay,
                backoff_max_delay=cfg.controller.backoff_max_delay,
                backoff_jitter_factor=cfg.controller.backoff_jitter_factor,
            ),
            elector=elector,
        )

        self.watcher = ResourceWatcher(
            kind=HORIZONTAL_RUNNER_AUTOSCALER,
            on_request=self.controller.enqueue,
            namespace=cfg.kubernetes.namespace,
        )

        self.probe_server = ProbeServer(
            is_ready=self.is_ready,
            host=cfg.probes.host,
            port=cfg.probes.port,
            log_level=cfg.probes.log_level.lower(),
        )

        logger.info("All components initialized")

    def is_ready(self) -> bool:
        return bool(self.running and self.controller and self.controller.running)

    async def start(self):
        """Start the application."""
        if not self.controller:
            self.initialize()

        self.running = True
        logger.info(f"Starting Runner Webhook Operator {__version__}")

        if self.config.metrics.enabled:
            start_metrics_server(self.config.metrics.host, self.config.metrics.port)

        tasks = [
            asyncio.create_task(self._run_controller()),
            asyncio.create_task(self.watcher.start()),
            asyncio.create_task(self.probe_server.start()),
        ]

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def _run_controller(self):
        await self.controller.start()
        if self.running:
            # The controller only ends on its own when leadership is lost
            logger.error("Controller stopped unexpectedly, shutting down")
            self.request_stop()

    def request_stop(self) -> asyncio.Task:
        """Schedule a graceful stop once; later calls return the same task."""
        if self.stop_task is None:
            self.stop_task = asyncio.create_task(self.stop())
        return self.stop_task

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running:
            return
        logger.info("Stopping Runner Webhook Operator")
        self.running = False

        if self.watcher:
            self.watcher.stop()

        if self.controller:
            await self.controller.stop()

        if self.probe_server:
            await self.probe_server.stop()

        logger.info("Runner Webhook Operator stopped")


async def run(app: Application):
    """Run the application until SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        app.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.request_stop()


def build_config(
    base: Config,
    webhook_url: Optional[str] = None,
    webhook_events: Optional[str] = None,
    max_concurrent_reconciles: Optional[int] = None,
    sync_period: Optional[float] = None,
    namespace: Optional[str] = None,
    health_probe_bind_address: Optional[str] = None,
    metrics_bind_address: Optional[str] = None,
    leader_elect: bool = False,
    log_level: Optional[str] = None,
) -> Config:
    """Apply command line overrides on top of the environment configuration."""
    webhook = base.webhook
    if webhook_url is not None:
        webhook = dataclasses.replace(webhook, url=webhook_url)
    if webhook_events is not None:
        webhook = dataclasses.replace(webhook, events=split_events(webhook_events))

    controller: ControllerConfig = base.controller
    if max_concurrent_reconciles is not None:
        controller = dataclasses.replace(
            controller, max_concurrent_reconciles=max_concurrent_reconciles
        )
    if sync_period is not None:
        controller = dataclasses.replace(controller, sync_period=sync_period)

    kubernetes = base.kubernetes
    if namespace is not None:
        kubernetes = dataclasses.replace(kubernetes, namespace=namespace)

    probes = base.probes
    if health_probe_bind_address is not None:
        host, port = parse_bind_address(health_probe_bind_address)
        probes = dataclasses.replace(probes, host=host, port=port)
    if log_level is not None:
        probes = dataclasses.replace(probes, log_level=log_level)

    metrics = base.metrics
    if metrics_bind_address is not None:
        if metrics_bind_address == "0":
            metrics = dataclasses.replace(metrics, port=0)
        else:
            host, port = parse_bind_address(metrics_bind_address)
            metrics = dataclasses.replace(metrics, host=host, port=port)

    leader_election = base.leader_election
    if leader_elect:
        leader_election = dataclasses.replace(leader_election, enabled=True)

    return dataclasses.replace(
        base,
        webhook=webhook,
        controller=controller,
        kubernetes=kubernetes,
        probes=probes,
        metrics=metrics,
        leader_election=leader_election,
    )


def _duration_option(ctx, param, value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


@click.command()
@click.option("--webhook-url", help="The webhook URL to target for this environment")
@click.option("--webhook-events", help="Comma-separated webhook events to enable")
@click.option(
    "--max-concurrent-reconciles",
    type=click.IntRange(min=1),
    help="Number of autoscalers reconciled in parallel",
)
@click.option(
    "--sync-period",
    callback=_duration_option,
    help="Resync period per autoscaler (e.g. 4h, 30m, 600)",
)
@click.option("--namespace", help="Watch a single namespace instead of all")
@click.option(
    "--health-probe-bind-address",
    help="The address the probe endpoint binds to (e.g. :8081)",
)
@click.option(
    "--metrics-bind-address",
    help="The address the metrics endpoint binds to (e.g. :8080, 0 disables)",
)
@click.option(
    "--leader-elect",
    is_flag=True,
    default=False,
    help="Enable leader election so only one replica reconciles at a time",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level",
)
@click.version_option(__version__)
def cli(**overrides):
    """Keep GitHub repository webhooks in sync with runner autoscalers."""
    try:
        config = build_config(Config.from_env(), **overrides)
        config.validate()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    logging.getLogger().setLevel(config.probes.log_level.upper())

    asyncio.run(run(Application(config)))


def main(argv: Optional[List[str]] = None):
    """Console script entry point."""
    cli.main(args=argv, prog_name="runner-webhook-operator")


if __name__ == "__main__":
    main()
