"""
Configuration module for the Runner Webhook Operator.

Loads configuration from environment variables once at startup. The
resulting objects are treated as read-only for the life of the process.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from durations import parse_duration

DEFAULT_WEBHOOK_EVENTS = "workflow_job"
DEFAULT_LEASE_NAME = "58a9eb7f.bosun.jspaas.uk"


def split_events(value: str) -> Tuple[str, ...]:
    """Split a comma-separated event list, keeping order and dropping blanks."""
    return tuple(e.strip() for e in value.split(",") if e.strip())


@dataclass
class WebhookConfig:
    """The webhook every autoscaled repository should carry."""

    url: str = ""
    events: Tuple[str, ...] = (DEFAULT_WEBHOOK_EVENTS,)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            url=os.getenv("WEBHOOK_URL", ""),
            events=split_events(os.getenv("WEBHOOK_EVENTS", DEFAULT_WEBHOOK_EVENTS)),
        )


@dataclass
class GitHubConfig:
    """GitHub API configuration."""

    token: str = field(default="", repr=False)  # Never log the token
    api_base_url: str = "https://api.github.com"
    request_timeout: float = 30  # seconds

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        token = os.getenv("GITHUB_TOKEN", "")
        if not token:
            raise ValueError(
                "GITHUB_TOKEN environment variable must be set. "
                "Webhooks cannot be managed without a token."
            )

        return cls(
            token=token,
            api_base_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
            request_timeout=float(os.getenv("GITHUB_REQUEST_TIMEOUT", "30")),
        )


@dataclass
class ControllerConfig:
    """Controller reconciliation loop configuration."""

    max_concurrent_reconciles: int = 1
    sync_period: float = 4 * 3600  # seconds between resyncs of a healthy key

    # Exponential backoff configuration
    backoff_base_delay: float = 1  # base delay in seconds
    backoff_max_delay: float = 120  # max delay in seconds
    backoff_jitter_factor: float = 0.0

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "1")),
            sync_period=parse_duration(os.getenv("SYNC_PERIOD", "4h")),
            backoff_base_delay=parse_duration(os.getenv("BACKOFF_BASE_DELAY", "1")),
            backoff_max_delay=parse_duration(os.getenv("BACKOFF_MAX_DELAY", "120")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.0")),
        )


@dataclass
class KubernetesConfig:
    """Kubernetes API access configuration."""

    namespace: str = ""  # empty watches all namespaces
    kubeconfig: Optional[str] = None

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            namespace=os.getenv("WATCH_NAMESPACE", ""),
            kubeconfig=os.getenv("KUBECONFIG") or None,
        )



@dataclass
class ProbeConfig:
    """Health probe server configuration."""

    host: str = "0.0.0.0"
    port: int = 8081
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            host=os.getenv("PROBE_HOST", "0.0.0.0"),
            port=int(os.getenv("PROBE_PORT", "8081")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class MetricsConfig:
    """Prometheus metrics endpoint configuration."""

    host: str = "0.0.0.0"
    port: int = 8080  # 0 disables the endpoint

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            host=os.getenv("METRICS_HOST", "0.0.0.0"),
            port=int(os.getenv("METRICS_PORT", "8080")),
        )

    @property
    def enabled(self) -> bool:
        return self.port > 0


@dataclass
class LeaderElectionConfig:
    """Lease-based leader election between operator replicas."""

    enabled: bool = False
    lease_name: str = DEFAULT_LEASE_NAME
    namespace: str = ""  # empty uses the pod's own namespace
    identity: str = ""  # empty uses the pod hostname

    # Lease timings in seconds
    lease_duration: float = 15
    renew_deadline: float = 10
    retry_period: float = 2

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            enabled=os.getenv("LEADER_ELECT", "false").lower() in ("1", "true", "yes"),
            lease_name=os.getenv("LEADER_ELECTION_ID", DEFAULT_LEASE_NAME),
            namespace=os.getenv("LEADER_ELECTION_NAMESPACE", ""),
            identity=os.getenv("LEADER_ELECTION_IDENTITY", ""),
            lease_duration=parse_duration(os.getenv("LEASE_DURATION", "15s")),
            renew_deadline=parse_duration(os.getenv("RENEW_DEADLINE", "10s")),
            retry_period=parse_duration(os.getenv("RETRY_PERIOD", "2s")),
        )


def parse_bind_address(address: str) -> Tuple[str, int]:
    """
    Parse a ``host:port`` bind address. An empty host means all interfaces.

    Raises:
        ValueError: If the port is missing or not a number
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid bind address: {address!r}")
    return host or "0.0.0.0", int(port)


@dataclass
class Config:
    """Main configuration object."""

    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    probes: ProbeConfig = field(default_factory=ProbeConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    leader_election: LeaderElectionConfig = field(
        default_factory=LeaderElectionConfig
    )

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            webhook=WebhookConfig.from_env(),
            github=GitHubConfig.from_env(),
            controller=ControllerConfig.from_env(),
            kubernetes=KubernetesConfig.from_env(),
            probes=ProbeConfig.from_env(),
            metrics=MetricsConfig.from_env(),
            leader_election=LeaderElectionConfig.from_env(),
        )

    def validate(self) -> None:
        """
        Check settings that have no usable default.

        Raises:
            ValueError: If the webhook URL or event list is empty, or the
                lease timings cannot work together
        """
        missing = []
        if not self.webhook.url:
            missing.append("WEBHOOK_URL")
        if not self.webhook.events:
            missing.append("WEBHOOK_EVENTS")
        if missing:
            raise ValueError(
                f"Required settings are not set: {', '.join(missing)}. "
                "Set them in the environment or on the command line."
            )

        election = self.leader_election
        if election.enabled and not (
            election.lease_duration > election.renew_deadline > election.retry_period
        ):
            raise ValueError(
                "Leader election needs LEASE_DURATION > RENEW_DEADLINE > RETRY_PERIOD"
            )
