"""
Custom Resources - Typed views of the actions-runner-controller resources.

Objects arrive from the cluster store as serialized JSON. They are decoded
into pydantic models here; the rest of the operator only sees typed values.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from durations import parse_duration
from errors import DecodeError

ACTIONS_GROUP = "actions.summerwind.dev"
ACTIONS_VERSION = "v1alpha1"


@dataclass(frozen=True)
class ResourceKind:
    """Group/version/kind coordinates of a custom resource."""

    group: str
    version: str
    kind: str
    plural: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


HORIZONTAL_RUNNER_AUTOSCALER = ResourceKind(
    group=ACTIONS_GROUP,
    version=ACTIONS_VERSION,
    kind="HorizontalRunnerAutoscaler",
    plural="horizontalrunnerautoscalers",
)

RUNNER_DEPLOYMENT = ResourceKind(
    group=ACTIONS_GROUP,
    version=ACTIONS_VERSION,
    kind="RunnerDeployment",
    plural="runnerdeployments",
)


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ObjectMeta(_Model):
    """Subset of Kubernetes object metadata used by the operator."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    generation: int = 0
    resource_version: str = Field("", alias="resourceVersion")


class ScaleTargetRef(_Model):
    kind: str = ""
    name: str = ""


class Trigger(_Model):
    """A scale-up trigger. Only its presence matters to the operator."""

    github_event: Any = Field(None, alias="githubEvent")
    amount: int = 0
    duration: Optional[timedelta] = None

    @field_validator("duration", mode="before")
    @classmethod
    def parse_duration_string(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, str):
            return timedelta(seconds=parse_duration(v))
        return v


class HorizontalRunnerAutoscalerSpec(_Model):
    scale_target_ref: ScaleTargetRef = Field(
        default_factory=ScaleTargetRef, alias="scaleTargetRef"
    )
    # A null entry decodes as None and still counts as a trigger
    scale_up_triggers: Optional[List[Optional[Trigger]]] = Field(
        None, alias="scaleUpTriggers"
    )


class HorizontalRunnerAutoscaler(_Model):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: HorizontalRunnerAutoscalerSpec = Field(
        default_factory=HorizontalRunnerAutoscalerSpec
    )

    def has_triggers(self) -> bool:
        """True if the autoscaler declares at least one scale-up trigger."""
        return bool(self.spec.scale_up_triggers)


class RunnerSpec(_Model):
    repository: str = ""


class RunnerTemplate(_Model):
    spec: RunnerSpec = Field(default_factory=RunnerSpec)


class RunnerDeploymentSpec(_Model):
    template: RunnerTemplate = Field(default_factory=RunnerTemplate)


class RunnerDeployment(_Model):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: RunnerDeploymentSpec = Field(default_factory=RunnerDeploymentSpec)

    @property
    def repository(self) -> str:
        """The declared repository, ``owner/name`` or bare ``name``."""
        return self.spec.template.spec.repository

    @property
    def owner(self) -> str:
        return repository_owner(self.repository)

    @property
    def repository_name(self) -> str:
        return repository_name(self.repository)


def repository_owner(repository: str) -> str:
    """
    Return the owner part of a repository string.

    Only the first path segment is used, so ``"a/b/c"`` yields ``"a"``.
    A string without ``/`` has no owner and yields ``""``.
    """
    parts = repository.split("/")
    if len(parts) == 1:
        return ""
    return parts[0]


def repository_name(repository: str) -> str:
    """Return the last path segment of a repository string."""
    return repository.split("/")[-1]


ModelT = TypeVar("ModelT", bound=BaseModel)


def _decode(model: Type[ModelT], data: bytes, kind: ResourceKind) -> ModelT:
    try:
        return model.model_validate_json(data)
    except ValidationError as e:
        raise DecodeError(f"Failed to decode {kind.kind}: {e}") from e


def decode_autoscaler(data: bytes) -> HorizontalRunnerAutoscaler:
    """
    Decode a serialized HorizontalRunnerAutoscaler.

    Raises:
        DecodeError: If the data is not valid JSON or does not fit the schema
    """
    return _decode(HorizontalRunnerAutoscaler, data, HORIZONTAL_RUNNER_AUTOSCALER)


def decode_runner_deployment(data: bytes) -> RunnerDeployment:
    """
    Decode a serialized RunnerDeployment.

    Raises:
        DecodeError: If the data is not valid JSON or does not fit the schema
    """
    return _decode(RunnerDeployment, data, RUNNER_DEPLOYMENT)
