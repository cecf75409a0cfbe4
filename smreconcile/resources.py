"""Kubernetes-side resource records handled by the reconcilers."""

from __future__ import annotations

import copy as _copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class NamespacedName:
    """Key that identifies an object inside a Kubernetes namespace."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ObjectMeta:
    """The subset of Kubernetes object metadata the reconcilers rely on."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    generation: int = 0
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: datetime | None = None

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)

    def has_deletion_timestamp(self) -> bool:
        """Whether the object has been marked for deletion."""
        return self.deletion_timestamp is not None

    def has_finalizer(self, name: str) -> bool:
        return name in self.finalizers

    def add_finalizer(self, name: str) -> None:
        """Add a finalizer unless it is already present."""
        if name not in self.finalizers:
            self.finalizers.append(name)

    def remove_finalizer(self, name: str) -> None:
        """Remove every occurrence of a finalizer."""
        self.finalizers = [f for f in self.finalizers if f != name]


@dataclass
class TrainingJob:
    """A Kubernetes TrainingJob; its spec is kept as a plain mapping."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: dict[str, Any] = field(default_factory=dict)


@dataclass
class HyperParameterTrainingJobSummary:
    """Summary of one training job launched by a tuning job."""

    training_job_name: str | None = None
    training_job_arn: str | None = None
    training_job_status: str | None = None
    tuning_job_name: str | None = None
    creation_time: datetime | None = None
    training_start_time: datetime | None = None
    training_end_time: datetime | None = None
    failure_reason: str | None = None
    objective_status: str | None = None
    final_hyper_parameter_tuning_job_objective_metric: dict[str, Any] | None = None
    tuned_hyper_parameters: dict[str, str] = field(default_factory=dict)


@dataclass
class TrainingJobStatusCounters:
    """Counts of training jobs by state for a tuning job."""

    completed: int | None = None
    in_progress: int | None = None
    non_retryable_error: int | None = None
    retryable_error: int | None = None
    total_error: int | None = None
    stopped: int | None = None


@dataclass
class HyperparameterTuningJobSpec:
    hyper_parameter_tuning_job_name: str | None = None
    region: str | None = None
    sagemaker_endpoint: str | None = None
    hyper_parameter_tuning_job_config: dict[str, Any] | None = None
    training_job_definition: dict[str, Any] | None = None
    warm_start_config: dict[str, Any] | None = None
    tags: list[dict[str, str]] = field(default_factory=list)


@dataclass
class HyperparameterTuningJobStatus:
    hyper_parameter_tuning_job_status: str = ""
    sagemaker_hyper_parameter_tuning_job_name: str = ""
    best_training_job: HyperParameterTrainingJobSummary | None = None
    training_job_status_counters: TrainingJobStatusCounters | None = None
    last_check_time: datetime | None = None
    additional: str = ""


@dataclass
class HyperparameterTuningJob:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: HyperparameterTuningJobSpec = field(default_factory=HyperparameterTuningJobSpec)
    status: HyperparameterTuningJobStatus = field(
        default_factory=HyperparameterTuningJobStatus
    )

    def copy(self) -> HyperparameterTuningJob:
        """Return a deep copy that shares no mutable state with this job."""
        return _copy.deepcopy(self)


@dataclass
class ModelSpec:
    region: str | None = None
    sagemaker_endpoint: str | None = None
    execution_role_arn: str | None = None
    primary_container: dict[str, Any] | None = None
    containers: list[dict[str, Any]] = field(default_factory=list)
    vpc_config: dict[str, Any] | None = None
    enable_network_isolation: bool | None = None
    tags: list[dict[str, str]] = field(default_factory=list)


@dataclass
class ModelStatus:
    status: str = ""
    additional: str = ""
    model_arn: str = ""
    sagemaker_model_name: str = ""
    last_check_time: datetime | None = None


@dataclass
class Model:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: ModelSpec = field(default_factory=ModelSpec)
    status: ModelStatus = field(default_factory=ModelStatus)