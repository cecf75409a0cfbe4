"""Tuning-job states and conversions of SageMaker tuning-job descriptions."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from smreconcile.resources import (
    HyperParameterTrainingJobSummary,
    TrainingJobStatusCounters,
)
from smreconcile.runtime import RequestFailure

SAGEMAKER_RESOURCE_FINALIZER_NAME = "sagemaker-operator-finalizer"
"""Finalizer that keeps a resource around until its SageMaker side is cleaned up."""

INITIALIZING_JOB_STATUS = "SynchronizingK8sJobWithSageMaker"
"""Status given to a resource before it has been matched with SageMaker."""

HPO_RESOURCE_NOT_FOUND_API_CODE = "ResourceNotFound"
"""Error code SageMaker returns (with HTTP 400) for an unknown tuning job."""

_THROTTLING_CODE = "ThrottlingException"
_THROTTLING_MESSAGE = "Rate exceeded"


class HpoJobStatus(str, Enum):
    """States a SageMaker hyperparameter tuning job can report."""

    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    STOPPING = "Stopping"
    STOPPED = "Stopped"

    @property
    def is_terminal(self) -> bool:
        """Whether the job has finished and will not change state again."""
        return self in (HpoJobStatus.COMPLETED, HpoJobStatus.FAILED, HpoJobStatus.STOPPED)


def status_counters_from_description(
    description: Mapping[str, Any] | None,
) -> TrainingJobStatusCounters:
    """Build status counters from a DescribeHyperParameterTuningJob result.

    The total error count is set only when both error counters are present.
    An absent description or absent counters give empty counters.
    """
    if description is None:
        return TrainingJobStatusCounters()
    counters = description.get("TrainingJobStatusCounters")
    if counters is None:
        return TrainingJobStatusCounters()

    non_retryable = counters.get("NonRetryableError")
    retryable = counters.get("RetryableError")
    total_error = None
    if non_retryable is not None and retryable is not None:
        total_error = non_retryable + retryable

    return TrainingJobStatusCounters(
        completed=counters.get("Completed"),
        in_progress=counters.get("InProgress"),
        non_retryable_error=non_retryable,
        retryable_error=retryable,
        total_error=total_error,
        stopped=counters.get("Stopped"),
    )


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def convert_training_job_summary(
    source: Mapping[str, Any],
) -> HyperParameterTrainingJobSummary:
    """Convert a SageMaker training-job summary mapping to the Kubernetes record.

    Raises ``TypeError`` if ``source`` is not a mapping.
    """
    if not isinstance(source, Mapping):
        raise TypeError(
            f"training job summary must be a mapping, not {type(source).__name__}"
        )
    tuned = source.get("TunedHyperParameters") or {}
    metric = source.get("FinalHyperParameterTuningJobObjectiveMetric")
    return HyperParameterTrainingJobSummary(
        training_job_name=source.get("TrainingJobName"),
        training_job_arn=source.get("TrainingJobArn"),
        training_job_status=_plain(source.get("TrainingJobStatus")),
        tuning_job_name=source.get("TuningJobName"),
        creation_time=source.get("CreationTime"),
        training_start_time=source.get("TrainingStartTime"),
        training_end_time=source.get("TrainingEndTime"),
        failure_reason=source.get("FailureReason"),
        objective_status=_plain(source.get("ObjectiveStatus")),
        final_hyper_parameter_tuning_job_objective_metric=(
            dict(metric) if metric is not None else None
        ),
        tuned_hyper_parameters={str(k): str(v) for k, v in tuned.items()},
    )


def is_not_found_response(error: RequestFailure) -> bool:
    """Whether SageMaker reported that the tuning job does not exist."""
    return error.code == HPO_RESOURCE_NOT_FOUND_API_CODE


def is_throttling_response(error: RequestFailure) -> bool:
    """Whether SageMaker throttled the request (it answers 400, not 429)."""
    return error.code == _THROTTLING_CODE and error.message == _THROTTLING_MESSAGE