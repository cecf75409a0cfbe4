from datetime import datetime, timezone

import pytest

from smreconcile.hpo_status import (
    HPO_RESOURCE_NOT_FOUND_API_CODE,
    HpoJobStatus,
    convert_training_job_summary,
    is_not_found_response,
    is_throttling_response,
    status_counters_from_description,
)
from smreconcile.resources import TrainingJobStatusCounters
from smreconcile.runtime import RequestFailure


def test_status_counters_copy_values_and_total_errors():
    description = {
        "TrainingJobStatusCounters": {
            "Completed": 1,
            "InProgress": 2,
            "NonRetryableError": 3,
            "RetryableError": 4,
            "Stopped": 5,
        }
    }
    counters = status_counters_from_description(description)
    assert counters.completed == 1
    assert counters.in_progress == 2
    assert counters.non_retryable_error == 3
    assert counters.retryable_error == 4
    assert counters.total_error == 7
    assert counters.stopped == 5


def test_status_counters_without_description_are_empty():
    assert status_counters_from_description(None) == TrainingJobStatusCounters()


def test_status_counters_without_counters_are_empty():
    assert status_counters_from_description({"HyperParameterTuningJobName": "x"}) == (
        TrainingJobStatusCounters()
    )


def test_total_error_needs_both_error_counters():
    counters = status_counters_from_description(
        {"TrainingJobStatusCounters": {"NonRetryableError": 3, "Completed": 2}}
    )
    assert counters.total_error is None
    assert counters.non_retryable_error == 3
    assert counters.completed == 2


def test_convert_summary_keeps_training_job_name():
    summary = convert_training_job_summary(
        {"TrainingJobName": "best-training-job-name-123"}
    )
    assert summary.training_job_name == "best-training-job-name-123"
    assert summary.tuned_hyper_parameters == {}


def test_convert_summary_copies_fields():
    created = datetime(2019, 11, 1, tzinfo=timezone.utc)
    source = {
        "TrainingJobName": "job-1",
        "TrainingJobArn": "arn-1",
        "TrainingJobStatus": "Completed",
        "CreationTime": created,
        "TunedHyperParameters": {"eta": "0.1", "depth": "5"},
        "FinalHyperParameterTuningJobObjectiveMetric": {"MetricName": "loss", "Value": 0.5},
    }
    summary = convert_training_job_summary(source)
    assert summary.training_job_arn == "arn-1"
    assert summary.training_job_status == "Completed"
    assert summary.creation_time == created
    assert summary.tuned_hyper_parameters == {"eta": "0.1", "depth": "5"}
    assert summary.final_hyper_parameter_tuning_job_objective_metric == {
        "MetricName": "loss",
        "Value": 0.5,
    }


def test_convert_summary_rejects_non_mapping():
    with pytest.raises(TypeError):
        convert_training_job_summary(["job-1"])


def test_not_found_response_uses_error_code():
    assert is_not_found_response(
        RequestFailure(HPO_RESOURCE_NOT_FOUND_API_CODE, "missing", 400, "request id")
    )
    assert not is_not_found_response(RequestFailure("some error", "x", 400, "request id"))


def test_throttling_needs_code_and_message():
    assert is_throttling_response(
        RequestFailure("ThrottlingException", "Rate exceeded", 400, "request id")
    )
    assert not is_throttling_response(
        RequestFailure("ThrottlingException", "other", 400, "request id")
    )
    assert not is_throttling_response(
        RequestFailure("ValidationException", "Rate exceeded", 400, "request id")
    )


@pytest.mark.parametrize(
    "value, terminal",
    [
        ("InProgress", False),
        ("Stopping", False),
        ("Completed", True),
        ("Failed", True),
        ("Stopped", True),
    ],
)
def test_terminal_states(value, terminal):
    assert HpoJobStatus(value).is_terminal is terminal


def test_status_parsed_from_string_compares_with_plain_string():
    status = HpoJobStatus("InProgress")
    assert status == "InProgress"
    assert status is HpoJobStatus.IN_PROGRESS


def test_unknown_status_is_rejected():
    with pytest.raises(ValueError):
        HpoJobStatus("Exploding")