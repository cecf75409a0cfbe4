from datetime import datetime, timedelta, timezone

import pytest

from smreconcile.resources import (
    HyperparameterTuningJob,
    HyperparameterTuningJobSpec,
    HyperparameterTuningJobStatus,
    Model,
    NamespacedName,
    ObjectMeta,
    TrainingJob,
)
from smreconcile.runtime import (
    KubernetesClient,
    NotFoundError,
    RequestFailure,
    Result,
    ignore_not_found,
    no_requeue,
    now,
    requeue_after_interval,
    requeue_if_error,
    requeue_immediately,
    requeue_immediately_unless_generation_changed,
)

FINALIZER = "sagemaker-operator-finalizer"


def make_job(name="hpo-job", namespace="namespace-1", finalizers=None):
    return HyperparameterTuningJob(
        metadata=ObjectMeta(name=name, namespace=namespace, finalizers=list(finalizers or [])),
        spec=HyperparameterTuningJobSpec(
            hyper_parameter_tuning_job_name="sagemaker-hpo-job", region="region-xyz"
        ),
    )


def key_of(obj):
    return NamespacedName(namespace=obj.metadata.namespace, name=obj.metadata.name)


def test_no_requeue():
    result = no_requeue()
    assert result.requeue is False
    assert result.requeue_after == timedelta(0)


def test_requeue_immediately():
    result = requeue_immediately()
    assert result.requeue is True
    assert result.requeue_after == timedelta(0)


def test_requeue_after_interval_without_error():
    interval = timedelta(seconds=1)
    result = requeue_after_interval(interval, None)
    assert result == Result(requeue=False, requeue_after=interval)


def test_requeue_after_interval_raises_given_error():
    with pytest.raises(RuntimeError, match="some error"):
        requeue_after_interval(timedelta(seconds=1), RuntimeError("some error"))


def test_requeue_if_error_without_error():
    assert requeue_if_error(None) == no_requeue()


def test_requeue_if_error_raises():
    with pytest.raises(RequestFailure):
        requeue_if_error(RequestFailure("error code", "boom", 500, "req id"))


def test_generation_unchanged_requeues_immediately():
    assert requeue_immediately_unless_generation_changed(3, 3) == requeue_immediately()


def test_generation_changed_does_not_requeue():
    assert requeue_immediately_unless_generation_changed(3, 4) == no_requeue()


def test_ignore_not_found_drops_not_found():
    err = NotFoundError("TrainingJob", NamespacedName("ns", "job"))
    assert ignore_not_found(err) is None


def test_ignore_not_found_keeps_other_errors():
    err = RuntimeError("other")
    assert ignore_not_found(err) is err
    assert ignore_not_found(None) is None


def test_not_found_error_carries_key():
    key = NamespacedName("ns", "job")
    err = NotFoundError("TrainingJob", key)
    assert err.key == key
    assert "job" in str(err)


def test_request_failure_fields_and_message():
    err = RequestFailure("ThrottlingException", "Rate exceeded", 400, "request id")
    assert err.code == "ThrottlingException"
    assert err.message == "Rate exceeded"
    assert err.status_code == 400
    assert err.request_id == "request id"
    text = str(err)
    assert "Rate exceeded" in text
    assert "ThrottlingException" in text
    assert "400" in text


def test_now_is_utc_and_whole_seconds():
    before = datetime.now(timezone.utc).replace(microsecond=0)
    value = now()
    after = datetime.now(timezone.utc)
    assert value.tzinfo is not None
    assert value.microsecond == 0
    assert before <= value <= after


def test_create_and_get_round_trip():
    client = KubernetesClient()
    job = make_job()
    client.create(job)
    fetched = client.get(key_of(job), HyperparameterTuningJob)
    assert fetched.spec == job.spec
    assert fetched.metadata.uid == job.metadata.uid
    assert fetched.metadata.uid


def test_get_returns_independent_copy():
    client = KubernetesClient()
    job = make_job()
    client.create(job)
    fetched = client.get(key_of(job), HyperparameterTuningJob)
    fetched.spec.region = "changed"
    assert client.get(key_of(job), HyperparameterTuningJob).spec.region == "region-xyz"


def test_get_missing_raises_not_found():
    client = KubernetesClient()
    with pytest.raises(NotFoundError):
        client.get(NamespacedName("namespace", "non-existent-name"), HyperparameterTuningJob)


def test_kinds_are_stored_separately():
    client = KubernetesClient()
    client.create(TrainingJob(metadata=ObjectMeta(name="same", namespace="ns")))
    with pytest.raises(NotFoundError):
        client.get(NamespacedName("ns", "same"), Model)


def test_create_twice_raises():
    client = KubernetesClient()
    client.create(make_job())
    with pytest.raises(ValueError):
        client.create(make_job())


def test_update_keeps_status_and_bumps_generation_on_spec_change():
    client = KubernetesClient()
    job = make_job()
    client.create(job)
    job.status = HyperparameterTuningJobStatus(additional="ignored")
    first_generation = job.metadata.generation
    job.spec.region = "other-region"
    client.update(job)
    fetched = client.get(key_of(job), HyperparameterTuningJob)
    assert fetched.spec.region == "other-region"
    assert fetched.status.additional == ""
    assert fetched.metadata.generation > first_generation
    assert job.metadata.generation == fetched.metadata.generation


def test_metadata_only_update_keeps_generation():
    client = KubernetesClient()
    job = make_job()
    client.create(job)
    generation = job.metadata.generation
    job.metadata.add_finalizer(FINALIZER)
    client.update(job)
    fetched = client.get(key_of(job), HyperparameterTuningJob)
    assert fetched.metadata.finalizers == [FINALIZER]
    assert fetched.metadata.generation == generation


def test_update_status_changes_only_status():
    client = KubernetesClient()
    job = make_job()
    client.create(job)
    job.status = HyperparameterTuningJobStatus(hyper_parameter_tuning_job_status="InProgress")
    job.spec.region = "not-saved"
    client.update_status(job)
    fetched = client.get(key_of(job), HyperparameterTuningJob)
    assert fetched.status.hyper_parameter_tuning_job_status == "InProgress"
    assert fetched.spec.region == "region-xyz"


def test_update_missing_raises_not_found():
    client = KubernetesClient()
    with pytest.raises(NotFoundError):
        client.update(make_job())
    with pytest.raises(NotFoundError):
        client.update_status(make_job())


def test_delete_without_finalizer_removes_object():
    client = KubernetesClient()
    job = make_job()
    client.create(job)
    client.delete(job)
    with pytest.raises(NotFoundError):
        client.get(key_of(job), HyperparameterTuningJob)


def test_delete_with_finalizer_marks_for_deletion():
    client = KubernetesClient()
    job = make_job(finalizers=[FINALIZER])
    client.create(job)
    client.delete(job)
    fetched = client.get(key_of(job), HyperparameterTuningJob)
    assert fetched.metadata.has_deletion_timestamp()
    assert job.metadata.has_deletion_timestamp()


def test_removing_last_finalizer_of_deleting_object_removes_it():
    client = KubernetesClient()
    job = make_job(finalizers=[FINALIZER])
    client.create(job)
    client.delete(job)
    fetched = client.get(key_of(job), HyperparameterTuningJob)
    fetched.metadata.remove_finalizer(FINALIZER)
    client.update(fetched)
    with pytest.raises(NotFoundError):
        client.get(key_of(job), HyperparameterTuningJob)


def test_delete_missing_raises_not_found():
    client = KubernetesClient()
    with pytest.raises(NotFoundError):
        client.delete(make_job())