"""Reconcile Kubernetes HyperparameterTuningJob resources with SageMaker tuning jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from smreconcile.hpo_status import (
    INITIALIZING_JOB_STATUS,
    SAGEMAKER_RESOURCE_FINALIZER_NAME,
    HpoJobStatus,
    convert_training_job_summary,
    is_not_found_response,
    is_throttling_response,
    status_counters_from_description,
)
from smreconcile.resources import (
    HyperParameterTrainingJobSummary,
    HyperparameterTuningJob,
    HyperparameterTuningJobSpec,
    HyperparameterTuningJobStatus,
    NamespacedName,
)
from smreconcile.runtime import (
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

GENERATED_NAME_MAX_LENGTH = 32
"""Longest tuning-job name the reconciler generates."""

SpecComparator = Callable[[Mapping[str, Any], HyperparameterTuningJobSpec], Sequence[Any]]
NameGenerator = Callable[[str, str, int], str]
SpawnerFactory = Callable[[Any, logging.Logger, Any], Any]


@dataclass
class _Context:
    job: HyperparameterTuningJob
    sagemaker_client: Any = None
    spawner: Any = None
    description: Mapping[str, Any] | None = None


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _observed_status(description: Mapping[str, Any]) -> str:
    return _plain(description.get("HyperParameterTuningJobStatus")) or ""


def _as_hpo_status(value: str) -> HpoJobStatus | None:
    try:
        return HpoJobStatus(value)
    except ValueError:
        return None


def _create_tuning_job_input(spec: HyperparameterTuningJobSpec) -> dict[str, Any]:
    request = {
        "HyperParameterTuningJobName": spec.hyper_parameter_tuning_job_name,
        "HyperParameterTuningJobConfig": spec.hyper_parameter_tuning_job_config,
        "TrainingJobDefinition": spec.training_job_definition,
        "WarmStartConfig": spec.warm_start_config,
        "Tags": spec.tags or None,
    }
    return {key: value for key, value in request.items() if value is not None}


def _spec_differs_message(
    job: HyperparameterTuningJob, status: str, differences: Sequence[Any]
) -> str:
    return (
        f"Status '{status}': the resource no longer matches the SageMaker job "
        f"'{job.spec.hyper_parameter_tuning_job_name}'. The spec of a job cannot be "
        f"changed after creation; differences: {list(differences)!r}"
    )


class HyperparameterTuningJobReconciler:
    """Drive a Kubernetes tuning job and its SageMaker counterpart together.

    ``config_loader(region, endpoint)`` returns the AWS configuration handed to
    ``sagemaker_client_factory``. The SageMaker client provides
    ``describe_hyper_parameter_tuning_job(name)``,
    ``create_hyper_parameter_tuning_job(request)`` and
    ``stop_hyper_parameter_tuning_job(name)``, raising ``RequestFailure`` on
    error responses. ``spawner_factory(client, log, sagemaker_client)`` builds
    the object that mirrors the tuning job's training jobs.
    ``spec_comparator(description, spec)`` returns the differences between a
    description and the spec; ``name_generator(uid, name, max_length)`` makes
    the SageMaker name for jobs that have none.
    """

    def __init__(
        self,
        client: Any,
        sagemaker_client_factory: Callable[[Any], Any],
        spawner_factory: SpawnerFactory,
        config_loader: Callable[[str | None, str | None], Any],
        spec_comparator: SpecComparator,
        name_generator: NameGenerator,
        poll_interval: timedelta,
        log: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.sagemaker_client_factory = sagemaker_client_factory
        self.spawner_factory = spawner_factory
        self.config_loader = config_loader
        self.spec_comparator = spec_comparator
        self.name_generator = name_generator
        self.poll_interval = poll_interval
        self.log = log if log is not None else logging.getLogger(__name__)

    def reconcile(self, request: NamespacedName) -> Result:
        """Run one reconciliation pass; errors other than not-found are raised."""
        try:
            job = self.client.get(request, HyperparameterTuningJob)
        except Exception as err:  # noqa: BLE001 - not-found ends the pass
            self.log.info("Unable to fetch HyperparameterTuningJob %s: %s", request, err)
            return requeue_if_error(ignore_not_found(err))
        return self._reconcile_job(_Context(job=job))

    def _reconcile_job(self, ctx: _Context) -> Result:
        job = ctx.job

        if not job.status.hyper_parameter_tuning_job_status:
            self.log.info("Job status is empty, setting to %s", INITIALIZING_JOB_STATUS)
            self._update_job_status(
                ctx,
                HyperparameterTuningJobStatus(
                    hyper_parameter_tuning_job_status=INITIALIZING_JOB_STATUS,
                    last_check_time=now(),
                ),
            )
            return requeue_immediately()

        try:
            config = self.config_loader(job.spec.region, job.spec.sagemaker_endpoint)
        except Exception as err:  # noqa: BLE001 - configuration errors are final
            self.log.error("Error loading AWS config: %s", err)
            return no_requeue()
        ctx.sagemaker_client = self.sagemaker_client_factory(config)
        self.log.info("Loaded AWS config")

        ctx.spawner = self.spawner_factory(self.client, self.log, ctx.sagemaker_client)

        if job.metadata.has_deletion_timestamp():
            return self._reconcile_deletion(ctx)

        if not job.metadata.has_finalizer(SAGEMAKER_RESOURCE_FINALIZER_NAME):
            return self._add_finalizer_and_requeue(ctx)

        if not job.spec.hyper_parameter_tuning_job_name:
            job_name = self.name_generator(
                job.metadata.uid, job.metadata.name, GENERATED_NAME_MAX_LENGTH
            )
            job.spec.hyper_parameter_tuning_job_name = job_name
            self.log.info("Adding generated name %s to spec", job_name)
            try:
                self.client.update(job)
            except Exception as err:
                self.log.info("Failed to add generated name to spec: %s", err)
                raise
            # The spec update triggers a new pass by itself.
            return no_requeue()

        ctx.description, request_err = self._describe(ctx)
        if ctx.description is not None:
            return self._reconcile_spec_with_description(ctx)
        if request_err is None:
            return self._create_tuning_job(ctx)
        self.log.info("Error getting HPO state in SageMaker: %s", request_err)
        return self._handle_api_failure(ctx, request_err, allow_remove_finalizer=False)

    def _reconcile_deletion(self, ctx: _Context) -> Result:
        ctx.description, request_err = self._describe(ctx)
        if ctx.description is not None:
            self.log.info("Job exists in SageMaker, deleting it")
            return self._delete_if_finalizer_exists(ctx)
        if request_err is None:
            self.log.info("Tuning job does not exist in SageMaker, removing finalizer")
            return self._remove_finalizer_and_update(ctx)
        self.log.info("SageMaker returned an error while the job is being deleted")
        return self._handle_api_failure(ctx, request_err, allow_remove_finalizer=True)

    def _remove_finalizer_and_update(self, ctx: _Context) -> Result:
        ctx.job.metadata.remove_finalizer(SAGEMAKER_RESOURCE_FINALIZER_NAME)
        try:
            self.client.update(ctx.job)
        except Exception as err:
            self.log.info("Failed to remove finalizer: %s", err)
            raise
        self.log.info("Finalizer has been removed from the job")
        return no_requeue()

    def _delete_if_finalizer_exists(self, ctx: _Context) -> Result:
        job = ctx.job
        if not job.metadata.has_finalizer(SAGEMAKER_RESOURCE_FINALIZER_NAME):
            self.log.info("Object does not have finalizer, nothing to do")
            return no_requeue()

        assert ctx.description is not None
        observed = _observed_status(ctx.description)
        status = _as_hpo_status(observed)

        if status is HpoJobStatus.IN_PROGRESS:
            self.log.info("Job is in progress and has finalizer, stopping it")
            try:
                ctx.sagemaker_client.stop_hyper_parameter_tuning_job(
                    job.spec.hyper_parameter_tuning_job_name
                )
            except Exception as err:  # noqa: BLE001 - recorded in the status
                self.log.error("Unable to stop the job in SageMaker: %s", err)
                return self._handle_api_failure(ctx, err, allow_remove_finalizer=False)
            return requeue_immediately()

        if status is HpoJobStatus.STOPPING:
            self.log.info("Job is stopping, nothing to do")
            self._update_job_status(
                ctx,
                HyperparameterTuningJobStatus(
                    hyper_parameter_tuning_job_status=observed,
                    last_check_time=now(),
                    sagemaker_hyper_parameter_tuning_job_name=self._job_name(ctx),
                    training_job_status_counters=status_counters_from_description(
                        ctx.description
                    ),
                ),
            )
            return requeue_after_interval(self.poll_interval, None)

        if status is not None and status.is_terminal:
            self.log.info("Job is terminal; deleting spawned TrainingJobs and finalizer")
            try:
                ctx.spawner.delete_spawned_training_jobs(job)
            except Exception as err:  # noqa: BLE001 - retried after the interval
                self.log.info("Not all associated TrainingJobs were deleted: %s", err)
                return requeue_after_interval(self.poll_interval, None)
            return self._remove_finalizer_and_update(ctx)

        self.log.info("Job is in unknown status %r", observed)
        return no_requeue()

    def _add_finalizer_and_requeue(self, ctx: _Context) -> Result:
        metadata = ctx.job.metadata
        metadata.add_finalizer(SAGEMAKER_RESOURCE_FINALIZER_NAME)
        self.log.info("Add finalizer and requeue")
        prev_generation = metadata.generation
        try:
            self.client.update(ctx.job)
        except Exception as err:
            self.log.error("Failed to add finalizer: %s", err)
            raise
        return requeue_immediately_unless_generation_changed(
            prev_generation, metadata.generation
        )

    def _describe(
        self, ctx: _Context
    ) -> tuple[Mapping[str, Any] | None, BaseException | None]:
        try:
            description = ctx.sagemaker_client.describe_hyper_parameter_tuning_job(
                ctx.job.spec.hyper_parameter_tuning_job_name
            )
        except RequestFailure as err:
            if is_not_found_response(err):
                self.log.info("Job does not exist in SageMaker")
                return None, None
            self.log.info("Non-404 error response from DescribeHyperParameterTuningJob")
            return None, err
        except Exception as err:  # noqa: BLE001 - handled by the caller
            self.log.info("Failed to describe the tuning job: %s", err)
            return None, err
        return description, None

    def _create_tuning_job(self, ctx: _Context) -> Result:
        request = _create_tuning_job_input(ctx.job.spec)
        self.log.info("Creating HyperParameterTuningJob in SageMaker: %s", request)
        try:
            ctx.sagemaker_client.create_hyper_parameter_tuning_job(request)
        except Exception as err:  # noqa: BLE001 - recorded in the status
            self.log.info("Unable to create HPO job: %s", err)
            return self._handle_api_failure(ctx, err, allow_remove_finalizer=False)
        self.log.info("HyperParameterTuningJob created in SageMaker")
        return requeue_immediately()

    def _handle_api_failure(
        self, ctx: _Context, api_err: BaseException, allow_remove_finalizer: bool
    ) -> Result:
        self._update_job_status(
            ctx,
            HyperparameterTuningJobStatus(
                additional=str(api_err),
                last_check_time=now(),
                hyper_parameter_tuning_job_status=HpoJobStatus.FAILED.value,
                sagemaker_hyper_parameter_tuning_job_name=self._job_name(ctx),
                training_job_status_counters=status_counters_from_description(
                    ctx.description
                ),
            ),
        )

        if not isinstance(api_err, RequestFailure):
            self.log.info("Unknown request failure type for error: %s", api_err)
            return requeue_after_interval(self.poll_interval, None)
        if is_throttling_response(api_err):
            self.log.info("SageMaker rate limit exceeded, will retry: %s", api_err)
            return requeue_after_interval(self.poll_interval, None)
        if api_err.status_code == 400:
            if allow_remove_finalizer:
                return self._remove_finalizer_and_update(ctx)
            return no_requeue()
        return requeue_after_interval(self.poll_interval, None)

    def _reconcile_spec_with_description(self, ctx: _Context) -> Result:
        assert ctx.description is not None
        differences = list(self.spec_comparator(ctx.description, ctx.job.spec))
        if differences:
            self.log.info("Spec does not match description; not requeueing")
            status = HpoJobStatus.FAILED.value
            self._update_job_status(
                ctx,
                HyperparameterTuningJobStatus(
                    last_check_time=now(),
                    sagemaker_hyper_parameter_tuning_job_name=self._job_name(ctx),
                    hyper_parameter_tuning_job_status=status,
                    training_job_status_counters=status_counters_from_description(
                        ctx.description
                    ),
                    additional=_spec_differs_message(ctx.job, status, differences),
                ),
            )
            return no_requeue()

        self.log.info("Attempting to spawn TrainingJobs that the HPO job created")
        ctx.spawner.spawn_missing_training_jobs(ctx.job)

        observed = _observed_status(ctx.description)
        self._update_job_status(
            ctx,
            HyperparameterTuningJobStatus(
                last_check_time=now(),
                best_training_job=self._best_training_job(ctx),
                sagemaker_hyper_parameter_tuning_job_name=self._job_name(ctx),
                training_job_status_counters=status_counters_from_description(
                    ctx.description
                ),
                hyper_parameter_tuning_job_status=observed,
            ),
        )

        status = _as_hpo_status(observed)
        if status in (HpoJobStatus.IN_PROGRESS, HpoJobStatus.STOPPING):
            return requeue_after_interval(self.poll_interval, None)
        if status is None:
            self.log.info("Job is in unknown status %r, no requeue", observed)
        return no_requeue()

    def _best_training_job(self, ctx: _Context) -> HyperParameterTrainingJobSummary | None:
        assert ctx.description is not None
        best = ctx.description.get("BestTrainingJob")
        if best is None:
            self.log.info("No BestTrainingJob in HPO description")
            return None
        try:
            return convert_training_job_summary(best)
        except Exception as err:  # noqa: BLE001 - the field is optional
            self.log.info("Unable to convert BestTrainingJob: %s", err)
            return None

    def _update_job_status(
        self, ctx: _Context, desired: HyperparameterTuningJobStatus
    ) -> None:
        self.log.info("Updating job status: %s", desired)
        root = ctx.job.copy()
        root.status = desired
        try:
            self.client.update_status(root)
        except Exception as err:
            self.log.error("Error updating job status: %s", err)
            raise

    @staticmethod
    def _job_name(ctx: _Context) -> str:
        return ctx.job.spec.hyper_parameter_tuning_job_name or ""