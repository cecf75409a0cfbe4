"""Mirror the training jobs started by a tuning job as Kubernetes TrainingJobs."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Iterator, Mapping

from smreconcile.resources import (
    HyperParameterTrainingJobSummary,
    HyperparameterTuningJob,
    NamespacedName,
    ObjectMeta,
    TrainingJob,
)
from smreconcile.runtime import NotFoundError, ignore_not_found

HPO_TRAINING_JOB_OWNERSHIP_FINALIZER = "sagemaker-operator-hpo-trainingjob"
"""Finalizer placed on every TrainingJob created by the spawner."""

SpecFromDescription = Callable[[Mapping[str, Any]], Mapping[str, Any]]


class HpoTrainingJobSpawner:
    """Create and delete Kubernetes TrainingJobs for a tuning job's training jobs.

    ``sagemaker_client`` must provide
    ``list_training_jobs_for_hyper_parameter_tuning_job(name)``, returning an
    iterable of pages (each a sequence of ``HyperParameterTrainingJobSummary``)
    and raising on failure, and ``describe_training_job(name)``, returning a
    description mapping (or ``None``) and raising on failure.
    ``spec_from_description`` turns such a description into a TrainingJob spec.
    """

    def __init__(
        self,
        k8s_client: Any,
        sagemaker_client: Any,
        spec_from_description: SpecFromDescription,
        log: logging.Logger | None = None,
    ) -> None:
        self.k8s_client = k8s_client
        self.sagemaker_client = sagemaker_client
        self.spec_from_description = spec_from_description
        self.log = log if log is not None else logging.getLogger(__name__)

    def spawn_missing_training_jobs(self, hpo_job: HyperparameterTuningJob) -> None:
        """Create a Kubernetes TrainingJob for every training job not yet mirrored.

        The jobs are created in the tuning job's namespace, with its region and
        endpoint. Failures are logged and never raised.
        """
        hpo_job_name = hpo_job.spec.hyper_parameter_tuning_job_name
        namespace = hpo_job.metadata.namespace
        region = hpo_job.spec.region
        endpoint = hpo_job.spec.sagemaker_endpoint

        with ThreadPoolExecutor() as pool:
            try:
                for summary in self._training_job_summaries(hpo_job_name):
                    pool.submit(
                        self._spawn_if_missing,
                        summary.training_job_name,
                        namespace,
                        region,
                        endpoint,
                    )
            except Exception as err:  # noqa: BLE001 - reported, not propagated
                self.log.info("Error while getting training jobs: %s", err)

    def delete_spawned_training_jobs(self, hpo_job: HyperparameterTuningJob) -> None:
        """Delete the TrainingJobs belonging to a tuning job.

        Raises ``RuntimeError`` if any job could not be deleted or the listing
        failed, signalling that the caller should retry.
        """
        hpo_job_name = hpo_job.spec.hyper_parameter_tuning_job_name
        namespace = hpo_job.metadata.namespace

        errors: list[BaseException] = []
        futures: list[Future[None]] = []
        with ThreadPoolExecutor() as pool:
            try:
                for summary in self._training_job_summaries(hpo_job_name):
                    futures.append(
                        pool.submit(
                            self._delete_spawned_training_job,
                            summary.training_job_name,
                            namespace,
                        )
                    )
            except Exception as err:  # noqa: BLE001 - collected and re-raised below
                self.log.info("Error while getting training jobs: %s", err)
                errors.append(err)

        errors[:0] = [f.exception() for f in futures if f.exception() is not None]

        if errors:
            raise RuntimeError(
                f"Error(s) occurred while deleting spawned training jobs: {errors!r}"
            ) from errors[0]

    def _training_job_summaries(
        self, hpo_job_name: str | None
    ) -> Iterator[HyperParameterTrainingJobSummary]:
        pages = self.sagemaker_client.list_training_jobs_for_hyper_parameter_tuning_job(
            hpo_job_name
        )
        for page in pages:
            page = list(page)
            self.log.info("Got a page of TrainingJobs (length %d)", len(page))
            yield from page

    def _spawn_if_missing(
        self,
        training_job_name: str,
        namespace: str,
        region: str | None,
        endpoint: str | None,
    ) -> None:
        try:
            if self._exists_in_kubernetes(training_job_name, namespace):
                return
        except Exception as err:  # noqa: BLE001
            self.log.info(
                "Unable to check if TrainingJob spawn needed because get failed: %s", err
            )
            return

        try:
            self._spawn_in_kubernetes(training_job_name, namespace, region, endpoint)
        except Exception as err:  # noqa: BLE001
            self.log.info("Unable to spawn missing training job: %s", err)

    def _exists_in_kubernetes(self, training_job_name: str, namespace: str) -> bool:
        try:
            self.k8s_client.get(
                NamespacedName(namespace=namespace, name=training_job_name), TrainingJob
            )
        except NotFoundError:
            return False
        return True

    def _spawn_in_kubernetes(
        self,
        training_job_name: str,
        namespace: str,
        region: str | None,
        endpoint: str | None,
    ) -> None:
        try:
            spec = self._kubernetes_spec(training_job_name)
        except Exception as err:
            raise RuntimeError(f"Unable to create job spec: {err}") from err

        # Fields that the SageMaker description does not carry.
        spec["region"] = region
        spec["sageMakerEndpoint"] = endpoint

        job = TrainingJob(
            metadata=ObjectMeta(
                name=training_job_name,
                namespace=namespace,
                finalizers=[HPO_TRAINING_JOB_OWNERSHIP_FINALIZER],
            ),
            spec=spec,
        )
        try:
            self.k8s_client.create(job)
        except Exception as err:
            raise RuntimeError(f"Unable to create k8s job: {err}") from err

        self.log.info("Successfully spawned TrainingJob %s", training_job_name)

    def _kubernetes_spec(self, training_job_name: str) -> dict[str, Any]:
        try:
            description = self.sagemaker_client.describe_training_job(training_job_name)
        except Exception as err:
            raise RuntimeError(
                f"Unable to get TrainingJob description from SageMaker: {err}"
            ) from err
        if description is None:
            raise RuntimeError("Unable to get TrainingJob description from SageMaker")
        return dict(self.spec_from_description(description))

    def _delete_spawned_training_job(self, training_job_name: str, namespace: str) -> None:
        key = NamespacedName(namespace=namespace, name=training_job_name)
        try:
            job = self.k8s_client.get(key, TrainingJob)
        except Exception as err:
            if ignore_not_found(err) is None:
                return
            raise

        needs_remove_finalizer = job.metadata.has_finalizer(
            HPO_TRAINING_JOB_OWNERSHIP_FINALIZER
        )
        needs_delete = not job.metadata.has_deletion_timestamp()

        if needs_remove_finalizer:
            self.log.info("Removing HPO ownership finalizer from %s", training_job_name)
            job.metadata.remove_finalizer(HPO_TRAINING_JOB_OWNERSHIP_FINALIZER)
            try:
                self.k8s_client.update(job)
            except Exception as err:
                if ignore_not_found(err) is None:
                    return
                raise

        if needs_delete:
            self.log.info("Deleting TrainingJob %s", training_job_name)
            try:
                self.k8s_client.delete(job)
            except Exception as err:
                if ignore_not_found(err) is None:
                    return
                raise