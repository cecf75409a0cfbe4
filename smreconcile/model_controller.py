"""Reconcile Kubernetes Model resources with SageMaker models."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Mapping, NoReturn, Sequence

from smreconcile.hpo_status import (
    INITIALIZING_JOB_STATUS,
    SAGEMAKER_RESOURCE_FINALIZER_NAME,
)
from smreconcile.resources import Model, ModelSpec, NamespacedName
from smreconcile.runtime import (
    NotFoundError,
    RequestFailure,
    Result,
    no_requeue,
    now,
    requeue_after_interval,
    requeue_immediately,
)

CREATED_STATUS = "Created"
"""The desired model exists in SageMaker."""

DELETED_STATUS = "Deleted"
"""The model has been deleted in SageMaker."""

ERROR_STATUS = "Error"
"""An error occurred during reconciliation."""

SAGEMAKER_MAX_NAME_LENGTH = 63

SpecComparator = Callable[[Mapping[str, Any], ModelSpec], Sequence[Any]]


class ReconcileAction(Enum):
    """What must happen in SageMaker to match the desired model."""

    NEEDS_CREATE = "NeedsCreate"
    NEEDS_DELETE = "NeedsDelete"
    NEEDS_UPDATE = "NeedsUpdate"
    NEEDS_NOOP = "NeedsNoop"


@dataclass
class _Context:
    model: Model
    sagemaker_client: Any = None
    description: Mapping[str, Any] | None = None


def generate_model_name(model: Model) -> str:
    """SageMaker name for a model: its name plus its UID, at most 63 characters."""
    name = model.metadata.name
    postfix = "-" + model.metadata.uid.replace("-", "")
    full = name + postfix
    if len(full) > SAGEMAKER_MAX_NAME_LENGTH:
        full = name[: max(0, SAGEMAKER_MAX_NAME_LENGTH - len(postfix))] + postfix
    return full


def _wrap(message: str, err: BaseException) -> RuntimeError:
    wrapped = RuntimeError(f"{message}: {err}")
    wrapped.__cause__ = err
    return wrapped


def _is_model_not_found(err: BaseException) -> bool:
    return (
        isinstance(err, RequestFailure)
        and err.status_code == 400
        and err.code == "ValidationException"
        and "Could not find model" in err.message
    )


def _create_model_input(spec: ModelSpec, model_name: str) -> dict[str, Any]:
    request = {
        "ModelName": model_name,
        "ExecutionRoleArn": spec.execution_role_arn,
        "PrimaryContainer": spec.primary_container,
        "Containers": spec.containers or None,
        "VpcConfig": spec.vpc_config,
        "EnableNetworkIsolation": spec.enable_network_isolation,
        "Tags": spec.tags or None,
    }
    return {key: value for key, value in request.items() if value is not None}


class ModelReconciler:
    """Drive a Kubernetes Model and its SageMaker model towards the same state.

    ``config_loader(region, endpoint)`` returns the AWS configuration handed to
    ``sagemaker_client_factory``. The SageMaker client provides
    ``describe_model(name)``, ``create_model(request)`` and
    ``delete_model(name)``, raising ``RequestFailure`` on error responses.
    ``spec_comparator(description, spec)`` returns the differences between a
    model description and the desired spec; empty means they match.
    """

    def __init__(
        self,
        client: Any,
        sagemaker_client_factory: Callable[[Any], Any],
        config_loader: Callable[[str | None, str | None], Any],
        spec_comparator: SpecComparator,
        poll_interval: timedelta,
        log: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.sagemaker_client_factory = sagemaker_client_factory
        self.config_loader = config_loader
        self.spec_comparator = spec_comparator
        self.poll_interval = poll_interval
        self.log = log if log is not None else logging.getLogger(__name__)

    def reconcile(self, request: NamespacedName) -> Result:
        """Run one reconciliation pass for the model under ``request``."""
        try:
            model = self.client.get(request, Model)
        except NotFoundError as err:
            self.log.info("Unable to fetch Model %s: %s", request, err)
            return no_requeue()
        except Exception as err:  # noqa: BLE001 - retried immediately
            self.log.info("Unable to fetch Model %s: %s", request, err)
            return requeue_immediately()

        try:
            self._reconcile_model(_Context(model=model))
        except Exception as err:  # noqa: BLE001 - retried immediately
            self.log.info("Got error while reconciling %s, will retry: %s", request, err)
            return requeue_immediately()
        return requeue_after_interval(self.poll_interval, None)

    def determine_action(
        self, desired_model: Model, actual_model: Mapping[str, Any] | None
    ) -> ReconcileAction:
        """Decide how to bring SageMaker in line with the desired model."""
        if desired_model.metadata.has_deletion_timestamp():
            if actual_model is not None:
                return ReconcileAction.NEEDS_DELETE
            return ReconcileAction.NEEDS_NOOP

        if actual_model is None:
            return ReconcileAction.NEEDS_CREATE

        differences = list(self.spec_comparator(actual_model, desired_model.spec))
        self.log.info(
            "Compared existing model to desired model (equal=%s, differences=%s)",
            not differences,
            differences,
        )
        if not differences:
            return ReconcileAction.NEEDS_NOOP
        return ReconcileAction.NEEDS_UPDATE

    def _reconcile_model(self, ctx: _Context) -> None:
        model = ctx.model

        if not model.status.status:
            self._update_status(ctx, INITIALIZING_JOB_STATUS)

        try:
            config = self.config_loader(model.spec.region, model.spec.sagemaker_endpoint)
            ctx.sagemaker_client = self.sagemaker_client_factory(config)
        except Exception as err:  # noqa: BLE001
            self._raise_with_status(ctx, ERROR_STATUS, _wrap("Unable to initialize operator", err))
        self.log.info("Loaded AWS config")

        if not model.metadata.has_deletion_timestamp() and not model.metadata.has_finalizer(
            SAGEMAKER_RESOURCE_FINALIZER_NAME
        ):
            model.metadata.add_finalizer(SAGEMAKER_RESOURCE_FINALIZER_NAME)
            try:
                self.client.update(model)
            except Exception as err:
                raise _wrap("Failed to add finalizer", err) from err
            self.log.info("Finalizer has been added")

        model_name = generate_model_name(model)

        try:
            ctx.description = self._describe(ctx.sagemaker_client, model_name)
        except Exception as err:  # noqa: BLE001
            self._raise_with_status(
                ctx, ERROR_STATUS, _wrap("Unable to get SageMaker Model description", err)
            )

        try:
            action = self.determine_action(model, ctx.description)
        except Exception as err:  # noqa: BLE001
            self._raise_with_status(
                ctx, ERROR_STATUS, _wrap("Unable to determine action for SageMaker Model.", err)
            )
        self.log.info("Determined action for model: %s", action.value)

        if action in (ReconcileAction.NEEDS_DELETE, ReconcileAction.NEEDS_UPDATE):
            try:
                self._delete(ctx.sagemaker_client, model_name)
            except Exception as err:  # noqa: BLE001
                self._raise_with_status(ctx, ERROR_STATUS, _wrap("Unable to delete SageMaker model", err))
            ctx.description = None

        if action in (ReconcileAction.NEEDS_CREATE, ReconcileAction.NEEDS_UPDATE):
            try:
                ctx.description = self._create(ctx.sagemaker_client, model.spec, model_name)
            except Exception as err:  # noqa: BLE001
                self._raise_with_status(ctx, ERROR_STATUS, _wrap("Unable to create SageMaker model", err))

        self._update_status(ctx, CREATED_STATUS if ctx.description is not None else DELETED_STATUS)

        if model.metadata.has_deletion_timestamp():
            model.metadata.remove_finalizer(SAGEMAKER_RESOURCE_FINALIZER_NAME)
            try:
                self.client.update(model)
            except Exception as err:
                raise _wrap("Failed to remove finalizer", err) from err
            self.log.info("Finalizer has been removed")

    @staticmethod
    def _describe(sagemaker_client: Any, model_name: str) -> Mapping[str, Any] | None:
        try:
            return sagemaker_client.describe_model(model_name)
        except RequestFailure as err:
            if _is_model_not_found(err):
                return None
            raise

    @staticmethod
    def _delete(sagemaker_client: Any, model_name: str) -> None:
        try:
            sagemaker_client.delete_model(model_name)
        except RequestFailure as err:
            if not _is_model_not_found(err):
                raise _wrap("Unable to delete SageMaker Model", err) from err

    def _create(
        self, sagemaker_client: Any, spec: ModelSpec, model_name: str
    ) -> Mapping[str, Any]:
        try:
            sagemaker_client.create_model(_create_model_input(spec, model_name))
        except Exception as err:
            raise _wrap("Unable to create SageMaker Model", err) from err

        try:
            description = self._describe(sagemaker_client, model_name)
        except Exception as err:
            raise _wrap("Unable to get SageMaker model description", err) from err

        if description is None:
            raise RuntimeError("Creation failed, model does not exist after creation")
        return description

    def _raise_with_status(self, ctx: _Context, status: str, error: BaseException) -> NoReturn:
        try:
            self._update_status(ctx, status, str(error))
        except Exception as status_err:
            raise RuntimeError(
                "Unable to update status with error. Status failure was caused by: "
                f"'{status_err}': {error}"
            ) from error
        raise error

    def _update_status(self, ctx: _Context, status: str, additional: str = "") -> None:
        model_status = ctx.model.status
        model_status.status = status
        model_status.additional = additional
        model_status.model_arn = ""
        model_status.sagemaker_model_name = ""
        if ctx.description is not None:
            model_status.sagemaker_model_name = ctx.description.get("ModelName") or ""
            model_status.model_arn = ctx.description.get("ModelArn") or ""
        model_status.last_check_time = now()

        self.log.info("Updating status to %s (additional: %s)", status, additional)
        try:
            self.client.update_status(ctx.model)
        except Exception as err:
            raise _wrap("Unable to update status", err) from err