# smreconcile

Reconciliation logic for two kinds of cluster resources that stand for work in a
managed machine-learning service.

- **Hyperparameter tuning jobs.** `smreconcile.hpo_controller.HyperparameterTuningJobReconciler`
  does several jobs in one pass:
  - It sets an initial status.
  - It adds its finalizer and generates a service-side name when the spec has none.
  - It creates the tuning job in the service and then follows its status.
  - It records the training-job status counters and the best training job.
  - It marks the resource `Failed` if the spec no longer matches the service's
    description.

  When the resource is being deleted, it does one of three things. A running job
  is stopped. A job that is stopping is polled. For a finished job (`Completed`,
  `Failed` or `Stopped`), it deletes the mirrored training jobs and removes the
  finalizer.
- **Models.** `smreconcile.model_controller.ModelReconciler` works out a
  `ReconcileAction`: create, delete, update or no-op. It then creates and/or deletes
  the service-side model so that it matches the spec, and writes the status:
  - `Created` when the model exists in the service.
  - `Deleted` when it does not.
  - `Error` together with the error message when a step fails.

  `generate_model_name(model)` appends the resource's UID, without dashes, to its
  name. It shortens the name so that the result fits in 63 characters.

`smreconcile.spawner.HpoTrainingJobSpawner` mirrors the training jobs that a tuning
job started:

- `spawn_missing_training_jobs(hpo_job)` creates a cluster `TrainingJob` for every
  listed training job that is not there yet. It works in the tuning job's namespace,
  region and endpoint. Each job it creates carries the
  `sagemaker-operator-hpo-trainingjob` finalizer. Failures are logged, not raised.
- `delete_spawned_training_jobs(hpo_job)` removes that finalizer and deletes the
  jobs. It raises `RuntimeError` if any of them could not be handled, or if the
  listing failed.

`smreconcile.hpo_status` holds `HpoJobStatus` and a few helpers:

- `status_counters_from_description`
- `convert_training_job_summary`
- `is_not_found_response`
- `is_throttling_response`

## Install

```
pip install smreconcile
```

The package has no runtime dependencies. To run the tests:

```
pip install "smreconcile[test]"
pytest
```

## Shape of the API

The reconcilers take their collaborators as arguments:

- **`client`** — a cluster object store with `get(key, kind)`, `create(obj)`,
  `update(obj)`, `update_status(obj)` and `delete(obj)`.
  `smreconcile.runtime.KubernetesClient` is an in-memory, thread-safe store of this
  kind:
  - Deleting an object that still has finalizers only marks it for deletion.
  - An update that leaves such an object without finalizers removes it.
  - A plain update never touches the status.
- **`config_loader(region, endpoint)`** — returns a configuration value, which is
  handed to `sagemaker_client_factory(config)`.
- **The service client** — made by the factory. Its failed calls raise
  `smreconcile.runtime.RequestFailure`, which carries a code, a message, a status
  code and a request id.
- **`spec_comparator(description, spec)`** — returns the list of differences. An
  empty list means the two match.
- **For tuning jobs only:**
  - `spawner_factory(client, log, sagemaker_client)` builds the spawner.
  - `name_generator(uid, name, max_length)` makes the service-side name.

`reconcile(request)` takes a `NamespacedName` and returns a `smreconcile.runtime.Result`.
A `Result` says one of three things:

- `requeue=True`: run again at once.
- A non-zero `requeue_after`: run again after the poll interval.
- Neither: do not requeue.

The two reconcilers treat errors differently:

- `ModelReconciler` turns any error into an immediate requeue.
- `HyperparameterTuningJobReconciler` raises cluster errors, other than a missing
  object, to its caller.

```python
from datetime import timedelta

from smreconcile.model_controller import ModelReconciler
from smreconcile.resources import Model, ModelSpec, NamespacedName, ObjectMeta
from smreconcile.runtime import KubernetesClient

store = KubernetesClient()
store.create(
    Model(
        metadata=ObjectMeta(name="my-model", namespace="default"),
        spec=ModelSpec(region="us-east-1", execution_role_arn="role-arn"),
    )
)

reconciler = ModelReconciler(
    client=store,
    sagemaker_client_factory=lambda config: my_service_client,
    config_loader=lambda region, endpoint: {"region": region, "endpoint": endpoint},
    spec_comparator=lambda description, spec: [],
    poll_interval=timedelta(seconds=30),
)
result = reconciler.reconcile(NamespacedName(namespace="default", name="my-model"))
```

## What the package does not do

- There is no controller process, command or watch loop. Something else must call
  `reconcile` and act on the `Result`.
- There is no client for a real cluster or for the service.
- There is no configuration loader, no spec comparator and no name generator for
  tuning jobs. These are supplied by the caller.
- There is no conversion from a training-job description to a `TrainingJob` spec.
  The spawner takes this as its `spec_from_description` argument.
- Resource definitions are not installed into a cluster.