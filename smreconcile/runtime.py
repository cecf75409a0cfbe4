"""Reconcile results, API errors and an in-memory Kubernetes object store."""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from smreconcile.resources import NamespacedName

T = TypeVar("T")


@dataclass(frozen=True)
class Result:
    """Outcome of one reconciliation pass.

    ``requeue`` asks for an immediate retry; ``requeue_after`` asks for a retry
    once the interval has passed. A zero interval means no delayed retry.
    """

    requeue: bool = False
    requeue_after: timedelta = timedelta(0)


class NotFoundError(Exception):
    """The requested Kubernetes object does not exist."""

    def __init__(self, kind: str, key: NamespacedName) -> None:
        super().__init__(f'{kind} "{key}" not found')
        self.kind = kind
        self.key = key


class RequestFailure(Exception):
    """A SageMaker API request that failed with an HTTP error response."""

    def __init__(
        self, code: str, message: str, status_code: int, request_id: str = ""
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.request_id = request_id
        super().__init__(str(self))

    def __str__(self) -> str:
        return (
            f"{self.code}: {self.message}\n"
            f"\tstatus code: {self.status_code}, request id: {self.request_id}"
        )


def no_requeue() -> Result:
    """Finish reconciling without scheduling another pass."""
    return Result()


def requeue_immediately() -> Result:
    """Ask for another pass straight away."""
    return Result(requeue=True)


def requeue_after_interval(interval: timedelta, err: BaseException | None) -> Result:
    """Ask for another pass after ``interval``; raise ``err`` if one is given."""
    if err is not None:
        raise err
    return Result(requeue_after=interval)


def requeue_if_error(err: BaseException | None) -> Result:
    """Raise ``err`` so the caller retries with backoff; otherwise stop requeueing."""
    if err is not None:
        raise err
    return Result()


def requeue_immediately_unless_generation_changed(
    prev_generation: int, curr_generation: int
) -> Result:
    """Requeue now unless a spec change already triggers a new pass."""
    if prev_generation == curr_generation:
        return requeue_immediately()
    return no_requeue()


def ignore_not_found(err: BaseException | None) -> BaseException | None:
    """Drop ``NotFoundError``; pass any other error (or ``None``) through."""
    if isinstance(err, NotFoundError):
        return None
    return err


def now() -> datetime:
    """Current UTC time at whole-second precision, as Kubernetes stores it."""
    return datetime.now(timezone.utc).replace(microsecond=0)


class KubernetesClient:
    """Thread-safe in-memory store with Kubernetes object semantics.

    Objects are kept per type and namespaced name. Deleting an object that
    still carries finalizers only marks it for deletion; it is removed once an
    update leaves it without finalizers. Plain updates do not touch the status,
    and the generation grows whenever the spec changes.
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[type, NamespacedName], Any] = {}
        self._lock = threading.RLock()

    def get(self, key: NamespacedName, kind: type[T]) -> T:
        """Return a copy of the stored object of ``kind`` under ``key``."""
        with self._lock:
            try:
                stored = self._objects[(kind, key)]
            except KeyError:
                raise NotFoundError(kind.__name__, key) from None
            return copy.deepcopy(stored)

    def create(self, obj: Any) -> None:
        """Store a new object; raise ``ValueError`` if it already exists."""
        with self._lock:
            slot = (type(obj), obj.metadata.namespaced_name)
            if slot in self._objects:
                raise ValueError(
                    f'{type(obj).__name__} "{obj.metadata.namespaced_name}" already exists'
                )
            stored = copy.deepcopy(obj)
            if not stored.metadata.uid:
                stored.metadata.uid = str(uuid.uuid4())
            stored.metadata.generation = 1
            stored.metadata.deletion_timestamp = None
            self._objects[slot] = stored
            self._sync_metadata(obj, stored)

    def update(self, obj: Any) -> None:
        """Replace metadata and spec of a stored object, keeping its status."""
        with self._lock:
            slot, stored = self._lookup(obj)
            updated = copy.deepcopy(obj)
            updated.metadata.uid = stored.metadata.uid
            updated.metadata.deletion_timestamp = stored.metadata.deletion_timestamp
            updated.metadata.generation = stored.metadata.generation + (
                0 if updated.spec == stored.spec else 1
            )
            if hasattr(stored, "status"):
                updated.status = copy.deepcopy(stored.status)
            if updated.metadata.has_deletion_timestamp() and not updated.metadata.finalizers:
                del self._objects[slot]
            else:
                self._objects[slot] = updated
            self._sync_metadata(obj, updated)

    def update_status(self, obj: Any) -> None:
        """Replace only the status of a stored object."""
        with self._lock:
            _, stored = self._lookup(obj)
            stored.status = copy.deepcopy(obj.status)
            self._sync_metadata(obj, stored)

    def delete(self, obj: Any) -> None:
        """Delete an object, or mark it for deletion while finalizers remain."""
        with self._lock:
            slot, stored = self._lookup(obj)
            if not stored.metadata.finalizers:
                del self._objects[slot]
            elif not stored.metadata.has_deletion_timestamp():
                stored.metadata.deletion_timestamp = now()
            obj.metadata.deletion_timestamp = stored.metadata.deletion_timestamp

    def _lookup(self, obj: Any) -> tuple[tuple[type, NamespacedName], Any]:
        key = obj.metadata.namespaced_name
        slot = (type(obj), key)
        try:
            return slot, self._objects[slot]
        except KeyError:
            raise NotFoundError(type(obj).__name__, key) from None

    @staticmethod
    def _sync_metadata(target: Any, source: Any) -> None:
        target.metadata.uid = source.metadata.uid
        target.metadata.generation = source.metadata.generation
        target.metadata.deletion_timestamp = source.metadata.deletion_timestamp