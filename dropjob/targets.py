"""Execution targets: where submitted computations run.

- Sequential: in the calling process, evaluated on first result()
- Multiprocess: a local process pool
- SessionTarget: one established remote worker session
- RemoteList: a fixed list of remote sessions, used round-robin

Targets are passed explicitly to ``submit``. Each Deferred remembers the
target it was submitted to.
"""

from __future__ import annotations

import itertools
import os
import threading
from collections.abc import Sequence
from concurrent.futures import CancelledError, Future, ProcessPoolExecutor
from typing import Protocol, runtime_checkable

from dropjob.pending import Deferred, PendingCompute
from dropjob.serialization import deserialize, serialize
from dropjob.types import WorkerSession


@runtime_checkable
class Target(Protocol):
    """Anything that accepts PendingCompute and returns a Deferred."""

    def submit[R](self, work: PendingCompute[R]) -> Deferred[R]: ...


class Sequential:
    """Run in the calling process, when the result is first requested."""

    def submit[R](self, work: PendingCompute[R]) -> Deferred[R]:
        return Deferred.lazy(work, self, work.name)

    def __repr__(self) -> str:
        return "Sequential()"


def _run_serialized(payload: bytes) -> bytes:
    work = deserialize(payload)
    return serialize(work())


class Multiprocess:
    """Run in a local pool of worker processes.

    Work travels as cloudpickle bytes, so closures and lambdas are fine.
    """

    def __init__(self, workers: int | None = None) -> None:
        self.workers = workers or os.cpu_count() or 1
        self._executor: ProcessPoolExecutor | None = None
        self._lock = threading.Lock()

    def _pool(self) -> ProcessPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ProcessPoolExecutor(max_workers=self.workers)
            return self._executor

    def submit[R](self, work: PendingCompute[R]) -> Deferred[R]:
        raw = self._pool().submit(_run_serialized, serialize(work))
        result: Future[R] = Future()
        result.set_running_or_notify_cancel()

        def _unwrap(done: Future[bytes]) -> None:
            if done.cancelled():
                result.set_exception(CancelledError(f"{work.name or 'computation'} was cancelled"))
                return
            error = done.exception()
            if error is not None:
                result.set_exception(error)
                return
            try:
                result.set_result(deserialize(done.result()))
            except Exception as e:
                result.set_exception(e)

        raw.add_done_callback(_unwrap)
        return Deferred(result, self, work.name, on_cancel=raw.cancel)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait, cancel_futures=True)
                self._executor = None

    def __enter__(self) -> Multiprocess:
        return self

    def __exit__(self, *_: object) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"Multiprocess(workers={self.workers})"


class SessionTarget:
    """Run on one established remote worker session.

    Calls run one at a time on the worker, in submission order.
    """

    def __init__(self, session: WorkerSession) -> None:
        self.session = session

    def submit[R](self, work: PendingCompute[R]) -> Deferred[R]:
        deferred = self.session.submit(work.fn, *work.args, **work.kwargs_dict)
        deferred.name = work.name or deferred.name
        return deferred

    def __repr__(self) -> str:
        return f"SessionTarget({getattr(self.session, 'host', self.session)!r})"


class RemoteList:
    """Run on a fixed list of remote sessions, assigned round-robin."""

    def __init__(self, sessions: Sequence[WorkerSession]) -> None:
        if not sessions:
            raise ValueError("RemoteList needs at least one session")
        self.sessions = tuple(sessions)
        self._next = itertools.cycle(self.sessions)
        self._lock = threading.Lock()

    def submit[R](self, work: PendingCompute[R]) -> Deferred[R]:
        with self._lock:
            session = next(self._next)
        return SessionTarget(session).submit(work)

    def close(self) -> None:
        for session in self.sessions:
            session.close()

    def __len__(self) -> int:
        return len(self.sessions)

    def __repr__(self) -> str:
        return f"RemoteList({len(self.sessions)} sessions)"


__all__ = [
    "Multiprocess",
    "RemoteList",
    "Sequential",
    "SessionTarget",
    "Target",
]
