"""Deferred computation layer for dropjob.

- PendingCompute[R]: an unevaluated call, created by a @compute function
- Deferred[R]: handle to a submitted computation; result() blocks
- submit(target, work): bind work to a target; never blocks
- gather(): resolve several handles in order

The target is always explicit. A Deferred is bound to the target it was
submitted to; choosing another target later does not move it.

Example:
    from dropjob import compute, submit, gather, Sequential

    @compute
    def fit(year: int) -> float:
        ...

    d1 = submit(target, fit(2019))
    d2 = submit(target, fit(2020))
    r1, r2 = gather(d1, d2)

    # Submit and resolve in one step
    r = fit(2021) >> target
"""

from __future__ import annotations

import functools
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dropjob.targets import Target


@dataclass(frozen=True, slots=True)
class PendingCompute[R]:
    """A call that has not been executed yet.

    Created by calling a @compute decorated function. Nothing runs until
    it is submitted to a target.
    """

    fn: Callable[..., R]
    args: tuple[Any, ...] = ()
    kwargs: tuple[tuple[str, Any], ...] = ()
    name: str = ""

    @property
    def kwargs_dict(self) -> dict[str, Any]:
        return dict(self.kwargs)

    def __call__(self) -> R:
        """Evaluate in the current process."""
        return self.fn(*self.args, **self.kwargs_dict)

    def __rshift__(self, target: Target) -> R:
        """Submit to ``target`` and block for the result."""
        return submit(target, self).result()


class ComputeFunction[**P, R]:
    """A function whose calls produce PendingCompute instead of running."""

    def __init__(self, fn: Callable[P, R]) -> None:
        self.fn = fn
        functools.update_wrapper(self, fn)

    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> PendingCompute[R]:
        return PendingCompute(
            fn=self.fn,
            args=args,
            kwargs=tuple(kwargs.items()),
            name=getattr(self.fn, "__name__", ""),
        )

    def local(self, *args: P.args, **kwargs: P.kwargs) -> R:
        """Run immediately in this process, bypassing deferral."""
        return self.fn(*args, **kwargs)


def compute[**P, R](fn: Callable[P, R]) -> ComputeFunction[P, R]:
    """Decorator: make calls to ``fn`` deferred."""
    return ComputeFunction(fn)


class Deferred[R]:
    """Handle to a submitted computation.

    Submission never blocks. ``result()`` blocks until the computation
    finishes, then returns its exact value or re-raises its exact exception.
    The outcome is computed once.
    """

    __slots__ = ("_future", "_evaluate", "_on_cancel", "_lock", "target", "name")

    def __init__(
        self,
        future: Future[R],
        target: Any,
        name: str = "",
        *,
        evaluate: Callable[[], R] | None = None,
        on_cancel: Callable[[], bool | None] | None = None,
    ) -> None:
        self._future = future
        self._evaluate = evaluate
        self._on_cancel = on_cancel
        self._lock = threading.Lock()
        self.target = target
        self.name = name

    @classmethod
    def lazy(cls, evaluate: Callable[[], R], target: Any, name: str = "") -> Deferred[R]:
        """A Deferred evaluated in the caller's thread on first access."""
        return cls(Future(), target, name, evaluate=evaluate)

    def _force(self) -> None:
        with self._lock:
            evaluate, self._evaluate = self._evaluate, None
            if evaluate is None or not self._future.set_running_or_notify_cancel():
                return
            try:
                value = evaluate()
            except BaseException as e:
                self._future.set_exception(e)
            else:
                self._future.set_result(value)

    def done(self) -> bool:
        """Whether the outcome is available without blocking."""
        return self._future.done()

    def running(self) -> bool:
        return self._future.running()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def result(self, timeout: float | None = None) -> R:
        """Block until finished and return the value.

        Raises:
            TimeoutError: If ``timeout`` elapses first. The computation keeps
                running; call cancel() to stop it.
            Exception: Whatever the computation raised.
        """
        self._force()
        return self._future.result(timeout)

    def exception(self, timeout: float | None = None) -> BaseException | None:
        self._force()
        return self._future.exception(timeout)

    def cancel(self) -> bool:
        """Cancel queued work, or ask the target to stop running work.

        Returns False if the computation already finished, or if the target
        reports (by returning False from its hook) that it could not stop it.
        """
        if self._future.cancel():
            return True
        if self._future.done() or self._on_cancel is None:
            return False
        return self._on_cancel() is not False

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled() else "done" if self.done() else "pending"
        return f"<Deferred {self.name or '?'} {state} on {type(self.target).__name__}>"


def as_pending(work: PendingCompute[Any] | Callable[[], Any]) -> PendingCompute[Any]:
    """Normalize submitted work to a PendingCompute."""
    match work:
        case PendingCompute():
            return work
        case _ if callable(work):
            return PendingCompute(fn=work, name=getattr(work, "__name__", ""))
        case _:
            raise TypeError(f"Cannot submit {type(work).__name__}; expected PendingCompute or callable")


def submit[R](target: Target, work: PendingCompute[R] | Callable[[], R]) -> Deferred[R]:
    """Submit ``work`` to ``target``. Never blocks."""
    return target.submit(as_pending(work))


def gather(*deferreds: Deferred[Any], timeout: float | None = None) -> tuple[Any, ...]:
    """Resolve handles in order and return their values."""
    return tuple(d.result(timeout) for d in deferreds)


def cancel(deferred: Deferred[Any]) -> bool:
    """Cancel a submitted computation. See Deferred.cancel."""
    return deferred.cancel()


__all__ = [
    "ComputeFunction",
    "Deferred",
    "PendingCompute",
    "as_pending",
    "cancel",
    "compute",
    "gather",
    "submit",
]
