from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from dropjob.errors import SessionClosedError
from dropjob.pending import Deferred
from dropjob.types import CommandResult, InstanceDescriptor


class FakeManager:
    """InstanceManager that records calls and keeps droplets in memory."""

    def __init__(self, calls: list[tuple[Any, ...]], fail: Exception | None = None) -> None:
        self.calls = calls
        self.fail = fail
        self.live: dict[str, InstanceDescriptor] = {}

    def create(self, name, region=None, size=None, image=None) -> InstanceDescriptor:
        self.calls.append(("create", name))
        if self.fail is not None:
            raise self.fail
        instance = InstanceDescriptor(
            id=str(100 + len(self.live)),
            name=name,
            region=region or "nyc3",
            size=size or "s-2vcpu-4gb",
            ip="203.0.113.10",
            status="active",
        )
        self.live[instance.id] = instance
        return instance

    def list(self, tag=None) -> list[InstanceDescriptor]:
        return list(self.live.values())

    def destroy(self, target) -> bool:
        key = target.id if isinstance(target, InstanceDescriptor) else target
        self.calls.append(("destroy", key))
        return self.live.pop(key, None) is not None


class FakePuller:
    def __init__(self, calls: list[tuple[Any, ...]], fail: Exception | None = None) -> None:
        self.calls = calls
        self.fail = fail

    def pull(self, instance: InstanceDescriptor, image: str) -> None:
        self.calls.append(("pull", instance.id, image))
        if self.fail is not None:
            raise self.fail


class FakeWorker:
    """WorkerSession that runs calls on one thread, optionally held behind a gate."""

    def __init__(self, calls: list[tuple[Any, ...]], gated: bool = False) -> None:
        self.calls = calls
        self.gate = threading.Event()
        if not gated:
            self.gate.set()
        self.executed: list[str] = []
        self.closed = False
        self._executor = ThreadPoolExecutor(max_workers=1)

    def _run(self, fn, args, kwargs):
        self.gate.wait(timeout=5)
        if self.closed:
            raise SessionClosedError("worker terminated")
        self.executed.append(getattr(fn, "__name__", "?"))
        return fn(*args, **kwargs)

    def submit(self, fn, /, *args, **kwargs) -> Deferred[Any]:
        future = self._executor.submit(self._run, fn, args, kwargs)
        return Deferred(future, self, getattr(fn, "__name__", ""), on_cancel=self.terminate)

    def terminate(self) -> None:
        self.calls.append(("terminate",))
        self.closed = True
        self.gate.set()

    def close(self) -> None:
        self.calls.append(("close",))
        self._executor.shutdown(wait=True)
        self.closed = True


class FakeConnector:
    def __init__(self, calls: list[tuple[Any, ...]], worker: FakeWorker, fail: Exception | None = None) -> None:
        self.calls = calls
        self.worker = worker
        self.fail = fail

    def connect(self, instance: InstanceDescriptor, image: str) -> FakeWorker:
        self.calls.append(("connect", instance.ip, image))
        if self.fail is not None:
            raise self.fail
        return self.worker


class FakeTransport:
    """Transport returning canned results."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.commands: list[tuple[str, float | None]] = []
        self.closed = False

    def run(self, command: str, timeout: float | None = None) -> CommandResult:
        self.commands.append((command, timeout))
        return CommandResult(command, self.returncode, self.stdout, self.stderr)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def calls() -> list[tuple[Any, ...]]:
    return []


@pytest.fixture
def fakes(calls):
    """Factory for (manager, puller, connector, worker) sharing one call log."""

    def make(
        *,
        create_error: Exception | None = None,
        pull_error: Exception | None = None,
        connect_error: Exception | None = None,
        gated: bool = False,
    ):
        worker = FakeWorker(calls, gated=gated)
        return (
            FakeManager(calls, create_error),
            FakePuller(calls, pull_error),
            FakeConnector(calls, worker, connect_error),
            worker,
        )

    return make


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def instance() -> InstanceDescriptor:
    return InstanceDescriptor(
        id="42", name="vast-1", region="nyc3", size="s-2vcpu-4gb", ip="203.0.113.7", status="active"
    )
