"""Remote Job Runner: the orchestration driver.

Drives one run through a fixed sequence of states:

    INIT -> INSTANCE_CREATED -> IMAGE_PULLED -> SESSION_OPEN -> PLAN_ACTIVE
         -> (SUBMITTED -> RESOLVED)* -> TORN_DOWN

Step methods run one transition each and never clean up after a failure:
if a step raises, the instance stays up until ``teardown()`` is called.
``provisioned()`` wraps the first four steps in a scope that always tears
down.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger

from dropjob.errors import RunnerStateError
from dropjob.observability import LogConfig, setup_logging, teardown_logging
from dropjob.pending import Deferred, PendingCompute, submit
from dropjob.targets import SessionTarget, Target
from dropjob.types import (
    ImagePuller,
    InstanceDescriptor,
    InstanceManager,
    SessionConnector,
    WorkerSession,
)


class RunState(StrEnum):
    INIT = "init"
    INSTANCE_CREATED = "instance_created"
    IMAGE_PULLED = "image_pulled"
    SESSION_OPEN = "session_open"
    PLAN_ACTIVE = "plan_active"
    SUBMITTED = "submitted"
    RESOLVED = "resolved"
    TORN_DOWN = "torn_down"


_ACTIVE = frozenset({RunState.PLAN_ACTIVE, RunState.SUBMITTED, RunState.RESOLVED})


@dataclass(frozen=True, slots=True)
class JobConfig:
    """What to run and where.

    Args:
        image: Container image, ``account/repository:tag``.
        name: Droplet name. Generated once, at construction, when omitted.
        region: Droplet region; provider default when None.
        size: Droplet size slug; provider default when None.
        droplet_image: Droplet image template; provider default when None.
    """

    image: str
    name: str | None = None
    region: str | None = None
    size: str | None = None
    droplet_image: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", f"dropjob-{uuid.uuid4().hex[:8]}")

    @property
    def droplet_name(self) -> str:
        return self.name or ""


class RemoteJobRunner:
    """Sequence droplet creation, image pull, worker session and submissions.

    Example:
        runner = RemoteJobRunner(job, manager, puller, connector)
        with runner.provisioned():
            d = runner.submit(fit_index(2019))
            index = runner.resolve(d)
    """

    def __init__(
        self,
        job: JobConfig,
        manager: InstanceManager,
        puller: ImagePuller,
        connector: SessionConnector,
        *,
        logging: LogConfig | None = None,
    ) -> None:
        self.job = job
        self.manager = manager
        self.puller = puller
        self.connector = connector
        self.state = RunState.INIT
        self.history: list[RunState] = [RunState.INIT]
        self.instance: InstanceDescriptor | None = None
        self.session: WorkerSession | None = None
        self.target: Target | None = None
        self._droplet_name = job.droplet_name
        self._log_handlers = setup_logging(logging) if logging else []
        self._log = logger.bind(component="runner", job=self._droplet_name)

    # -------------------------------------------------------------------------
    # State bookkeeping
    # -------------------------------------------------------------------------

    def _expect(self, step: str, *allowed: RunState) -> None:
        if self.state not in allowed:
            expected = " or ".join(s.name for s in allowed)
            raise RunnerStateError(step, self.state.name, expected)

    def _enter(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)
        self._log.debug("-> {state}", state=state.name)

    def _stop_logging(self) -> None:
        if self._log_handlers:
            teardown_logging(self._log_handlers)
            self._log_handlers = []

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def create_instance(self) -> InstanceDescriptor:
        self._expect("create instance", RunState.INIT)
        self.instance = self.manager.create(
            self._droplet_name,
            region=self.job.region,
            size=self.job.size,
            image=self.job.droplet_image,
        )
        self._enter(RunState.INSTANCE_CREATED)
        return self.instance

    def pull_image(self) -> None:
        self._expect("pull image", RunState.INSTANCE_CREATED)
        assert self.instance is not None
        self.puller.pull(self.instance, self.job.image)
        self._enter(RunState.IMAGE_PULLED)

    def open_session(self) -> WorkerSession:
        self._expect("open session", RunState.IMAGE_PULLED)
        assert self.instance is not None
        self.session = self.connector.connect(self.instance, self.job.image)
        self._enter(RunState.SESSION_OPEN)
        return self.session

    def activate(self) -> Target:
        """Make the remote session the target for subsequent submissions."""
        self._expect("activate", RunState.SESSION_OPEN)
        assert self.session is not None
        self.target = SessionTarget(self.session)
        self._enter(RunState.PLAN_ACTIVE)
        return self.target

    def use(self, target: Target) -> None:
        """Switch the target for later submissions; earlier ones keep theirs."""
        self._expect("change target", *_ACTIVE)
        self.target = target

    def submit[R](self, work: PendingCompute[R] | Callable[[], R]) -> Deferred[R]:
        """Submit to the current target. Never blocks."""
        self._expect("submit", *_ACTIVE)
        assert self.target is not None
        deferred = submit(self.target, work)
        self._enter(RunState.SUBMITTED)
        return deferred

    def resolve[R](self, deferred: Deferred[R], timeout: float | None = None) -> R:
        """Block for a submitted computation's result."""
        self._expect("resolve", RunState.SUBMITTED, RunState.RESOLVED)
        value = deferred.result(timeout)
        self._enter(RunState.RESOLVED)
        return value

    def teardown(self) -> None:
        """Close the session and destroy the instance."""
        self._expect("tear down", *(s for s in RunState if s is not RunState.TORN_DOWN))
        if self.session is not None:
            self.session.close()
        if self.instance is not None:
            self.manager.destroy(self.instance)
        self._enter(RunState.TORN_DOWN)
        self._log.info("Run finished: {states}", states=" -> ".join(s.name for s in self.history))
        self._stop_logging()

    # -------------------------------------------------------------------------
    # Scoped form
    # -------------------------------------------------------------------------

    @contextmanager
    def provisioned(self) -> Iterator[Target]:
        """Bring the run to PLAN_ACTIVE; tear down on every exit path."""
        try:
            self.create_instance()
            self.pull_image()
            self.open_session()
            yield self.activate()
        except BaseException:
            if self.state is not RunState.TORN_DOWN:
                self._release()
            raise
        else:
            if self.state is not RunState.TORN_DOWN:
                self.teardown()

    def _release(self) -> None:
        if self.session is not None:
            try:
                self.session.terminate()
            except Exception:
                self._log.exception("Terminating the session failed; destroying the instance anyway")
        if self.instance is not None:
            self.manager.destroy(self.instance)
        self._enter(RunState.TORN_DOWN)
        self._log.warning("Run aborted after {state}; instance released", state=self.history[-2].name)
        self._stop_logging()

    def run(self, *works: PendingCompute[Any] | Callable[[], Any]) -> list[Any]:
        """Provision, run every computation, tear down; return results in order."""
        with self.provisioned():
            deferreds = [self.submit(w) for w in works]
            return [self.resolve(d) for d in deferreds]


def run_remote(
    job: JobConfig,
    works: Sequence[PendingCompute[Any] | Callable[[], Any]],
    manager: InstanceManager,
    puller: ImagePuller,
    connector: SessionConnector,
    *,
    logging: LogConfig | None = None,
) -> list[Any]:
    """One-shot scoped run of ``works`` on a fresh instance."""
    runner = RemoteJobRunner(job, manager, puller, connector, logging=logging)
    return runner.run(*works)


__all__ = ["JobConfig", "RemoteJobRunner", "RunState", "run_remote"]
