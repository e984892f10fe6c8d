"""Tests for the remote job runner's sequencing, using fakes for every collaborator."""

from __future__ import annotations

import pytest

from dropjob import compute
from dropjob.errors import (
    ContainerPullError,
    DigitalOceanError,
    RunnerStateError,
    SSHConnectError,
)
from dropjob.runner import JobConfig, RemoteJobRunner, RunState, run_remote
from dropjob.targets import Sequential, SessionTarget

pytestmark = [pytest.mark.unit, pytest.mark.timeout(30)]

JOB = JobConfig(image="cgrandin/vast:latest", name="vast-test")


@compute
def add(a: int, b: int) -> int:
    return a + b


@compute
def expression_e() -> int:
    return 10


def _runner(manager, puller, connector) -> RemoteJobRunner:
    return RemoteJobRunner(JOB, manager, puller, connector)


class TestSuccessfulRun:
    def test_state_sequence(self, fakes) -> None:
        manager, puller, connector, _ = fakes()
        runner = _runner(manager, puller, connector)

        runner.create_instance()
        runner.pull_image()
        runner.open_session()
        runner.activate()
        d1 = runner.submit(add(1, 2))
        d2 = runner.submit(add(3, 4))
        assert runner.resolve(d1) == 3
        assert runner.resolve(d2) == 7
        runner.teardown()

        assert runner.history == [
            RunState.INIT,
            RunState.INSTANCE_CREATED,
            RunState.IMAGE_PULLED,
            RunState.SESSION_OPEN,
            RunState.PLAN_ACTIVE,
            RunState.SUBMITTED,
            RunState.SUBMITTED,
            RunState.RESOLVED,
            RunState.RESOLVED,
            RunState.TORN_DOWN,
        ]

    def test_collaborator_calls_in_order(self, fakes, calls) -> None:
        manager, puller, connector, _ = fakes()
        runner = _runner(manager, puller, connector)

        instance = runner.create_instance()
        runner.pull_image()
        runner.open_session()
        runner.activate()
        runner.teardown()

        assert calls == [
            ("create", "vast-test"),
            ("pull", instance.id, "cgrandin/vast:latest"),
            ("connect", "203.0.113.10", "cgrandin/vast:latest"),
            ("close",),
            ("destroy", instance.id),
        ]
        assert manager.live == {}

    def test_activate_targets_the_session(self, fakes) -> None:
        manager, puller, connector, worker = fakes()
        runner = _runner(manager, puller, connector)
        runner.create_instance()
        runner.pull_image()
        runner.open_session()

        target = runner.activate()

        assert isinstance(target, SessionTarget)
        assert target.session is worker


class TestFailFast:
    def test_create_failure_issues_nothing_else(self, fakes, calls) -> None:
        manager, puller, connector, _ = fakes(create_error=DigitalOceanError("quota exceeded"))
        runner = _runner(manager, puller, connector)

        with pytest.raises(DigitalOceanError, match="quota exceeded"):
            runner.create_instance()

        assert calls == [("create", "vast-test")]
        assert runner.state is RunState.INIT

    def test_pull_failure_leaves_instance_running(self, fakes, calls) -> None:
        manager, puller, connector, _ = fakes(
            pull_error=ContainerPullError("cgrandin/vast:latest", 1, "manifest unknown")
        )
        runner = _runner(manager, puller, connector)
        instance = runner.create_instance()

        with pytest.raises(ContainerPullError):
            runner.pull_image()

        assert [c[0] for c in calls] == ["create", "pull"]
        assert instance.id in manager.live
        assert runner.state is RunState.INSTANCE_CREATED

    def test_session_failure_propagates_unchanged(self, fakes, calls) -> None:
        error = SSHConnectError("auth failed")
        manager, puller, connector, _ = fakes(connect_error=error)
        runner = _runner(manager, puller, connector)
        runner.create_instance()
        runner.pull_image()

        with pytest.raises(SSHConnectError) as exc:
            runner.open_session()

        assert exc.value is error
        assert "destroy" not in [c[0] for c in calls]


class TestStepOrder:
    def test_pull_before_create_is_rejected(self, fakes) -> None:
        runner = _runner(*fakes()[:3])
        with pytest.raises(RunnerStateError):
            runner.pull_image()

    def test_submit_before_activate_is_rejected(self, fakes) -> None:
        runner = _runner(*fakes()[:3])
        runner.create_instance()
        with pytest.raises(RunnerStateError):
            runner.submit(add(1, 1))

    def test_teardown_twice_is_rejected(self, fakes) -> None:
        runner = _runner(*fakes()[:3])
        runner.create_instance()
        runner.teardown()
        with pytest.raises(RunnerStateError):
            runner.teardown()

    def test_teardown_without_instance_destroys_nothing(self, fakes, calls) -> None:
        runner = _runner(*fakes()[:3])
        runner.teardown()
        assert calls == []
        assert runner.history == [RunState.INIT, RunState.TORN_DOWN]


class TestTargetBinding:
    def test_submission_keeps_its_original_target(self, fakes) -> None:
        manager, puller, connector, worker = fakes(gated=True)
        runner = _runner(manager, puller, connector)
        runner.create_instance()
        runner.pull_image()
        runner.open_session()
        remote = runner.activate()

        before = runner.submit(add(2, 3))
        runner.use(Sequential())
        after = runner.submit(add(5, 5))

        assert before.target is worker
        assert isinstance(after.target, Sequential)
        worker.gate.set()
        assert runner.resolve(before) == 5
        assert runner.resolve(after) == 10
        assert worker.executed == ["add"]
        assert remote.session is worker


class TestResolution:
    def test_resolution_blocks_until_worker_finishes(self, fakes) -> None:
        manager, puller, connector, worker = fakes(gated=True)
        runner = _runner(manager, puller, connector)
        runner.create_instance()
        runner.pull_image()
        runner.open_session()
        runner.activate()

        deferred = runner.submit(add(1, 1))
        with pytest.raises(TimeoutError):
            runner.resolve(deferred, timeout=0.2)
        assert not deferred.done()

        worker.gate.set()
        assert runner.resolve(deferred) == 2

    def test_worker_error_passes_through(self, fakes) -> None:
        manager, puller, connector, _ = fakes()
        runner = _runner(manager, puller, connector)
        runner.create_instance()
        runner.pull_image()
        runner.open_session()
        runner.activate()

        class ModelDidNotConverge(Exception):
            pass

        error = ModelDidNotConverge("max gradient 0.3")

        def fit() -> None:
            raise error

        deferred = runner.submit(fit)
        with pytest.raises(ModelDidNotConverge) as exc:
            runner.resolve(deferred)
        assert exc.value is error
        assert runner.state is RunState.SUBMITTED

    def test_end_to_end_fake_remote(self, fakes) -> None:
        manager, puller, connector, worker = fakes(gated=True)
        runner = _runner(manager, puller, connector)
        runner.create_instance()
        runner.pull_image()
        runner.open_session()
        runner.activate()

        deferred = runner.submit(expression_e())
        assert not deferred.done()

        worker.gate.set()
        assert runner.resolve(deferred) == 10

        runner.teardown()
        assert runner.state is RunState.TORN_DOWN
        assert manager.live == {}


class TestProvisionedScope:
    def test_tears_down_on_success(self, fakes, calls) -> None:
        manager, puller, connector, _ = fakes()
        runner = _runner(manager, puller, connector)

        with runner.provisioned():
            assert runner.resolve(runner.submit(add(20, 22))) == 42

        assert runner.state is RunState.TORN_DOWN
        assert calls[-2:] == [("close",), ("destroy", "100")]

    def test_tears_down_on_error_in_body(self, fakes, calls) -> None:
        manager, puller, connector, _ = fakes()
        runner = _runner(manager, puller, connector)

        with pytest.raises(RuntimeError, match="boom"), runner.provisioned():
            raise RuntimeError("boom")

        assert ("terminate",) in calls
        assert calls[-1] == ("destroy", "100")
        assert manager.live == {}

    def test_tears_down_when_pull_fails(self, fakes, calls) -> None:
        manager, puller, connector, _ = fakes(pull_error=ContainerPullError("a/b:c", 1))
        runner = _runner(manager, puller, connector)

        with pytest.raises(ContainerPullError), runner.provisioned():
            pytest.fail("body must not run")

        assert [c[0] for c in calls] == ["create", "pull", "destroy"]
        assert runner.history[-1] is RunState.TORN_DOWN

    def test_no_destroy_when_create_fails(self, fakes, calls) -> None:
        manager, puller, connector, _ = fakes(create_error=DigitalOceanError("invalid size"))
        runner = _runner(manager, puller, connector)

        with pytest.raises(DigitalOceanError), runner.provisioned():
            pytest.fail("body must not run")

        assert calls == [("create", "vast-test")]

    def test_run_remote_returns_results_in_order(self, fakes) -> None:
        manager, puller, connector, _ = fakes()
        results = run_remote(JOB, [add(1, 2), expression_e(), lambda: "done"], manager, puller, connector)
        assert results == [3, 10, "done"]
        assert manager.live == {}


class TestJobConfig:
    def test_generated_name(self) -> None:
        name = JobConfig(image="a/b:c").droplet_name
        assert name.startswith("dropjob-")
        assert len(name) == len("dropjob-") + 8

    def test_generated_name_is_stable(self) -> None:
        job = JobConfig(image="a/b:c")
        assert job.droplet_name == job.droplet_name == job.name
        assert JobConfig(image="a/b:c").name != job.name

    def test_explicit_name(self) -> None:
        assert JOB.droplet_name == "vast-test"
