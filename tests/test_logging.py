from __future__ import annotations

from pathlib import Path

import pytest
from loguru import logger

from dropjob.container import ContainerPuller
from dropjob.observability import LogConfig, setup_logging, teardown_logging

pytestmark = [pytest.mark.unit]


def _pull(fake_transport, instance) -> None:
    ContainerPuller(lambda _: fake_transport()).pull(instance, "a/b:c")


class TestLogging:
    def test_disabled_by_default(self, fake_transport, instance) -> None:
        captured: list[str] = []
        hid = logger.add(captured.append, format="{message}")
        try:
            _pull(fake_transport, instance)
        finally:
            logger.remove(hid)
        assert captured == []

    def test_file_sink_includes_context(self, tmp_path: Path, fake_transport, instance) -> None:
        log_file = tmp_path / "logs" / "dropjob.log"
        ids = setup_logging(LogConfig(console=False, file=str(log_file)))
        try:
            _pull(fake_transport, instance)
        finally:
            teardown_logging(ids)

        text = log_file.read_text()
        assert "[component=container droplet=42 image=a/b:c] - Pulling a/b:c on vast-1" in text
        assert "Pulled a/b:c" in text

    def test_teardown_disables_again(self, tmp_path: Path, fake_transport, instance) -> None:
        teardown_logging(setup_logging(LogConfig(console=False, file=str(tmp_path / "x.log"))))

        captured: list[str] = []
        hid = logger.add(captured.append, format="{message}")
        try:
            _pull(fake_transport, instance)
        finally:
            logger.remove(hid)
        assert captured == []

    def test_console_only(self) -> None:
        ids = setup_logging(LogConfig(file=None))
        try:
            assert len(ids) == 1
        finally:
            teardown_logging(ids)

    def test_runner_removes_its_handlers(self, tmp_path: Path, fakes) -> None:
        from dropjob.runner import JobConfig, RemoteJobRunner

        log_file = tmp_path / "run.log"
        runner = RemoteJobRunner(
            JobConfig(image="a/b:c", name="logged"),
            *fakes()[:3],
            logging=LogConfig(console=False, file=str(log_file)),
        )
        runner.run(lambda: 1)

        assert "Run finished" in log_file.read_text()
        assert runner._log_handlers == []
