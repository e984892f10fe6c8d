from __future__ import annotations

import os.path
import sys
from pathlib import Path
from unittest.mock import MagicMock

import cloudpickle
import pytest
from rich.console import Console

from dropjob import cli
from dropjob.errors import DigitalOceanError
from dropjob.pending import PendingCompute
from dropjob.serialization import deserialize, serialize
from dropjob.types import InstallResult, InstanceDescriptor

pytestmark = [pytest.mark.unit]


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("dropjob.config.GLOBAL_CONFIG_PATH", tmp_path / "no-global.toml")
    monkeypatch.setattr(cli, "console", Console(width=300))
    return tmp_path


@pytest.fixture
def manager(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    instance = MagicMock()
    monkeypatch.setattr(cli, "DropletManager", MagicMock(return_value=instance))
    return instance


class TestParser:
    def test_requires_command(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_run_arguments(self) -> None:
        args = cli.build_parser().parse_args(["run", "vast", "fit:index", "2019", "-v"])
        assert (args.job, args.function, args.args, args.verbose) == ("vast", "fit:index", ["2019"], True)


class TestDroplets:
    def test_list_filters_by_managed_tag(self, manager: MagicMock, capsys) -> None:
        manager.list.return_value = [
            InstanceDescriptor(id="7", name="vast-1", region="nyc3", size="s-2vcpu-4gb", ip="203.0.113.9", status="active")
        ]

        assert cli.main(["droplets", "list"]) == 0

        manager.list.assert_called_once_with(tag="dropjob")
        assert "vast-1" in capsys.readouterr().out

    def test_list_all(self, manager: MagicMock) -> None:
        manager.list.return_value = []
        cli.main(["droplets", "list", "--all"])
        manager.list.assert_called_once_with(tag=None)

    def test_destroy_missing(self, manager: MagicMock, capsys) -> None:
        manager.destroy.return_value = False

        assert cli.main(["droplets", "destroy", "ghost"]) == 0

        manager.destroy.assert_called_once_with("ghost")
        assert "Nothing to destroy" in capsys.readouterr().out

    def test_provider_error_exits_1(self, manager: MagicMock, capsys) -> None:
        manager.destroy.side_effect = DigitalOceanError("Unable to authenticate you")

        assert cli.main(["droplets", "destroy", "vast-1"]) == 1
        assert "Unable to authenticate you" in capsys.readouterr().out


class TestPackages:
    def test_list(self, capsys) -> None:
        assert cli.main(["packages", "list"]) == 0
        out = capsys.readouterr().out
        assert "FishStatsUtils" in out
        assert "INLA" in out

    def test_install_only_with_optional(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        installer = MagicMock()
        installer.install_all.return_value = [
            InstallResult("TMB", installed=True),
            InstallResult("INLA", installed=False, error="exit 1"),
        ]
        factory = MagicMock(return_value=installer)
        monkeypatch.setattr(cli, "PackageInstaller", factory)

        code = cli.main(["packages", "install", "--only", "TMB", "INLA", "--optional", "INLA"])

        assert code == 1
        factory.assert_called_once_with(rscript="Rscript")
        specs, = installer.install_all.call_args.args
        assert [s.name for s in specs] == ["TMB", "INLA"]
        assert installer.install_all.call_args.kwargs["required"] == {"TMB"}
        assert "failed" in capsys.readouterr().out

    def test_install_unknown_package(self, capsys) -> None:
        assert cli.main(["packages", "install", "--only", "sdmTMB"]) == 1
        assert "error: Unknown package 'sdmTMB'" in capsys.readouterr().out

    def test_packages_from_project_config(self, isolated_config: Path, capsys) -> None:
        (isolated_config / "dropjob.toml").write_text(
            '[[packages]]\nname = "sdmTMB"\nsource = "github"\nlocation = "pbs-assess/sdmTMB"\n'
        )
        cli.main(["packages", "list"])
        out = capsys.readouterr().out
        assert "sdmTMB" in out
        assert "FishStatsUtils" not in out


class TestRun:
    def test_runs_function_on_resolved_job(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        resolved = MagicMock()
        resolved.runner.return_value.run.return_value = ["EBS/2019"]
        resolve = MagicMock(return_value=resolved)
        monkeypatch.setattr(cli, "resolve_job", resolve)

        assert cli.main(["run", "vast", "os.path:join", "EBS", "2019"]) == 0

        resolve.assert_called_once_with("vast")
        (work,) = resolved.runner.return_value.run.call_args.args
        assert isinstance(work, PendingCompute)
        assert work.fn is os.path.join
        assert work.args == ("EBS", "2019")
        assert resolved.runner.call_args.kwargs["logging"].level == "INFO"
        assert "EBS/2019" in capsys.readouterr().out

    def test_bad_function_spec(self, capsys) -> None:
        assert cli.main(["run", "vast", "fit_index"]) == 1
        assert "Expected MODULE:FUNCTION" in capsys.readouterr().out

    def test_missing_module(self, capsys) -> None:
        assert cli.main(["run", "vast", "no_such_fitmod:index"]) == 1
        assert "Cannot import 'no_such_fitmod'" in capsys.readouterr().out

    def test_missing_function(self, capsys) -> None:
        assert cli.main(["run", "vast", "os.path:no_such_function"]) == 1
        assert "has no function 'no_such_function'" in capsys.readouterr().out

    def test_unknown_job(self, capsys) -> None:
        assert cli.main(["run", "nope", "os.path:join"]) == 1
        out = capsys.readouterr().out
        assert out.startswith("error: Job 'nope' not found")

    def test_local_module_travels_by_value(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (isolated_config / "fitmod.py").write_text("def index(region):\n    return region.lower()\n")
        monkeypatch.setattr(sys, "path", list(sys.path))
        resolved = MagicMock()
        resolved.runner.return_value.run.return_value = ["ebs"]
        monkeypatch.setattr(cli, "resolve_job", MagicMock(return_value=resolved))

        cli.main(["run", "vast", "fitmod:index", "EBS"])

        (work,) = resolved.runner.return_value.run.call_args.args
        module = sys.modules.pop("fitmod")
        try:
            payload = serialize(work)
            assert deserialize(payload)() == "ebs"
            assert "fitmod" not in sys.modules
        finally:
            cloudpickle.unregister_pickle_by_value(module)
