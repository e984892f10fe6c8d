"""Install the R packages a VAST species-distribution workflow needs.

Each package is installed through ``Rscript``: skipped when already
present, otherwise installed from CRAN, a custom repository or GitHub and
then verified. Installations are independent of each other.
GitHub packages need the ``remotes`` package, which is installed first
when missing.
"""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Collection, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from loguru import logger

from dropjob.errors import PackageInstallError
from dropjob.types import InstallResult

type Source = Literal["cran", "github", "repository"]
type CommandRunner = Callable[..., subprocess.CompletedProcess[str]]

CRAN_MIRROR = "https://cloud.r-project.org"
RSTUDIO_CRAN = "https://cran.rstudio.com"
INLA_REPOSITORY = "https://inla.r-inla-download.org/R/stable"

log = logger.bind(component="packages")


def _r_str(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _r_named_vector(values: Mapping[str, str]) -> str:
    items = ", ".join(f"{name} = {_r_str(v)}" for name, v in values.items())
    return f"c({items})"


@dataclass(frozen=True, slots=True)
class PackageSpec:
    """One package to install.

    Attributes:
        name: R package name.
        source: Where it comes from.
        location: GitHub ``owner/repo[/subdir]`` or repository URL; for CRAN
            an optional mirror URL.
        configure_args: Native-library configure flags, keyed by package.
        install_opts: Extra ``R CMD INSTALL`` options.
        build_from_source: Force a source build (CRAN only).
        dependencies: Also install suggested dependencies.
    """

    name: str
    source: Source = "cran"
    location: str | None = None
    configure_args: Mapping[str, str] = field(default_factory=dict)
    install_opts: tuple[str, ...] = ()
    build_from_source: bool = False
    dependencies: bool = False

    def r_expression(self) -> str:
        """The R call that installs this package."""
        args: list[str] = []
        match self.source:
            case "cran":
                call = "install.packages"
                args.append(_r_str(self.name))
                if self.build_from_source:
                    args.append('type = "source"')
                args.append(f"repos = {_r_str(self.location or CRAN_MIRROR)}")
            case "repository":
                if not self.location:
                    raise ValueError(f"Package {self.name} needs a repository URL")
                call = "install.packages"
                args.append(_r_str(self.name))
                args.append(
                    f'repos = c(getOption("repos"), {self.name} = {_r_str(self.location)})'
                )
            case "github":
                if not self.location:
                    raise ValueError(f"Package {self.name} needs a GitHub location")
                call = "remotes::install_github"
                args.append(_r_str(self.location))
                args.append("upgrade = \"never\"")
            case _:
                raise ValueError(f"Unknown package source: {self.source!r}")

        if self.dependencies:
            args.append("dependencies = TRUE")
        if self.install_opts:
            args.append(f"INSTALL_opts = {_r_str(' '.join(self.install_opts))}")
        if self.configure_args:
            args.append(f"configure.args = {_r_named_vector(self.configure_args)}")
        return f"{call}({', '.join(args)})"


_UDUNITS_LIB = {"udunits2": "--with-udunits2-lib=/usr/local/lib"}
_UDUNITS_INCLUDE = {"udunits2": "--with-udunits2-include=/usr/include/udunits2"}

REMOTES = PackageSpec("remotes")

VAST_PACKAGES: tuple[PackageSpec, ...] = (
    PackageSpec("TMB", "github", "kaskr/adcomp/TMB"),
    PackageSpec("INLA", "repository", INLA_REPOSITORY, dependencies=True),
    PackageSpec("udunits2", "cran", RSTUDIO_CRAN, configure_args=_UDUNITS_LIB, build_from_source=True),
    PackageSpec("units", "cran", RSTUDIO_CRAN, configure_args={"units": _UDUNITS_LIB["udunits2"]}, build_from_source=True),
    PackageSpec(
        "FishStatsUtils", "github", "james-thorson/FishStatsUtils",
        configure_args=_UDUNITS_INCLUDE, install_opts=("--no-staged-install",),
    ),
    PackageSpec(
        "VAST", "github", "james-thorson/VAST",
        configure_args=_UDUNITS_INCLUDE, install_opts=("--no-staged-install",),
    ),
    PackageSpec("FishData", "github", "james-thorson/FishData"),
    PackageSpec("here"),
)


class PackageInstaller:
    """Install PackageSpecs with Rscript.

    Args:
        rscript: Rscript executable.
        runner: ``subprocess.run``-compatible callable.
        timeout: Seconds allowed per Rscript invocation.
    """

    def __init__(
        self,
        rscript: str = "Rscript",
        runner: CommandRunner = subprocess.run,
        timeout: float | None = 3600,
    ) -> None:
        self.rscript = rscript
        self._run = runner
        self.timeout = timeout
        self._remotes_ready = False

    def _rscript(self, expression: str) -> subprocess.CompletedProcess[str]:
        return self._run(
            [self.rscript, "-e", expression],
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )

    def is_installed(self, spec: PackageSpec) -> bool:
        check = f"quit(status = if (requireNamespace({_r_str(spec.name)}, quietly = TRUE)) 0 else 1)"
        return self._rscript(check).returncode == 0

    def install(self, spec: PackageSpec) -> InstallResult:
        """Install one package unless it is already present.

        Raises:
            PackageInstallError: If R fails or the package still cannot be loaded.
        """
        bound = log.bind(package=spec.name)
        if self.is_installed(spec):
            bound.info("{name} already installed, skipping", name=spec.name)
            return InstallResult(package=spec.name, installed=False, skipped=True)

        if spec.source == "github":
            self._ensure_remotes()

        bound.info("Installing {name} from {source}", name=spec.name, source=spec.source)
        verify = f"if (!requireNamespace({_r_str(spec.name)}, quietly = TRUE)) quit(status = 1)"
        proc = self._rscript(f"{spec.r_expression()}; {verify}")
        if proc.returncode != 0:
            raise PackageInstallError(spec.name, proc.returncode, proc.stderr or proc.stdout)

        bound.info("Installed {name}", name=spec.name)
        return InstallResult(package=spec.name, installed=True)

    def _ensure_remotes(self) -> None:
        # GitHub installs go through remotes::install_github.
        if not self._remotes_ready:
            self.install(REMOTES)
            self._remotes_ready = True

    def install_all(
        self,
        specs: Iterable[PackageSpec] = VAST_PACKAGES,
        required: Collection[str] | None = None,
    ) -> list[InstallResult]:
        """Install each package independently.

        A failure raises only for packages in ``required`` (default: all of
        them); other failures are logged and reported in the results.
        """
        results: list[InstallResult] = []
        for spec in specs:
            try:
                results.append(self.install(spec))
            except PackageInstallError as e:
                if required is None or spec.name in required:
                    raise
                log.bind(package=spec.name).warning("Optional package failed: {err}", err=e)
                results.append(InstallResult(package=spec.name, installed=False, error=str(e)))
        return results


def find_package(name: str, specs: Iterable[PackageSpec] = VAST_PACKAGES) -> PackageSpec:
    for spec in specs:
        if spec.name == name:
            return spec
    raise KeyError(f"Unknown package '{name}'")


def as_spec(raw: Mapping[str, Any]) -> PackageSpec:
    """Build a PackageSpec from a config table."""
    data = dict(raw)
    if "install_opts" in data:
        data["install_opts"] = tuple(data["install_opts"])
    return PackageSpec(**data)


__all__ = [
    "PackageInstaller",
    "PackageSpec",
    "REMOTES",
    "VAST_PACKAGES",
    "as_spec",
    "find_package",
]
