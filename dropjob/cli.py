"""Command-line interface.

    dropjob droplets list [--tag TAG]
    dropjob droplets destroy NAME
    dropjob packages list
    dropjob packages install [--only NAME ...] [--optional NAME ...]
    dropjob run JOB MODULE:FUNCTION [ARG ...]
"""

from __future__ import annotations

import argparse
import importlib
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import cloudpickle
from rich.console import Console
from rich.table import Table

from dropjob.config import build_packages, build_provider, load_config, resolve_job
from dropjob.constants import MANAGED_TAG
from dropjob.errors import DropjobError
from dropjob.observability import LogConfig
from dropjob.packages import PackageInstaller, find_package
from dropjob.pending import PendingCompute
from dropjob.providers.digitalocean import DropletManager

console = Console()


def _load_function(spec: str) -> Callable[..., Any]:
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected MODULE:FUNCTION, got {spec!r}")
    cwd = Path.cwd()
    if str(cwd) not in sys.path:
        sys.path.insert(0, str(cwd))
    try:
        module = importlib.import_module(module_name)
    except ModuleNotFoundError as e:
        raise ValueError(f"Cannot import {module_name!r}: {e}") from e
    # Workers cannot import modules from the local working directory.
    source = getattr(module, "__file__", None)
    if source and Path(source).resolve().is_relative_to(cwd.resolve()):
        cloudpickle.register_pickle_by_value(module)
    try:
        return getattr(module, attr)
    except AttributeError as e:
        raise ValueError(f"Module {module_name!r} has no function {attr!r}") from e


def _droplets_list(args: argparse.Namespace) -> int:
    manager = DropletManager(build_provider(load_config()["provider"]))
    table = Table(title="Droplets")
    for column in ("ID", "Name", "Region", "Size", "IP", "Status"):
        table.add_column(column)
    for d in manager.list(tag=None if args.all else args.tag):
        table.add_row(d.id, d.name, d.region, d.size, d.ip or "-", d.status)
    console.print(table)
    return 0


def _droplets_destroy(args: argparse.Namespace) -> int:
    manager = DropletManager(build_provider(load_config()["provider"]))
    if manager.destroy(args.name):
        console.print(f"[green]Destroyed[/green] {args.name}")
    else:
        console.print(f"[yellow]Nothing to destroy[/yellow] for {args.name}")
    return 0


def _packages_list(args: argparse.Namespace) -> int:
    table = Table(title="Packages")
    for column in ("Name", "Source", "Location", "R expression"):
        table.add_column(column)
    for spec in build_packages(load_config()):
        table.add_row(spec.name, spec.source, spec.location or "-", spec.r_expression())
    console.print(table)
    return 0


def _packages_install(args: argparse.Namespace) -> int:
    specs = build_packages(load_config())
    if args.only:
        specs = tuple(find_package(name, specs) for name in args.only)
    required = {s.name for s in specs} - set(args.optional or ())
    results = PackageInstaller(rscript=args.rscript).install_all(specs, required=required)
    for r in results:
        status = "skipped" if r.skipped else "installed" if r.ok else f"[red]failed[/red]: {r.error}"
        console.print(f"{r.package}: {status}")
    return 0 if all(r.ok for r in results) else 1


def _run(args: argparse.Namespace) -> int:
    fn = _load_function(args.function)
    resolved = resolve_job(args.job)
    logging = LogConfig(level="DEBUG" if args.verbose else "INFO")
    work = PendingCompute(fn=fn, args=tuple(args.args), name=args.function)
    (result,) = resolved.runner(logging=logging).run(work)
    console.print(result)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dropjob", description="Run Python on DigitalOcean droplets")
    sub = parser.add_subparsers(dest="command", required=True)

    droplets = sub.add_parser("droplets", help="Manage droplets").add_subparsers(dest="action", required=True)
    ls = droplets.add_parser("list", help="List droplets")
    ls.add_argument("--tag", default=MANAGED_TAG)
    ls.add_argument("--all", action="store_true", help="Ignore the tag filter")
    ls.set_defaults(handler=_droplets_list)
    rm = droplets.add_parser("destroy", help="Destroy a droplet by name or id")
    rm.add_argument("name")
    rm.set_defaults(handler=_droplets_destroy)

    packages = sub.add_parser("packages", help="R package installation").add_subparsers(dest="action", required=True)
    packages.add_parser("list", help="Show configured packages").set_defaults(handler=_packages_list)
    install = packages.add_parser("install", help="Install configured packages")
    install.add_argument("--only", nargs="+", metavar="NAME")
    install.add_argument("--optional", nargs="+", metavar="NAME", help="Packages whose failure is not fatal")
    install.add_argument("--rscript", default="Rscript")
    install.set_defaults(handler=_packages_install)

    run = sub.add_parser("run", help="Run MODULE:FUNCTION on a fresh droplet")
    run.add_argument("job")
    run.add_argument("function")
    run.add_argument("args", nargs="*")
    run.add_argument("-v", "--verbose", action="store_true")
    run.set_defaults(handler=_run)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.handler(args)
    except KeyError as e:
        # KeyError quotes its message in str().
        console.print(f"[red]error:[/red] {e.args[0] if e.args else e}")
        return 1
    except (DropjobError, ValueError) as e:
        console.print(f"[red]error:[/red] {e}")
        return 1
