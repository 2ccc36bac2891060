from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import Settings
from .errors import ToolchainGuardError
from .ledger.ledger import Ledger
from .manifest.manifest import detect_clippy_utils_version
from .oracle.oracle import BuildOracle
from .schemas import OracleReport
from .toolchain.provider import RustupProvider, ToolchainProvider
from .transition.guard import TransitionRequest
from .upgrade import upgrade_package
from .utils import canonical_dumps, read_json
from .version import parse

app = typer.Typer(help="Verify, bisect and pin the minimum toolchain of a package")
console = Console()
err_console = Console(stderr=True)

PACKAGE_ARGUMENT = typer.Argument(..., exists=True, file_okay=False, resolve_path=True)
RUST_VERSION_OPTION = typer.Option(None, "--rust-version", help="Exact MAJOR.MINOR.PATCH target")
RUST_VERSION_REQUIRED_OPTION = typer.Option(..., "--rust-version")
ALLOW_DOWNGRADE_OPTION = typer.Option(False, "--allow-downgrade")
BISECT_OPTION = typer.Option(
    False, "--bisect", help="Search for the oldest toolchain that builds and tests the package"
)
CONFIG_OPTION = typer.Option(None, "--config", exists=True, dir_okay=False)
JSON_OPTION = typer.Option(False, "--json")
LEDGER_PATH_OPTION = typer.Option(..., "--path", exists=True, dir_okay=False)

ledger_app = typer.Typer(help="Ledger commands")


@app.callback()
def main() -> None:
    pass


def _load_settings(config: Optional[Path]) -> Settings:
    if config is None:
        return Settings()
    data = read_json(config)
    return Settings(**data)


def _make_provider() -> ToolchainProvider:
    return RustupProvider()


def _fail(exc: ToolchainGuardError) -> NoReturn:
    err_console.print(f"error: {exc.message}", markup=False, highlight=False, soft_wrap=True)
    raise typer.Exit(code=1)


@contextmanager
def _terminate_on_sigterm() -> Iterator[None]:
    # SystemExit unwinds through the oracle, which kills the child and restores the environment.
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _terminate(signum: int, _frame: object) -> None:
        raise SystemExit(128 + signum)

    previous = signal.signal(signal.SIGTERM, _terminate)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


@app.command("upgrade")
def upgrade_cmd(
    path: Path = PACKAGE_ARGUMENT,
    rust_version: Optional[str] = RUST_VERSION_OPTION,
    allow_downgrade: bool = ALLOW_DOWNGRADE_OPTION,
    bisect: bool = BISECT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    settings = _load_settings(config)
    try:
        request = TransitionRequest(
            requested_version=parse(rust_version) if rust_version else None,
            allow_downgrade=allow_downgrade,
            use_bisection=bisect,
        )
        ledger = Ledger(settings.ledger_for(path))
        with _terminate_on_sigterm():
            report = upgrade_package(
                path, request, provider=_make_provider(), settings=settings, ledger=ledger
            )
    except ToolchainGuardError as exc:
        _fail(exc)
    if json_output:
        print(canonical_dumps(report.model_dump(mode="json")).decode("utf-8"))
        return
    table = Table(title="Upgrade Summary")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("package", report.package)
    table.add_row("action", report.action + (" (fallback)" if report.fallback else ""))
    table.add_row("previous rust-version", report.previous_version or "-")
    table.add_row("rust-version", report.version)
    table.add_row("oracle calls", str(report.oracle_calls))
    for name, requirement in sorted(report.requirements.items()):
        table.add_row(name, requirement)
    if report.excluded:
        table.add_row("unavailable", ", ".join(report.excluded))
    console.print(table)


@app.command("verify")
def verify_cmd(
    path: Path = PACKAGE_ARGUMENT,
    rust_version: str = RUST_VERSION_REQUIRED_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    settings = _load_settings(config)
    try:
        version = parse(rust_version)
        oracle = BuildOracle(_make_provider(), settings, Ledger(settings.ledger_for(path)))
        with _terminate_on_sigterm():
            outcome = oracle.verify(version, path)
    except ToolchainGuardError as exc:
        _fail(exc)
    report = OracleReport(
        version=str(version),
        verdict=outcome.verdict,
        phase=outcome.phase,
        failure_atoms=list(outcome.failure_atoms),
        duration_ns=outcome.duration_ns,
        log=outcome.log,
    )
    if json_output:
        print(canonical_dumps(report.model_dump(mode="json")).decode("utf-8"))
    else:
        console.print(f"{report.verdict} {report.version}", markup=False, highlight=False)
        if report.log:
            err_console.print(report.log, markup=False, highlight=False, soft_wrap=True)
    if not outcome.passed:
        raise typer.Exit(code=1)


@app.command("detect")
def detect_cmd(path: Path = PACKAGE_ARGUMENT) -> None:
    try:
        version = detect_clippy_utils_version(path)
    except ToolchainGuardError as exc:
        _fail(exc)
    print(str(version))


@ledger_app.command("verify")
def ledger_verify_cmd(path: Path = LEDGER_PATH_OPTION) -> None:
    ok, reason = Ledger.verify_chain(path)
    console.print({"ok": ok, "reason": reason})
    if not ok:
        raise typer.Exit(code=1)


app.add_typer(ledger_app, name="ledger")

if __name__ == "__main__":
    app()
