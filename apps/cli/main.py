"""CLI application for cratefix."""

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from cratefix.config import Settings, load_settings
from cratefix.errors import CratefixError
from cratefix.models import (
    AddRequest,
    DepKind,
    DepTable,
    OperationResult,
    RemoveRequest,
    SetVersionRequest,
    UpgradeMode,
    UpgradeRequest,
)
from cratefix.ops import add_dependencies, remove_dependencies, set_version, upgrade
from cratefix.registry import CratesRegistry
from cratefix.reporter import ChangeReporter
from cratefix.semver import BumpLevel

console = Console(soft_wrap=True)
logger = logging.getLogger("cratefix")

app = typer.Typer(
    name="cratefix",
    help="cratefix - Edit Cargo.toml dependencies and versions without disturbing formatting",
    add_completion=False,
)


def configure_logging(settings: Settings, verbose: bool) -> None:
    """Send library logs to stderr through rich."""
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level, logging.WARNING)
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.handlers = [handler]
    logger.setLevel(level)
    logger.propagate = False


def make_registry(settings: Settings, offline: bool) -> CratesRegistry:
    return CratesRegistry(
        index_url=settings.index_url,
        timeout=settings.timeout,
        max_concurrency=settings.max_concurrency,
        offline=offline or settings.offline,
    )


def dependency_table(dev: bool, build: bool, target: str | None) -> DepTable:
    if dev and build:
        raise CratefixError("--dev and --build cannot be used together")
    kind = DepKind.DEVELOPMENT if dev else DepKind.BUILD if build else DepKind.NORMAL
    return DepTable(kind, target)


def split_features(values: list[str] | None) -> list[str] | None:
    """Accept ``-F a,b`` as well as ``-F a -F b``."""
    if not values:
        return None
    features = []
    for value in values:
        for feature in value.replace(",", " ").split():
            if feature not in features:
                features.append(feature)
    return features


def report(result: OperationResult, format_type: str) -> None:
    """Print changes and errors, then exit 1 if anything failed."""
    reporter = ChangeReporter(result.changes)
    if format_type == "json":
        console.print_json(
            data={
                "changes": reporter.as_dicts(),
                "errors": [str(error) for error in result.errors],
                "written": result.written,
                "dry_run": result.dry_run,
            }
        )
    else:
        for line in reporter.lines():
            console.print(escape(line))
        for error in result.errors:
            console.print(f"Error: {escape(str(error))}", style="red")
        if result.dry_run and result.changes:
            console.print("warning: aborting due to dry run", style="yellow")
    if result.errors:
        raise typer.Exit(1)


def run(operation, format_type: str) -> OperationResult:
    """Call an operation, turning domain errors into exit code 1."""
    try:
        result = operation()
    except CratefixError as exc:
        if format_type == "json":
            console.print_json(data={"changes": [], "errors": [str(exc)], "written": [], "dry_run": False})
        else:
            console.print(f"Error: {escape(str(exc))}", style="red")
        raise typer.Exit(1)
    report(result, format_type)
    return result


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """cratefix - Edit Cargo.toml dependencies and versions."""
    settings = load_settings()
    configure_logging(settings, verbose)
    ctx.obj = settings


@app.command()
def add(
    ctx: typer.Context,
    crates: list[str] = typer.Argument(help="Crates to add: name, name@requirement or a path"),
    dev: bool = typer.Option(False, "--dev", "-D", help="Add as a development dependency"),
    build: bool = typer.Option(False, "--build", "-B", help="Add as a build dependency"),
    target: str | None = typer.Option(None, "--target", help="Add to the table of this target platform"),
    rename: str | None = typer.Option(None, "--rename", help="Key to declare the dependency under"),
    features: list[str] | None = typer.Option(None, "--features", "-F", help="Features to enable"),
    default_features: bool | None = typer.Option(
        None, "--default-features/--no-default-features", help="Enable or disable default features"
    ),
    optional: bool | None = typer.Option(None, "--optional/--no-optional", help="Mark the dependency optional"),
    registry: str | None = typer.Option(None, "--registry", help="Alternative registry name"),
    git: str | None = typer.Option(None, "--git", help="Git repository URL"),
    branch: str | None = typer.Option(None, "--branch", help="Git branch"),
    tag: str | None = typer.Option(None, "--tag", help="Git tag"),
    rev: str | None = typer.Option(None, "--rev", help="Git revision"),
    path: str | None = typer.Option(None, "--path", help="Filesystem path to the crate"),
    manifest_path: Path | None = typer.Option(None, "--manifest-path", help="Path to Cargo.toml"),
    offline: bool = typer.Option(False, "--offline", help="Do not access the network"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without writing"),
    format_type: str = typer.Option("text", "--format", help="Output format: text or json"),
) -> None:
    """Add dependencies to a manifest."""
    settings: Settings = ctx.obj

    def operation() -> OperationResult:
        request = AddRequest(
            names=crates,
            table=dependency_table(dev, build, target),
            rename=rename,
            features=split_features(features),
            default_features=default_features,
            optional=optional,
            registry=registry,
            git=git,
            branch=branch,
            tag=tag,
            rev=rev,
            path=path,
            dry_run=dry_run,
        )
        return add_dependencies(request, manifest_path, make_registry(settings, offline))

    run(operation, format_type)


@app.command("rm")
def remove(
    crates: list[str] = typer.Argument(help="Dependencies to remove"),
    dev: bool = typer.Option(False, "--dev", "-D", help="Remove from development dependencies"),
    build: bool = typer.Option(False, "--build", "-B", help="Remove from build dependencies"),
    target: str | None = typer.Option(None, "--target", help="Remove from the table of this target platform"),
    manifest_path: Path | None = typer.Option(None, "--manifest-path", help="Path to Cargo.toml"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without writing"),
    format_type: str = typer.Option("text", "--format", help="Output format: text or json"),
) -> None:
    """Remove dependencies from a manifest."""

    def operation() -> OperationResult:
        request = RemoveRequest(names=crates, table=dependency_table(dev, build, target), dry_run=dry_run)
        return remove_dependencies(request, manifest_path)

    run(operation, format_type)


@app.command("upgrade")
def upgrade_command(
    ctx: typer.Context,
    selectors: list[str] | None = typer.Argument(None, help="Dependencies to upgrade: name or name@requirement"),
    exclude: list[str] | None = typer.Option(None, "--exclude", help="Dependencies to leave alone"),
    compatible: UpgradeMode = typer.Option(UpgradeMode.ALLOW, "--compatible", help="Upgrade within the requirement"),
    incompatible: UpgradeMode = typer.Option(
        UpgradeMode.IGNORE, "--incompatible", help="Upgrade past the requirement"
    ),
    pinned: UpgradeMode = typer.Option(UpgradeMode.IGNORE, "--pinned", help="Upgrade pinned or renamed dependencies"),
    workspace: bool = typer.Option(False, "--workspace", help="Upgrade every manifest in the workspace"),
    manifest_path: Path | None = typer.Option(None, "--manifest-path", help="Path to Cargo.toml"),
    offline: bool = typer.Option(False, "--offline", help="Do not access the network"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without writing"),
    format_type: str = typer.Option("text", "--format", help="Output format: text or json"),
) -> None:
    """Upgrade dependency requirements to the latest published versions."""
    settings: Settings = ctx.obj

    def operation() -> OperationResult:
        request = UpgradeRequest(
            selectors=selectors or [],
            excludes=exclude or [],
            compatible=compatible,
            incompatible=incompatible,
            pinned=pinned,
            workspace=workspace,
            dry_run=dry_run,
        )
        return upgrade(request, manifest_path, make_registry(settings, offline))

    result = run(operation, format_type)
    if not result.changes:
        if format_type != "json":
            console.print("No upgrades available")
        raise typer.Exit(2)  # No changes exit code


@app.command("set-version")
def set_version_command(
    version: str | None = typer.Argument(None, help="Version to set"),
    bump: BumpLevel | None = typer.Option(None, "--bump", help="Increment the current version instead (default: release)"),
    metadata: str | None = typer.Option(None, "--metadata", "-m", help="Build metadata to attach"),
    exclude: list[str] | None = typer.Option(None, "--exclude", help="Packages to leave alone"),
    package: str | None = typer.Option(None, "--package", "-p", help="Workspace member to change"),
    workspace: bool = typer.Option(False, "--workspace", help="Change every package in the workspace"),
    strict: bool = typer.Option(False, "--strict", help="Restore written manifests if a later write fails"),
    manifest_path: Path | None = typer.Option(None, "--manifest-path", help="Path to Cargo.toml"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without writing"),
    format_type: str = typer.Option("text", "--format", help="Output format: text or json"),
) -> None:
    """Change a package's version and update its dependents in the workspace."""

    def operation() -> OperationResult:
        request = SetVersionRequest(
            version=version,
            bump=bump,
            metadata=metadata,
            excludes=exclude or [],
            package=package,
            workspace=workspace,
            strict=strict,
            dry_run=dry_run,
        )
        return set_version(request, manifest_path)

    run(operation, format_type)


if __name__ == "__main__":
    app()
