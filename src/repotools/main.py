import copy
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .completion import get_completion_scripts
from .config import (
    INVALID_REPOSITORY_POLICIES,
    RepoToolsConfig,
    apply_config_data,
    create_sample_config,
    load_config,
    load_config_file,
    validate_config_values,
)
from .conflicts import ConflictReport, detect_conflicts
from .error_handling import (
    ConfigurationError,
    ErrorContext,
    ErrorLevel,
    RepoToolsError,
    ToolInvocationError,
    get_error_handler,
    redact_command,
    setup_error_handling,
)
from .feed_client import FeedClient
from .git_ops import install_hooks, pull_repository, repository_status
from .graph import build_dependency_graph
from .local_update import local_update
from .manifests import aggregate_dependencies
from .packaging import BuildTools, build_and_package, build_solution, publish_packages
from .reporting import ConsoleReporter
from .repositories import (
    Repository,
    get_repository,
    resolve_repository_set,
    selector_choices,
)
from .structured_logging import (
    configure_logging,
    log_command_complete,
    log_command_start,
)
from .tools import ToolRunner
from .versioning import resolve_version

__version__ = "1.0.0"

console = Console()
reporter = ConsoleReporter(console)
# Warnings go to stderr so piped graph and JSON output stays clean
warning_reporter = ConsoleReporter(Console(stderr=True))


def _workspace_path(config: RepoToolsConfig, value: str) -> Path:
    """Resolve a configured path relative to the workspace root."""
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = config.workspace.root_path / path
    return path


def _build_tools(config: RepoToolsConfig) -> BuildTools:
    return BuildTools(
        nuget=config.tools.nuget,
        msbuild=config.tools.msbuild,
        configuration=config.packaging.build_configuration,
    )


def _resolve_selectors(ctx, param, value) -> List[Repository]:
    config = ctx.find_object(RepoToolsConfig)
    try:
        return resolve_repository_set(
            value,
            config.workspace.root_path,
            config.workspace.repositories,
            config.workspace.source_dir,
        )
    except ConfigurationError as e:
        raise click.BadParameter(str(e))


def _resolve_single(ctx, param, value) -> Optional[Repository]:
    if value is None:
        return None
    config = ctx.find_object(RepoToolsConfig)
    try:
        return get_repository(
            value,
            config.workspace.root_path,
            config.workspace.repositories,
            config.workspace.source_dir,
        )
    except ConfigurationError as e:
        raise click.BadParameter(str(e))


def repository_selector(func):
    return click.option(
        "--repo",
        "-r",
        "repositories",
        multiple=True,
        metavar="REPOSITORY",
        callback=_resolve_selectors,
        help="Repository to include (repeatable). 'all' or no value selects every known repository.",
    )(func)


def repository_argument(func):
    return click.argument("repository", callback=_resolve_single)(func)


def _show_warning(context: ErrorContext) -> None:
    if context.level is ErrorLevel.WARNING:
        warning_reporter.warning(escape(context.message))


def _abort(command: str, error: Exception) -> None:
    """Report a failed command and exit with status 1."""
    reporter.error(escape(str(error)))
    if isinstance(error, ToolInvocationError):
        output = (error.stderr.strip() or error.stdout.strip()).splitlines()
        for line in output[-20:]:
            console.print(f"   {escape(line)}", style="dim red")
    reporter.print_banner(False, f"ERRORS OCCURRED - {command} aborted")
    log_command_complete(command, False, error=str(error))
    sys.exit(1)


def _finish(command: str, message: str, **kwargs) -> None:
    """Print the final verdict from the problems reported during the command."""
    error_handler = get_error_handler()
    if error_handler.has_errors():
        error_stats = {
            key: count
            for key, count in error_handler.get_error_stats().items()
            if key.endswith(("_ERROR", "_CRITICAL"))
        }
        reporter.print_banner(
            False, f"ERRORS OCCURRED - {command}: {sum(error_stats.values())} error(s)"
        )
        log_command_complete(command, False, error_stats=error_stats, **kwargs)
        sys.exit(1)

    reporter.print_banner(True, message)
    log_command_complete(command, True, **kwargs)


@click.group(invoke_without_command=True)
@click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False),
    help="Workspace directory holding the repositories (default from config or '.')",
)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, root, version):
    """
    🧰 repotools: automation for the product line's repositories

    Git housekeeping, package conflict audits, dependency graphs and
    build/pack/publish workflows across every repository.
    """
    if version:
        console.print(f"repotools version {__version__}", style="bold blue")
        ctx.exit()

    config = copy.deepcopy(load_config())
    if root:
        config.workspace.root = root

    level = config.logging.log_level.upper()
    configure_logging(level)
    error_handler = setup_error_handling(getattr(logging, level, logging.ERROR))
    error_handler.register_callback(_show_warning)
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@click.pass_obj
def repos(config: RepoToolsConfig):
    """List the known repositories and whether they are checked out."""
    repositories = resolve_repository_set(
        None,
        config.workspace.root_path,
        config.workspace.repositories,
        config.workspace.source_dir,
    )

    table = Table(title=f"📚 Repositories in {config.workspace.root_path}")
    table.add_column("Repository", style="bold")
    table.add_column("Checked out", justify="center")
    table.add_column("Git", justify="center")
    for repository in repositories:
        table.add_row(
            repository.name,
            "[green]yes[/green]" if repository.exists else "[red]missing[/red]",
            "[green]yes[/green]" if repository.is_git_repository else "[dim]no[/dim]",
        )
    console.print(table)


@cli.command()
@repository_selector
@click.pass_obj
def status(config: RepoToolsConfig, repositories: List[Repository]):
    """
    Show branch, sync state and local changes of each repository.

    Examples:

      repotools status

      repotools status -r Platform.Core -r Platform.Web
    """
    log_command_start("status", [r.name for r in repositories])
    runner = ToolRunner()
    statuses = []
    try:
        for repository in repositories:
            statuses.append(repository_status(repository, runner, config.tools.git))
    except RepoToolsError as e:
        if statuses:
            reporter.print_status_table(statuses)
        _abort("status", e)

    reporter.print_status_table(statuses)
    log_command_complete("status", True)


@cli.command()
@repository_selector
@click.pass_obj
def pull(config: RepoToolsConfig, repositories: List[Repository]):
    """Pull every selected repository, stopping at the first failure."""
    log_command_start("pull", [r.name for r in repositories])
    runner = ToolRunner()
    try:
        for repository in repositories:
            reporter.info(f"⬇️  Pulling {repository.name}")
            result = pull_repository(
                repository, runner, config.tools.git, config.tools.pull_args
            )
            for line in result.lines:
                console.print(f"   {line}", style="dim")
    except RepoToolsError as e:
        _abort("pull", e)

    _finish("pull", f"PULL COMPLETE - {len(repositories)} repositories updated")


@cli.group()
def hooks():
    """Git hook management commands."""
    pass


@hooks.command("install")
@repository_selector
@click.option(
    "--hooks-dir",
    type=click.Path(file_okay=False),
    help="Directory holding hook scripts (default: <root>/<workspace.hooks_dir>)",
)
@click.option(
    "--on-error",
    type=click.Choice(INVALID_REPOSITORY_POLICIES, case_sensitive=False),
    help="What to do with a repository that is not a git working copy (default from config)",
)
@click.pass_obj
def hooks_install(
    config: RepoToolsConfig,
    repositories: List[Repository],
    hooks_dir: Optional[str],
    on_error: Optional[str],
):
    """Copy the workspace's git hooks into each repository."""
    log_command_start("hooks install", [r.name for r in repositories])
    policy = (on_error or config.hooks.on_invalid_repository).lower()
    source_dir = Path(hooks_dir) if hooks_dir else _workspace_path(
        config, config.workspace.hooks_dir
    )

    try:
        result = install_hooks(repositories, source_dir, policy)
    except RepoToolsError as e:
        _abort("hooks install", e)

    reporter.print_hook_result(result)
    _finish(
        "hooks install",
        f"HOOKS INSTALLED - {len(result.installed)} repositories",
        skipped=result.skipped,
    )


def _conflict_report_json(report: ConflictReport, repositories: List[str]) -> str:
    conflicts = []
    for package_id, records in report.conflicting_records().items():
        group = next(g for g in report.conflicts if g.package_id == package_id)
        conflicts.append(
            {
                "package_id": package_id,
                "versions": sorted(group.versions),
                "references": [
                    {
                        "project": r.referencing_project,
                        "repository": r.repository,
                        "version": r.version,
                        "development_dependency": r.is_dev_dependency,
                    }
                    for r in records
                ],
            }
        )

    return json.dumps(
        {
            "repositories": repositories,
            "total_references": len(report.records),
            "total_packages": len(report.groups),
            "has_conflicts": report.has_conflicts,
            "conflicts": conflicts,
        },
        indent=2,
        ensure_ascii=False,
    )


@cli.command()
@repository_selector
@click.option(
    "--skip-dev",
    is_flag=True,
    help="Ignore packages marked as development dependencies",
)
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default="console",
    show_default=True,
    help="Output format for the report",
)
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the JSON report to a file")
@click.option("--show-all", is_flag=True, help="Also list packages used at a single version")
@click.pass_obj
def conflicts(
    config: RepoToolsConfig,
    repositories: List[Repository],
    skip_dev: bool,
    output_format: str,
    output: Optional[str],
    show_all: bool,
):
    """
    Report packages referenced at more than one version.

    Exits with status 1 when conflicts are found.

    Examples:

      repotools conflicts

      repotools conflicts --skip-dev --output-format json -o conflicts.json
    """
    names = [r.name for r in repositories]
    log_command_start("conflicts", names)
    if output and output_format != "json":
        raise click.UsageError("--output can only be used with --output-format json")

    try:
        records = aggregate_dependencies(repositories, config.workspace.manifest_name)
    except RepoToolsError as e:
        _abort("conflicts", e)

    report = detect_conflicts(records, skip_dev_dependencies=skip_dev)

    if output_format == "json":
        json_output = _conflict_report_json(report, names)
        if output:
            Path(output).write_text(json_output, encoding="utf-8")
            reporter.success(f"Report saved to {output}")
        else:
            click.echo(json_output)
    else:
        reporter.print_conflict_report(report, names, show_all)

    log_command_complete(
        "conflicts", True, conflict_count=len(report.conflicts)
    )
    if report.has_conflicts:
        sys.exit(1)


@cli.command()
@repository_selector
@click.option(
    "--skip-dev",
    is_flag=True,
    help="Ignore packages marked as development dependencies",
)
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the graph to a file instead of stdout")
@click.pass_obj
def graph(
    config: RepoToolsConfig,
    repositories: List[Repository],
    skip_dev: bool,
    output: Optional[str],
):
    """
    Print the project -> package dependency graph.

    Node lines '<index> <name>', a '#' line, then edge lines '<from> <to>'.
    """
    log_command_start("graph", [r.name for r in repositories])
    try:
        records = aggregate_dependencies(repositories, config.workspace.manifest_name)
    except RepoToolsError as e:
        _abort("graph", e)

    dependency_graph = build_dependency_graph(records, skip_dev_dependencies=skip_dev)

    if output:
        with open(output, "w", encoding="utf-8", newline="\n") as f:
            dependency_graph.write(f)
        reporter.success(
            f"Graph with {len(dependency_graph.nodes)} nodes and "
            f"{len(dependency_graph.edges)} edges saved to {output}"
        )
    else:
        click.echo(dependency_graph.render(), nl=False)

    log_command_complete("graph", True, edge_count=len(dependency_graph.edges))


@cli.command("version")
@repository_argument
@click.pass_obj
def version_command(config: RepoToolsConfig, repository: Repository):
    """Print the version of REPOSITORY taken from its latest tag."""
    try:
        click.echo(resolve_version(repository, ToolRunner(), config.tools.git))
    except RepoToolsError as e:
        _abort("version", e)


@cli.command()
@repository_argument
@click.pass_obj
def build(config: RepoToolsConfig, repository: Repository):
    """Restore and build the solution of REPOSITORY."""
    log_command_start("build", [repository.name])
    try:
        solution = build_solution(repository, ToolRunner(), _build_tools(config))
    except RepoToolsError as e:
        _abort("build", e)

    _finish("build", f"BUILD SUCCEEDED - {solution.name}")


def _pack(config: RepoToolsConfig, repository: Repository, version: Optional[str], runner: ToolRunner):
    version = version or resolve_version(repository, runner, config.tools.git)
    reporter.info(f"📦 Packaging {repository.name} {version}")
    packages = build_and_package(
        repository,
        version,
        runner,
        _workspace_path(config, config.packaging.output_dir),
        _build_tools(config),
    )
    for package in sorted(packages):
        console.print(f"  • {package}")
    return packages


@cli.command()
@repository_argument
@click.option("--version", "version", help="Package version (default: latest tag)")
@click.pass_obj
def pack(config: RepoToolsConfig, repository: Repository, version: Optional[str]):
    """Build REPOSITORY and create its packages."""
    log_command_start("pack", [repository.name])
    try:
        packages = _pack(config, repository, version, ToolRunner())
    except RepoToolsError as e:
        _abort("pack", e)

    _finish(
        "pack",
        f"PACKAGING SUCCEEDED - {len(packages)} package(s)",
        package_count=len(packages),
    )


@cli.command()
@repository_argument
@click.option("--version", "version", help="Package version (default: latest tag)")
@click.option("--force", is_flag=True, help="Push even if the version is already on the feed")
@click.pass_obj
def publish(
    config: RepoToolsConfig, repository: Repository, version: Optional[str], force: bool
):
    """Build, package and push REPOSITORY to the configured feed."""
    log_command_start("publish", [repository.name])
    api_key = os.environ.get(config.packaging.api_key_env)
    runner = ToolRunner()
    try:
        if not api_key:
            raise ConfigurationError(
                f"Environment variable {config.packaging.api_key_env} holds no API key"
            )
        packages = _pack(config, repository, version, runner)
        with FeedClient(
            config.packaging.flat_container_url,
            user_agent=config.network.user_agent,
            connect_timeout=config.network.connect_timeout,
            read_timeout=config.network.read_timeout,
        ) as feed_client:
            result = publish_packages(
                sorted(packages),
                runner,
                config.packaging.feed_url,
                api_key,
                config.tools.nuget,
                feed_client,
                force,
            )
    except RepoToolsError as e:
        _abort("publish", e)

    for package in result.pushed:
        reporter.success(f"Pushed {package.name}")
    _finish(
        "publish",
        f"PUBLISH SUCCEEDED - {len(result.pushed)} package(s) pushed",
        pushed=len(result.pushed),
    )


@cli.command("local-update")
@repository_argument
@click.option(
    "--target",
    "-t",
    "targets",
    multiple=True,
    metavar="REPOSITORY",
    help="Repository to update (repeatable, default: every repository that references the packages)",
)
@click.option("--stamp", help="Fixed prerelease stamp instead of the current time")
@click.pass_obj
def local_update_command(
    config: RepoToolsConfig, repository: Repository, targets: tuple, stamp: Optional[str]
):
    """
    Build REPOSITORY's packages locally and use them in dependent repositories.

    Examples:

      repotools local-update Platform.Core

      repotools local-update Platform.Core -t Platform.Web
    """
    known = config.workspace.repositories
    root = config.workspace.root_path
    source_dir = config.workspace.source_dir
    try:
        target_repos = (
            resolve_repository_set(targets, root, known, source_dir) if targets else None
        )
    except ConfigurationError as e:
        raise click.BadParameter(str(e), param_hint="--target")

    log_command_start("local-update", [repository.name])
    try:
        result = local_update(
            repository,
            ToolRunner(),
            _workspace_path(config, config.packaging.local_feed_dir),
            targets=target_repos,
            candidates=resolve_repository_set(None, root, known, source_dir),
            tools=_build_tools(config),
            git=config.tools.git,
            suffix=config.packaging.local_suffix,
            stamp=stamp,
            manifest_name=config.workspace.manifest_name,
            restore_sources=[config.packaging.feed_url],
        )
    except RepoToolsError as e:
        _abort("local-update", e)

    reporter.print_local_update_result(result)
    _finish("local-update", f"LOCAL UPDATE COMPLETE - {result.version}", version=result.version)


@cli.command()
@click.pass_obj
def info(config: RepoToolsConfig):
    """Show information about commands, selectors and configuration."""
    info_text = f"""
[bold blue]📚 Repository selectors:[/bold blue]

  {', '.join(selector_choices(config.workspace.repositories))}

[bold blue]🔍 Audit commands:[/bold blue]

• [green]conflicts[/green] - packages referenced at more than one version (exit 1 if any)
• [green]graph[/green] - project → package edge list for graph tools

[bold blue]🛠  Workflow commands:[/bold blue]

• [yellow]status / pull / hooks install[/yellow] - git housekeeping
• [yellow]version / build / pack / publish[/yellow] - release a repository
• [yellow]local-update[/yellow] - test a local build in dependent repositories

[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]REPOTOOLS_ROOT[/cyan] - Workspace root
• [cyan]REPOTOOLS_LOG_LEVEL[/cyan] - Log level for structured logs on stderr
• [cyan]REPOTOOLS_FEED_URL[/cyan] - Feed packages are pushed to
• [cyan]REPOTOOLS_GIT / REPOTOOLS_NUGET / REPOTOOLS_MSBUILD[/cyan] - Tool paths
• [cyan]{config.packaging.api_key_env}[/cyan] - API key used by publish

[bold blue]📄 Configuration Files:[/bold blue]

• [green].repotools.json[/green] / [green].repotools.toml[/green] - Workspace config
• [green]~/.config/repotools/config.json[/green] - User config
"""
    console.print(
        Panel(info_text, title="[bold]repotools Information[/bold]", border_style="blue")
    )


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(dir_okay=False),
    default=".repotools.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        reporter.warning(f"Config file already exists at {config_path}")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        config_path.write_text(create_sample_config(), encoding="utf-8")
    except OSError as e:
        reporter.error(f"Failed to create config file: {e}")
        sys.exit(1)

    reporter.success(f"Created configuration file at {config_path}")


@config.command("show")
@click.pass_obj
def config_show(current_config: RepoToolsConfig):
    """Show the effective configuration."""
    console.print(
        Panel("[bold blue]🔧 Effective Configuration[/bold blue]", border_style="blue")
    )

    console.print("\n[bold cyan]📁 Workspace:[/bold cyan]")
    console.print(f"  Root: {current_config.workspace.root_path}")
    console.print(f"  Repositories: {', '.join(current_config.workspace.repositories)}")
    console.print(f"  Source Dir: {current_config.workspace.source_dir}")
    console.print(f"  Manifest: {current_config.workspace.manifest_name}")
    console.print(f"  Hooks Dir: {current_config.workspace.hooks_dir}")

    console.print("\n[bold cyan]🛠  Tools:[/bold cyan]")
    console.print(f"  git: {current_config.tools.git}")
    console.print(f"  nuget: {current_config.tools.nuget}")
    console.print(f"  msbuild: {current_config.tools.msbuild}")
    console.print(f"  Pull Args: {redact_command(current_config.tools.pull_args)}")

    console.print("\n[bold cyan]📦 Packaging:[/bold cyan]")
    console.print(f"  Configuration: {current_config.packaging.build_configuration}")
    console.print(f"  Output Dir: {current_config.packaging.output_dir}")
    console.print(f"  Local Feed: {current_config.packaging.local_feed_dir}")
    console.print(f"  Local Suffix: {current_config.packaging.local_suffix}")
    console.print(f"  Feed: {current_config.packaging.feed_url}")
    console.print(f"  API Key Variable: {current_config.packaging.api_key_env}")

    console.print("\n[bold cyan]🪝 Hooks:[/bold cyan]")
    console.print(f"  On Invalid Repository: {current_config.hooks.on_invalid_repository}")

    console.print("\n[bold cyan]📝 Logging:[/bold cyan]")
    console.print(f"  Log Level: {current_config.logging.log_level}")


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def config_validate(config_file: str):
    """Validate a configuration file."""
    config_data = load_config_file(Path(config_file))

    if config_data is None:
        reporter.error(f"Could not load config from {config_file}")
        sys.exit(1)

    candidate = RepoToolsConfig()
    apply_config_data(candidate, config_data)
    errors = validate_config_values(candidate)
    if errors:
        reporter.error("Configuration validation failed:")
        for error in errors:
            console.print(f"  • {error}", style="red")
        sys.exit(1)

    reporter.success(f"Configuration file {config_file} is valid")


@cli.command()
@click.argument(
    "shell", type=click.Choice(["bash", "zsh", "fish"], case_sensitive=False)
)
@click.pass_obj
def completion(config: RepoToolsConfig, shell: str):
    """Generate shell completion scripts.

    Examples:

      repotools completion bash > ~/.repotools-completion.bash
    """
    scripts = get_completion_scripts(config.workspace.repositories)
    click.echo(scripts[shell.lower()])


if __name__ == "__main__":
    cli()
