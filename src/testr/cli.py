"""testr CLI.

Main entry point for the testr command.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.tree import Tree

from . import __version__
from .adapters.registry import AdapterRegistry, default_registry
from .config import TestrConfig, get_config, reload_config
from .discovery import DiscoveryOrchestrator
from .execution import ExecutionOrchestrator, RunRequest, RunSummary
from .identifiers import decode, encode, file_token_for, path_for_token
from .reporting import RunReporter
from .state import OrchestrationState
from .tree import NodeState, TestNode, TestTree
from .utils.errors import (
    error_no_adapter,
    error_no_project_root,
    format_error,
    handle_exception,
    is_debug_mode,
    set_debug_mode,
)
from .watcher import TestFileWatcher

console = Console()

_STATE_MARKERS = {
    NodeState.PASSED: "[green]✓[/green] ",
    NodeState.FAILED: "[red]✗[/red] ",
    NodeState.SKIPPED: "[yellow]○[/yellow] ",
}


def setup_logging(level: str) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=is_debug_mode(),
                show_path=is_debug_mode(),
            )
        ],
        force=True,
    )


class Session:
    """Everything one CLI invocation needs, wired around one owned state."""

    def __init__(self, config: TestrConfig, roots: list[Path]) -> None:
        self.config = config
        self.state = OrchestrationState(roots)
        self.registry: AdapterRegistry = default_registry(config)
        self.reporter = RunReporter(console)
        self.discovery = DiscoveryOrchestrator(self.state, self.registry, self.reporter)
        self.execution = ExecutionOrchestrator(
            self.state, self.registry, self.reporter, config
        )

    def __enter__(self) -> Session:
        self.state.activate()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.state.dispose()


def _resolve_roots(roots: tuple[Path, ...]) -> list[Path]:
    paths = list(roots) or [Path.cwd()]
    for path in paths:
        if not path.is_dir():
            format_error(error_no_project_root(str(path)), console)
            sys.exit(1)
    return [path.resolve() for path in paths]


def _require_adapters(session: Session) -> None:
    if any(session.registry.detect(root) for root in session.state.project_roots):
        return
    frameworks = [adapter.framework.value for adapter in session.registry.get_all()]
    for root in session.state.project_roots:
        format_error(error_no_adapter(str(root), frameworks), console)
    sys.exit(1)


def _select(tree: TestTree, selector: str) -> TestNode | None:
    """Find a node by identifier, or by ``path[::Suite::case]`` with a plain file path."""
    node = tree.find(selector)
    if node is not None:
        return node
    decoded = decode(selector)
    path = Path(path_for_token(decoded.file_token)).resolve()
    return tree.find(encode(decoded.path_segments, file_token_for(str(path))))


def _add_branch(parent: Tree, node: TestNode, show_ids: bool) -> None:
    marker = _STATE_MARKERS.get(node.state, "")
    label = f"{marker}{escape(node.label)}"
    if show_ids:
        label += f" [dim]{escape(node.id)}[/dim]"
    branch = parent.add(label)
    for child in node.children:
        _add_branch(branch, child, show_ids)


def render_tree(tree: TestTree, show_ids: bool = False) -> Tree:
    """Build a rich Tree of the test tree, grouped under one root label."""
    view = Tree(f"[bold]Tests[/bold] [dim]({tree.count_leaves()})[/dim]")
    for root in tree.roots:
        _add_branch(view, root, show_ids)
    return view


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="Show version and exit")
@click.option("--debug", "-d", is_flag=True, help="Enable debug mode with verbose error output")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default: ./testr.toml or ~/.testr/config.toml)",
)
@click.pass_context
def main(ctx: click.Context, version: bool, debug: bool, config_path: Path | None) -> None:
    """testr - discover and run Jest and PHPUnit tests from one tree.

    Use --debug for verbose logging and stack traces.
    """
    if debug:
        set_debug_mode(True)

    if version:
        console.print(f"testr version {__version__}")
        return

    config = reload_config(config_path) if config_path else get_config()
    setup_logging("debug" if is_debug_mode() else config.ui.log_level)
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command()
@click.argument("roots", nargs=-1, type=click.Path(path_type=Path))
@click.option("--ids", is_flag=True, help="Show node identifiers")
@click.pass_obj
def discover(config: TestrConfig, roots: tuple[Path, ...], ids: bool) -> None:
    """Discover tests and show them as a tree.

    \b
    Examples:
        testr discover
        testr discover frontend/ backend/ --ids
    """
    with Session(config, _resolve_roots(roots)) as session:
        _require_adapters(session)
        try:
            tree = asyncio.run(session.discovery.discover_all())
        except Exception as e:
            handle_exception(console, e, "discovery")
            return
        console.print()
        console.print(render_tree(tree, show_ids=ids))


@main.command("run")
@click.argument("roots", nargs=-1, type=click.Path(path_type=Path))
@click.option(
    "--only",
    "-o",
    multiple=True,
    help="Node to run: an identifier or path[::Suite::case] (can use multiple times)",
)
@click.option("--exclude", "-x", multiple=True, help="Node to leave out (can use multiple times)")
@click.pass_obj
def run_cmd(
    config: TestrConfig, roots: tuple[Path, ...], only: tuple[str, ...], exclude: tuple[str, ...]
) -> None:
    """Discover, then run tests.

    Exits with status 1 if any test failed.

    \b
    Examples:
        testr run
        testr run --only src/math.test.js
        testr run --only "src/math.test.js::Math::adds"
    """
    with Session(config, _resolve_roots(roots)) as session:
        _require_adapters(session)
        try:
            summary = asyncio.run(_discover_and_run(session, only, exclude))
        except Exception as e:
            handle_exception(console, e, "test run")
            return

    if summary is None:
        sys.exit(1)
    if summary.cancelled:
        console.print("[yellow]Run cancelled[/yellow]")
        sys.exit(130)
    if summary.failed > 0:
        sys.exit(1)


async def _discover_and_run(
    session: Session, only: tuple[str, ...], exclude: tuple[str, ...]
) -> RunSummary | None:
    tree = await session.discovery.discover_all()

    include = None
    if only:
        include = []
        for selector in only:
            node = _select(tree, selector)
            if node is None:
                console.print(f"[yellow]![/yellow] No test matches {escape(selector)}")
            else:
                include.append(node)
        if not include:
            console.print("[red]Nothing to run[/red]")
            return None

    excluded = [node for node in (_select(tree, s) for s in exclude) if node is not None]

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, session.execution.cancel)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no signal handlers; Ctrl+C then aborts the loop.
        pass
    try:
        return await session.execution.run(RunRequest(include=include, exclude=excluded))
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


@main.command("watch")
@click.argument("roots", nargs=-1, type=click.Path(path_type=Path))
@click.pass_obj
def watch_cmd(config: TestrConfig, roots: tuple[Path, ...]) -> None:
    """Rediscover tests whenever a test file changes."""
    with Session(config, _resolve_roots(roots)) as session:
        _require_adapters(session)
        console.print("[yellow]Press Ctrl+C to stop[/yellow]")
        try:
            asyncio.run(_watch(session))
        except KeyboardInterrupt:
            console.print()
            console.print("[yellow]Watcher stopped by user[/yellow]")
        except Exception as e:
            handle_exception(console, e, "file watching")


async def _watch(session: Session) -> None:
    await session.discovery.discover_all()
    watcher = TestFileWatcher.for_registry(
        session.state.project_roots,
        session.registry,
        session.discovery.discover_all,
        debounce_ms=session.config.discovery.watch_debounce_ms,
    )
    session.state.attach_watcher(watcher)
    await watcher.start()


@main.command()
@click.argument("roots", nargs=-1, type=click.Path(path_type=Path))
@click.pass_obj
def frameworks(config: TestrConfig, roots: tuple[Path, ...]) -> None:
    """Show which framework each project root resolves to."""
    registry = default_registry(config)
    for root in _resolve_roots(roots):
        adapter = registry.detect(root)
        if adapter is None:
            console.print(f"[red]✗[/red] {escape(str(root))} [dim](no framework detected)[/dim]")
        else:
            console.print(f"[green]✓[/green] {escape(str(root))}: {adapter.framework.value}")


if __name__ == "__main__":
    main()
