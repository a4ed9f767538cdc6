"""
Command-line interface for the submodule update tool.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from pathlib import Path
from typing import Optional, Tuple
from datetime import datetime

import click
from rich.console import Console
from rich.logging import RichHandler

from .cli_reporter import ConsoleReporter
from .git_manager import GitManager
from .models import (
    PathContext,
    SEVERITY_MARKER,
    SubmoduleSyncError,
    UpdateOptions,
    UpdateStrategy,
    UsageError,
)
from .submodule_mapper import SubmoduleMapper
from .update_orchestrator import UpdateOrchestrator
from . import __version__ as PACKAGE_VERSION


console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)

LOG_STEM = "submodule-sync"


def _print_version(ctx, param, value):
    """Eager option callback to print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"submodule-sync {PACKAGE_VERSION}")
    ctx.exit()


def _default_log_path() -> Path:
    """Determine default log file path (~/.submodule-sync/submodule-sync.log)."""
    env_path = os.environ.get("SUBMODULE_SYNC_LOG")
    if env_path:
        p = Path(env_path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    base = Path.home() / ".submodule-sync"
    base.mkdir(parents=True, exist_ok=True)
    return base / f"{LOG_STEM}.log"


class SafeConsoleFormatter(logging.Formatter):
    """Formatter that replaces characters the console encoding cannot represent.

    Submodule paths and commit messages may contain arbitrary characters;
    legacy Windows code pages would otherwise raise UnicodeEncodeError. File
    handlers keep full UTF-8 output.
    """

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, style: str = "%", encoding: Optional[str] = None):
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self.encoding = encoding or getattr(sys.stderr, "encoding", None) or "utf-8"

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        try:
            msg.encode(self.encoding, errors="strict")
            return msg
        except UnicodeError:
            return msg.encode(self.encoding, errors="replace").decode(self.encoding, errors="replace")


class SafeConsoleFilter(logging.Filter):
    """Sanitize record messages before RichHandler renders them.

    RichHandler renders the message text itself, so the formatter alone
    does not cover it.
    """

    def __init__(self, encoding: Optional[str] = None):
        super().__init__()
        self.encoding = encoding or getattr(sys.stderr, "encoding", None) or "utf-8"

    def filter(self, record: logging.LogRecord) -> bool:  # always keep the record
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        try:
            message.encode(self.encoding, errors="strict")
        except UnicodeError:
            record.msg = message.encode(self.encoding, errors="replace").decode(self.encoding, errors="replace")
            record.args = ()
        return True


def setup_logging(verbose: bool = False, console_level: Optional[str] = None, log_file: Optional[Path] = None) -> Path:
    """Configure logging for one invocation.

    - Per-run log file: <stem>-YYYYMMDD_HHMMSS.log
    - Aggregate log: <stem>.log, rotated at 1 MB with 3 backups
    - Best-effort hardlink <stem>-current.log pointing at the per-run file
    - Console logging (to stderr) only with --verbose or --log-level

    Returns the path most convenient to show the user.
    """
    provided = Path(log_file) if log_file else _default_log_path()
    if provided.exists() and provided.is_dir():
        base_dir = provided
        base_stem = LOG_STEM
        stable_aggregate_path = base_dir / f"{base_stem}.log"
    else:
        base_dir = provided.parent
        base_stem = provided.stem or LOG_STEM
        stable_aggregate_path = provided
    base_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    per_run_path = base_dir / f"{base_stem}-{timestamp}.log"
    current_link_path = base_dir / f"{base_stem}-current.log"

    root = logging.getLogger()
    # Repeated invocations in one process (tests) must not stack handlers
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG)

    file_fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    run_file_handler = logging.FileHandler(str(per_run_path), encoding="utf-8")
    run_file_handler.setLevel(logging.DEBUG)
    run_file_handler.setFormatter(file_fmt)
    root.addHandler(run_file_handler)

    aggregate_handler = RotatingFileHandler(
        str(stable_aggregate_path), maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    aggregate_handler.setLevel(logging.DEBUG)
    aggregate_handler.setFormatter(file_fmt)
    root.addHandler(aggregate_handler)

    created_hardlink = False
    try:
        if current_link_path.exists():
            current_link_path.unlink()
        os.link(per_run_path, current_link_path)
        created_hardlink = True
    except OSError:
        # Hardlinks may be unsupported across volumes or filesystems
        created_hardlink = False

    if verbose or console_level:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
        }
        ch_level = level_map.get((console_level or "info").lower(), logging.INFO)
        # stdout carries the update report, so log records go to stderr
        console_handler = RichHandler(console=err_console, rich_tracebacks=True)
        console_handler.setLevel(ch_level)
        enc = getattr(err_console.file, "encoding", None) or getattr(sys.stderr, "encoding", None) or "utf-8"
        console_handler.setFormatter(SafeConsoleFormatter("%(message)s", encoding=enc))
        console_handler.addFilter(SafeConsoleFilter(encoding=enc))
        root.addHandler(console_handler)

    return current_link_path if created_hardlink else stable_aggregate_path


def _maybe_print_log_notice(ctx: click.Context, quiet: bool = False) -> None:
    """Tell the user where logs go when console logging is off."""
    if quiet or ctx.obj.get("verbose") or ctx.obj.get("console_level"):
        return
    err_console.print(
        f"[dim]Logs are written to {ctx.obj.get('log_path')}. Use -v or --log-level for console logs.[/dim]"
    )


def _git_manager(ctx: click.Context) -> GitManager:
    return GitManager(ctx.obj.get("repo_path"))


def _fail(error: SubmoduleSyncError) -> None:
    err_console.print(f"{SEVERITY_MARKER}{error}", style="bold red", markup=False, highlight=False, soft_wrap=True)
    logger.debug("Command aborted", exc_info=True)
    sys.exit(error.status)


def _cancelled() -> None:
    err_console.print("\n🚫 Operation cancelled by user", style="bold yellow")
    logger.debug("Operation cancelled by user", exc_info=True)
    sys.exit(130)


@click.group()
@click.option(
    "--version",
    "-V",
    is_flag=True,
    callback=_print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose console logging (INFO)")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Console log level. By default, console logging is disabled.",
)
@click.option(
    "--repo-path",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Path to the superproject (defaults to current directory)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, log_level: Optional[str], repo_path: Optional[Path]) -> None:
    """Keep git submodules in sync with the commits their superproject records."""
    log_path = setup_logging(verbose, console_level=log_level)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["console_level"] = log_level
    ctx.obj["log_path"] = log_path
    ctx.obj["repo_path"] = repo_path.resolve() if isinstance(repo_path, Path) else None
    logger.debug(f"CLI init: cwd={Path.cwd()} repo_path={ctx.obj['repo_path']}")


@cli.command()
@click.argument("paths", nargs=-1)
@click.option("--quiet", "-q", is_flag=True, help="Only print error messages")
@click.option("--progress", is_flag=True, help="Force progress reporting of clones")
@click.option("--init", "-i", "init", is_flag=True, help="Initialize uninitialized submodules before updating")
@click.option("--require-init", is_flag=True, help="Fail on uninitialized submodules (implies --init)")
@click.option("--remote", is_flag=True, help="Update to the submodule's remote-tracking branch")
@click.option("--no-fetch", "-N", is_flag=True, help="Do not fetch new objects from the remote")
@click.option("--force", "-f", is_flag=True, help="Check out even when the submodule is already at the target")
@click.option("--checkout", "strategy", flag_value="checkout", help="Detach HEAD at the target commit")
@click.option("--merge", "strategy", flag_value="merge", help="Merge the target commit into the current branch")
@click.option("--rebase", "strategy", flag_value="rebase", help="Rebase the current branch onto the target commit")
@click.option(
    "--recommend-shallow/--no-recommend-shallow",
    default=None,
    help="Honor (or ignore) the shallow recommendation in .gitmodules",
)
@click.option("--reference", type=str, default=None, help="Reference repository for new clones")
@click.option("--dissociate", is_flag=True, help="Copy objects borrowed from --reference")
@click.option("--recursive", is_flag=True, help="Update nested submodules too")
@click.option(
    "--single-branch/--no-single-branch",
    default=None,
    help="Clone only one branch (HEAD or the configured one)",
)
@click.option("--depth", type=int, default=None, help="Create shallow clones and fetches of this depth")
@click.option("--jobs", "-j", type=int, default=None, help="Number of submodules cloned in parallel")
@click.option("--max-depth", type=int, default=32, show_default=True, help="Maximum nesting depth for --recursive")
@click.pass_context
def update(
    ctx: click.Context,
    paths: Tuple[str, ...],
    quiet: bool,
    progress: bool,
    init: bool,
    require_init: bool,
    remote: bool,
    no_fetch: bool,
    force: bool,
    strategy: Optional[str],
    recommend_shallow: Optional[bool],
    reference: Optional[str],
    dissociate: bool,
    recursive: bool,
    single_branch: Optional[bool],
    depth: Optional[int],
    jobs: Optional[int],
    max_depth: int,
) -> None:
    """
    Bring the submodules at PATHS (all by default) to their recorded commits.

    Example: submodule-sync update --init --recursive
    """
    try:
        options = UpdateOptions(
            init=init,
            require_init=require_init,
            remote=remote,
            no_fetch=no_fetch,
            force=force,
            strategy=UpdateStrategy.parse(strategy),
            recursive=recursive,
            reference=reference,
            dissociate=dissociate,
            depth=depth,
            jobs=jobs,
            single_branch=single_branch,
            recommend_shallow=recommend_shallow,
            quiet=quiet,
            progress=progress,
            max_depth=max_depth,
        )
    except UsageError as e:
        raise click.UsageError(str(e), ctx=ctx)

    try:
        _maybe_print_log_notice(ctx, quiet)
        gm = _git_manager(ctx)
        context = PathContext(worktree_prefix=gm.worktree_prefix(Path.cwd()))
        reporter = ConsoleReporter(console, err_console, quiet=quiet)
        status = UpdateOrchestrator(gm, options, reporter).run(paths, context)
    except SubmoduleSyncError as e:
        _fail(e)
    except (click.Abort, KeyboardInterrupt):
        _cancelled()

    logger.info(f"Update finished with status {status}")
    sys.exit(status)


@cli.command()
@click.argument("paths", nargs=-1)
@click.option("--quiet", "-q", is_flag=True, help="Only print error messages")
@click.pass_context
def init(ctx: click.Context, paths: Tuple[str, ...], quiet: bool) -> None:
    """Register the submodules at PATHS (all by default) in .git/config."""
    try:
        _maybe_print_log_notice(ctx, quiet)
        gm = _git_manager(ctx)
        reporter = ConsoleReporter(console, err_console, quiet=quiet)
        SubmoduleMapper(gm, reporter).init_submodules(paths, gm.worktree_prefix(Path.cwd()), quiet=quiet)
    except SubmoduleSyncError as e:
        _fail(e)
    except (click.Abort, KeyboardInterrupt):
        _cancelled()


@cli.command()
def version() -> None:
    """Show version information."""
    console.print(f"submodule-sync {PACKAGE_VERSION}")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        _cancelled()
    except Exception as e:
        err_console.print(f"\n💥 Unexpected error: {e}", style="bold red")
        logger.debug("Unexpected error in main()", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
