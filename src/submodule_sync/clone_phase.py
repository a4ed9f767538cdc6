"""
Clone phase: make sure every selected submodule has a working copy.

Missing submodules are cloned concurrently. Once all of them exist the
results are emitted as protocol lines (see :mod:`record_stream`) in submodule
order; a submodule that cannot be cloned turns the whole output into the
terminal line.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterator, List, Optional, Sequence, Tuple

from git.exc import GitError

from .git_manager import GitManager
from .models import (
    GitRepositoryError,
    PathContext,
    STATUS_SOFT_FAILURE,
    SubmoduleEntry,
    UpdateOptions,
    UpdateStrategy,
)
from .record_stream import format_record, format_unmatched
from .reporter_interface import NoOpReporter, UpdateReporter
from .submodule_mapper import SubmoduleMapper


logger = logging.getLogger(__name__)


class ClonePhase:
    """Produces the record stream consumed by the update loop."""

    def __init__(
        self,
        git_manager: GitManager,
        options: UpdateOptions,
        context: PathContext,
        reporter: UpdateReporter = None,
        mapper: Optional[SubmoduleMapper] = None,
    ) -> None:
        self.gm = git_manager
        self.options = options
        self.context = context
        self.reporter = reporter or NoOpReporter()
        self.mapper = mapper or SubmoduleMapper(git_manager, self.reporter)

    def job_count(self) -> int:
        """Number of parallel clones: option, else ``submodule.fetchJobs``, else 1."""
        jobs = self.options.jobs
        if jobs is None:
            configured = self.gm.config_value("submodule", "fetchJobs")
            try:
                jobs = int(configured) if configured is not None else 1
            except ValueError:
                logger.warning(f"Ignoring invalid submodule.fetchJobs value '{configured}'")
                jobs = 1
        if jobs <= 0:
            jobs = os.cpu_count() or 1
        return jobs

    def _clone_depth(self, entry: SubmoduleEntry) -> Optional[int]:
        recommend = self.options.recommend_shallow
        if recommend is not False and entry.shallow:
            return 1
        return self.options.depth

    def clone(self, entry: SubmoduleEntry) -> None:
        """Create the working copy of one submodule."""
        git_dir = self.gm.modules_dir(entry.name)
        if (git_dir / "HEAD").is_file():
            # Left behind by an earlier deinit; reuse it instead of cloning again
            self.gm.connect_worktree(entry.path, git_dir)
            return
        logger.info(f"Cloning {entry.url} into submodule path '{entry.path}'")
        self.gm.clone_submodule(
            entry.url,
            entry.path,
            git_dir,
            reference=self.options.reference,
            dissociate=self.options.dissociate,
            depth=self._clone_depth(entry),
            single_branch=self.options.single_branch,
            quiet=self.options.quiet,
            progress=self.options.progress,
        )

    def _select(self, entries: Sequence[SubmoduleEntry], explicit: bool) -> Tuple[List[SubmoduleEntry], bool]:
        """Filter out skipped submodules; the flag is False when the stream must stop."""
        selected: List[SubmoduleEntry] = []
        for entry in entries:
            display = self.context.display_path(entry.path)

            strategy = self.options.strategy or entry.strategy
            if strategy is UpdateStrategy.NONE:
                self.reporter.info(f"Skipping submodule '{display}'")
                continue

            if entry.url is None:
                if self.options.require_init:
                    self.reporter.error_line(f"Submodule path '{display}' not initialized")
                    return selected, False
                if explicit:
                    self.reporter.warning(
                        f"Submodule path '{display}' not initialized\n"
                        "Maybe you want to use 'update --init'?"
                    )
                logger.debug(f"Skipping uninitialized submodule {entry.path}")
                continue

            selected.append(entry)
        return selected, True

    def iter_lines(self, paths: Sequence[str] = ()) -> Iterator[str]:
        """
        Yield one protocol line per submodule to update.

        Records are only emitted once every missing submodule has been
        cloned, so a clone that fails for good ends the stream with nothing
        but the terminal line.

        Args:
            paths: Requested paths relative to the worktree prefix; empty for all

        Yields:
            Record lines, or a single terminal ``#unmatched`` line
        """
        entries = self.mapper.discover_submodules()
        matched, unmatched = self.mapper.match_paths(entries, paths, self.context.worktree_prefix)
        if unmatched:
            for spec in unmatched:
                self.reporter.error_line(
                    f"error: pathspec '{spec}' did not match any file(s) known to git"
                )
            yield format_unmatched(STATUS_SOFT_FAILURE)
            return

        selected, proceed = self._select(matched, explicit=bool(paths))
        if not proceed:
            yield format_unmatched(STATUS_SOFT_FAILURE)
            return

        missing = [entry for entry in selected if not self.gm.is_populated(entry.path)]
        if missing and not self.clone_missing(missing):
            yield format_unmatched(STATUS_SOFT_FAILURE)
            return

        cloned = {entry.path for entry in missing}
        for entry in selected:
            yield format_record(entry.gitlink_oid, entry.path in cloned, entry.path)

    def clone_missing(self, entries: Sequence[SubmoduleEntry]) -> bool:
        """
        Clone ``entries`` on a pool of ``job_count()`` workers.

        Every failed clone is scheduled once more after its first attempt.

        Returns:
            False as soon as one submodule failed a second time
        """
        with ThreadPoolExecutor(max_workers=self.job_count()) as pool:
            first: List[Tuple[SubmoduleEntry, Future]] = [
                (entry, pool.submit(self._clone_or_wrap, entry)) for entry in entries
            ]
            retries: List[Tuple[SubmoduleEntry, Future]] = []
            for entry, future in first:
                try:
                    future.result()
                except GitRepositoryError as e:
                    logger.warning(f"First clone attempt of {entry.path} failed: {e}")
                    self.reporter.warning(
                        f"Failed to clone '{self.context.display_path(entry.path)}'. Retry scheduled"
                    )
                    retries.append((entry, pool.submit(self._clone_or_wrap, entry)))

            for entry, future in retries:
                try:
                    future.result()
                except GitRepositoryError as e:
                    logger.error(f"Second clone attempt of {entry.path} failed: {e}")
                    self.reporter.error_line(
                        f"Failed to clone '{self.context.display_path(entry.path)}' a second time, aborting"
                    )
                    pool.shutdown(wait=True, cancel_futures=True)
                    return False
        return True

    def _clone_or_wrap(self, entry: SubmoduleEntry) -> None:
        try:
            self.clone(entry)
        except GitRepositoryError:
            raise
        except (GitError, OSError) as e:
            raise GitRepositoryError(f"Clone of submodule path '{entry.path}' failed: {e}") from e
