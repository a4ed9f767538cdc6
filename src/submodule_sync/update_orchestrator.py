"""
Update orchestrator: drives the clone phase, the per-submodule update
procedure and the descent into nested submodules for one repository.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Sequence

from .clone_phase import ClonePhase
from .error_aggregator import ErrorAggregator
from .git_manager import GitManager
from .models import (
    FatalUpdateError,
    GitRepositoryError,
    OutcomeKind,
    PathContext,
    RECURSION_FATAL_STATUS,
    RecursionLimitError,
    RevisionReadError,
    SEVERITY_MARKER,
    STATUS_OK,
    STATUS_SOFT_FAILURE,
    SubmoduleInitError,
    SubmoduleRecord,
    SubmoduleSyncError,
    UnmatchedPathError,
    UpdateOptions,
)
from .record_stream import read_records
from .recursion import RecursionGuard, child_context, submodule_environment
from .remote_tracking import RemoteTrackingResolver
from .reporter_interface import NoOpReporter, UpdateReporter
from .submodule_mapper import SubmoduleMapper
from .update_executor import UpdateExecutor


logger = logging.getLogger(__name__)

ClonePhaseFactory = Callable[[GitManager, UpdateOptions, PathContext, UpdateReporter], object]
ExecutorFactory = Callable[[GitManager, UpdateOptions, UpdateReporter, SubmoduleMapper], object]
ResolverFactory = Callable[[GitManager, UpdateOptions, SubmoduleMapper], object]


def _default_clone_phase(gm, options, context, reporter):
    return ClonePhase(gm, options, context, reporter)


def _default_executor(gm, options, reporter, mapper):
    return UpdateExecutor(gm, options, mapper=mapper, reporter=reporter)


def _default_resolver(gm, options, mapper):
    return RemoteTrackingResolver(gm, options, mapper)


class UpdateOrchestrator:
    """Updates the submodules of one repository and, optionally, theirs.

    The clone phase runs concurrently in the background; everything else
    happens one submodule at a time, in the order the clone phase reports
    them.
    """

    def __init__(
        self,
        git_manager: GitManager,
        options: UpdateOptions,
        reporter: UpdateReporter = None,
        guard: Optional[RecursionGuard] = None,
        clone_phase_factory: Optional[ClonePhaseFactory] = None,
        executor_factory: Optional[ExecutorFactory] = None,
        resolver_factory: Optional[ResolverFactory] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            git_manager: Manager of the repository whose submodules are updated
            options: Options of the whole invocation, shared by every level
            reporter: Sink for progress and diagnostic output
            guard: Recursion guard shared with nested orchestrators
            clone_phase_factory: Builds the record producer for a repository
            executor_factory: Builds the per-submodule update procedure
            resolver_factory: Builds the remote tracking resolver
        """
        self.gm = git_manager
        self.options = options
        self.reporter = reporter or NoOpReporter()
        self._guard = guard
        self.clone_phase_factory = clone_phase_factory or _default_clone_phase
        self.executor_factory = executor_factory or _default_executor
        self.resolver_factory = resolver_factory or _default_resolver
        self._mapper = None
        self._executor = None
        self._resolver = None

    @property
    def guard(self) -> RecursionGuard:
        if self._guard is None:
            self._guard = RecursionGuard(self.options.max_depth, root=self.gm.working_dir)
        return self._guard

    @property
    def mapper(self) -> SubmoduleMapper:
        """Submodule lookup shared by the executor and the resolver of this level."""
        if self._mapper is None:
            self._mapper = SubmoduleMapper(self.gm, self.reporter)
        return self._mapper

    @property
    def executor(self):
        if self._executor is None:
            self._executor = self.executor_factory(self.gm, self.options, self.reporter, self.mapper)
        return self._executor

    @property
    def resolver(self):
        if self._resolver is None:
            self._resolver = self.resolver_factory(self.gm, self.options, self.mapper)
        return self._resolver

    def run(self, paths: Sequence[str] = (), context: Optional[PathContext] = None) -> int:
        """
        Update the selected submodules of this repository.

        Args:
            paths: Submodule paths relative to the worktree prefix; empty for all
            context: Path context of this repository within the top-level run

        Returns:
            0 when everything is up to date, otherwise the status of the
            first fatal failure, or 1 after soft failures

        Raises:
            SubmoduleInitError: If ``options.init`` is set and registration fails
        """
        context = context or PathContext()
        # Submodule configuration is read once per batch
        self._mapper = self._executor = self._resolver = None
        logger.info(
            f"Updating submodules of {self.gm.working_dir} "
            f"(prefix '{context.super_prefix}', paths {list(paths) or 'all'})"
        )

        if self.options.init:
            SubmoduleMapper(self.gm, self.reporter).init_submodules(
                paths, context.worktree_prefix, quiet=self.options.quiet
            )

        errors = ErrorAggregator()
        try:
            status = self._process_stream(paths, context, errors)
        except UnmatchedPathError as e:
            logger.info(f"Clone phase ended early with status {e.status}")
            if errors:
                errors.flush(self.reporter)
            return e.status
        except SubmoduleSyncError as e:
            logger.error(f"Update aborted: {e}")
            self.reporter.error_line(f"{SEVERITY_MARKER}{e}")
            return e.status

        if status is not None:
            return status
        if errors:
            errors.flush(self.reporter)
            return STATUS_SOFT_FAILURE
        return STATUS_OK

    def _process_stream(
        self, paths: Sequence[str], context: PathContext, errors: ErrorAggregator
    ) -> Optional[int]:
        lines: Iterable[str] = self.clone_phase_factory(
            self.gm, self.options, context, self.reporter
        ).iter_lines(paths)
        try:
            for record in read_records(lines):
                status = self.update_submodule(record, context, errors)
                if status is not None:
                    return status
        finally:
            # Releases the producer when the batch is aborted
            close = getattr(lines, "close", None)
            if close is not None:
                close()
        return None

    def update_submodule(
        self, record: SubmoduleRecord, context: PathContext, errors: ErrorAggregator
    ) -> Optional[int]:
        """
        Process one record of the stream.

        Returns:
            None to continue with the next record, or the status that ends
            the batch
        """
        path = record.path
        record.display_path = context.display_path(path)
        display = record.display_path

        self.gm.ensure_core_worktree(path)

        if not record.just_created:
            try:
                record.current_oid = self.gm.submodule_manager(path).read_head_oid()
            except GitRepositoryError as e:
                raise RevisionReadError(
                    f"Unable to find current revision in submodule path '{display}'"
                ) from e

        if self.options.remote:
            self.resolver.resolve(record)

        outcome = self.executor.run(record)
        logger.debug(f"{display}: {outcome.kind.value} (status {outcome.status})")

        if outcome.kind is OutcomeKind.SUCCESS:
            if outcome.message and not self.options.quiet:
                self.reporter.info(outcome.message)
            if self.options.recursive:
                self._after_recursion(self.recurse(record, context), display, errors)
        elif outcome.kind is OutcomeKind.SOFT_FAILURE:
            errors.add(f"{SEVERITY_MARKER}{outcome.message}")
        elif outcome.kind is OutcomeKind.FATAL_FAILURE:
            logger.error(f"Update of {display} died with status {outcome.status}")
            self.reporter.error_line(f"{SEVERITY_MARKER}{outcome.message}")
            return outcome.status
        return None

    @staticmethod
    def _after_recursion(status: int, display: str, errors: ErrorAggregator) -> None:
        if status == STATUS_OK:
            return
        message = f"Failed to recurse into submodule path '{display}'"
        if status == RECURSION_FATAL_STATUS:
            raise FatalUpdateError(message, status)
        errors.add(f"{SEVERITY_MARKER}{message}")

    def recurse(self, record: SubmoduleRecord, context: PathContext) -> int:
        """Run a nested update inside the submodule of ``record``; returns its status."""
        sub_dir = self.gm.working_dir / record.path
        nested_context = child_context(context, record.path)
        try:
            with self.guard.descend(sub_dir, record.display_path), submodule_environment(sub_dir):
                nested = self.nested_orchestrator(self.gm.submodule_manager(record.path))
                return nested.run((), nested_context)
        except RecursionLimitError as e:
            self.reporter.warning(str(e))
            return STATUS_SOFT_FAILURE
        except SubmoduleInitError as e:
            logger.error(f"Nested initialization in {record.path} failed: {e}")
            self.reporter.error_line(f"{SEVERITY_MARKER}{e}")
            return e.status

    def nested_orchestrator(self, git_manager: GitManager) -> UpdateOrchestrator:
        return UpdateOrchestrator(
            git_manager,
            self.options,
            self.reporter,
            guard=self.guard,
            clone_phase_factory=self.clone_phase_factory,
            executor_factory=self.executor_factory,
            resolver_factory=self.resolver_factory,
        )
