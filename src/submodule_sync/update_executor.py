"""
Per-submodule update procedure and the classification of its exit status.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from .git_manager import GitManager
from .models import (
    FatalUpdateError,
    GitRepositoryError,
    STATUS_DIE,
    STATUS_NO_OP,
    STATUS_OK,
    STATUS_SOFT_FAILURE,
    STATUS_SUBCOMMAND_DIED,
    SubmoduleEntry,
    SubmoduleRecord,
    UpdateOptions,
    UpdateOutcome,
    UpdateStrategy,
)
from .reporter_interface import NoOpReporter, UpdateReporter
from .submodule_mapper import SubmoduleMapper


logger = logging.getLogger(__name__)

# Strategies a freshly cloned submodule cannot use; it has nothing to merge into
_CHECKOUT_WHEN_CREATED = frozenset(
    {UpdateStrategy.MERGE, UpdateStrategy.REBASE, UpdateStrategy.NONE}
)


def classify_status(status: int, message: str = "") -> UpdateOutcome:
    """
    Map an update procedure exit status onto an outcome.

    0 is success, 1 a soft failure, 3 a no-op. 2 and 128 are fatal, and so
    is any code outside the known set, carried through unchanged.
    """
    if status == STATUS_OK:
        return UpdateOutcome.success(message)
    if status == STATUS_SOFT_FAILURE:
        return UpdateOutcome.soft_failure(message)
    if status == STATUS_NO_OP:
        return UpdateOutcome.no_op()
    if status not in (STATUS_SUBCOMMAND_DIED, STATUS_DIE):
        logger.warning(f"Unexpected update procedure status {status}; treating it as fatal")
    return UpdateOutcome.fatal(status, message)


class UpdateExecutor:
    """Moves a submodule working copy to its target commit."""

    def __init__(
        self,
        git_manager: GitManager,
        options: UpdateOptions,
        mapper: Optional[SubmoduleMapper] = None,
        reporter: UpdateReporter = None,
    ) -> None:
        self.gm = git_manager
        self.options = options
        self.reporter = reporter or NoOpReporter()
        self.mapper = mapper or SubmoduleMapper(git_manager)

    def run(self, record: SubmoduleRecord) -> UpdateOutcome:
        """Run the update procedure for one submodule and classify the result."""
        status, message = self.run_update_procedure(record)
        logger.debug(f"Update procedure for {record.path} exited with {status}")
        return classify_status(status, message)

    def strategy_for(
        self, record: SubmoduleRecord, entry: Optional[SubmoduleEntry]
    ) -> UpdateStrategy:
        """Strategy from the options, else the submodule configuration, else checkout."""
        strategy = self.options.strategy
        if strategy is None and entry is not None:
            strategy = entry.strategy
        if strategy is None:
            strategy = UpdateStrategy.CHECKOUT
        if record.just_created and strategy in _CHECKOUT_WHEN_CREATED:
            strategy = UpdateStrategy.CHECKOUT
        return strategy

    def run_update_procedure(self, record: SubmoduleRecord) -> Tuple[int, str]:
        """
        Bring one submodule to ``record.target_oid``.

        Returns:
            Tuple of (exit status, message); the message is the text to
            report for that status and may be empty
        """
        entry = self.mapper.find_by_path(record.path)
        strategy = self.strategy_for(record, entry)
        if strategy is UpdateStrategy.NONE:
            logger.debug(f"Update of {record.path} disabled by configuration")
            return STATUS_NO_OP, ""

        if (
            record.current_oid == record.target_oid
            and not self.options.force
            and not record.just_created
        ):
            logger.debug(f"{record.path} already at {record.target_oid}")
            return STATUS_NO_OP, ""

        display = record.display_path
        oid = record.target_oid
        try:
            sub_gm = self.gm.submodule_manager(record.path)
            if not self.options.no_fetch:
                self._ensure_commit_present(sub_gm, display, oid)
        except FatalUpdateError as e:
            return e.status, str(e)
        except GitRepositoryError as e:
            logger.error(f"Update procedure for {record.path} died: {e}")
            return STATUS_DIE, str(e)

        return self._run_strategy(sub_gm, strategy, entry, record)

    def _ensure_commit_present(self, sub_gm: GitManager, display: str, oid: str) -> None:
        if sub_gm.is_tip_reachable(oid):
            return
        try:
            sub_gm.fetch(depth=self.options.depth, quiet=self.options.quiet)
        except GitRepositoryError as e:
            logger.warning(f"Fetch in {display} failed: {e}")
            if not self.options.quiet:
                self.reporter.warning(
                    f"Unable to fetch in submodule path '{display}'; trying to directly fetch {oid}:"
                )

        if sub_gm.is_tip_reachable(oid):
            return
        try:
            sub_gm.fetch(
                remote_name=sub_gm.default_remote_name(),
                depth=self.options.depth,
                quiet=self.options.quiet,
                refspecs=[oid],
            )
        except GitRepositoryError as e:
            raise FatalUpdateError(
                f"Fetched in submodule path '{display}', but it did not contain {oid}. "
                "Direct fetching of that commit failed.",
                STATUS_DIE,
            ) from e

    def _run_strategy(
        self,
        sub_gm: GitManager,
        strategy: UpdateStrategy,
        entry: Optional[SubmoduleEntry],
        record: SubmoduleRecord,
    ) -> Tuple[int, str]:
        display = record.display_path
        oid = record.target_oid
        quiet = self.options.quiet

        try:
            if strategy is UpdateStrategy.CHECKOUT:
                args = ["checkout"]
                if quiet:
                    args.append("-q")
                if self.options.force or record.just_created:
                    args.append("-f")
                sub_gm.run_update_command(*args, oid)
                done = f"Submodule path '{display}': checked out '{oid}'"
            elif strategy is UpdateStrategy.REBASE:
                sub_gm.run_update_command("rebase", *(["--quiet"] if quiet else []), oid)
                done = f"Submodule path '{display}': rebased into '{oid}'"
            elif strategy is UpdateStrategy.MERGE:
                sub_gm.run_update_command("merge", *(["--quiet"] if quiet else []), oid)
                done = f"Submodule path '{display}': merged in '{oid}'"
            else:
                command = entry.custom_command if entry is not None else None
                if not command:
                    return STATUS_DIE, f"Invalid update mode for submodule path '{display}'"
                sub_gm.run_shell_command(f"{command} {oid}")
                done = f"Submodule path '{display}': '{command} {oid}'"
        except GitRepositoryError as e:
            logger.error(f"{strategy.value} of {record.path} failed: {e}")
            return self._failure(strategy, entry, display, oid)

        logger.info(done)
        return STATUS_OK, "" if quiet else done

    @staticmethod
    def _failure(
        strategy: UpdateStrategy, entry: Optional[SubmoduleEntry], display: str, oid: str
    ) -> Tuple[int, str]:
        # A failed checkout leaves the tree untouched; the others may not
        if strategy is UpdateStrategy.CHECKOUT:
            return STATUS_SOFT_FAILURE, f"Unable to checkout '{oid}' in submodule path '{display}'"
        if strategy is UpdateStrategy.REBASE:
            return STATUS_SUBCOMMAND_DIED, f"Unable to rebase '{oid}' in submodule path '{display}'"
        if strategy is UpdateStrategy.MERGE:
            return STATUS_SUBCOMMAND_DIED, f"Unable to merge '{oid}' in submodule path '{display}'"
        command = entry.custom_command if entry is not None else ""
        return (
            STATUS_SUBCOMMAND_DIED,
            f"Execution of '{command} {oid}' failed in submodule path '{display}'",
        )
