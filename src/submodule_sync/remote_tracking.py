"""
Resolution of the commit a submodule should move to in remote-tracking mode.
"""

from __future__ import annotations

import logging
from typing import Optional

from .git_manager import GitManager
from .models import (
    GitRepositoryError,
    RemoteResolutionError,
    SubmoduleRecord,
    UpdateOptions,
)
from .submodule_mapper import SubmoduleMapper


logger = logging.getLogger(__name__)

# Branch value meaning "follow the superproject's current branch"
INHERIT_BRANCH = "."
DEFAULT_BRANCH = "HEAD"


class RemoteTrackingResolver:
    """Resolves ``<remote>/<branch>`` for submodules of one superproject.

    Every failure here is fatal: there is no soft-failure path for remote
    resolution.
    """

    def __init__(
        self, git_manager: GitManager, options: UpdateOptions, mapper: Optional[SubmoduleMapper] = None
    ) -> None:
        self.gm = git_manager
        self.options = options
        self.mapper = mapper or SubmoduleMapper(git_manager)

    def remote_branch(self, path: str) -> str:
        """Branch to track for the submodule at ``path``.

        ``submodule.<name>.branch`` from .git/config overrides .gitmodules;
        ``.`` follows the superproject's branch; unset tracks the remote HEAD.
        """
        entry = self.mapper.find_by_path(path)
        branch = entry.branch if entry is not None else None
        if not branch:
            return DEFAULT_BRANCH
        if branch == INHERIT_BRANCH:
            try:
                return self.gm.get_current_branch()
            except GitRepositoryError as e:
                raise RemoteResolutionError(
                    f"Submodule ({path}) branch configured to inherit branch from superproject, "
                    "but the superproject is not on any branch"
                ) from e
        return branch

    def resolve(self, record: SubmoduleRecord) -> str:
        """
        Fetch (unless disabled) and resolve the tracking ref of a submodule.

        Updates ``record.target_oid`` in place.

        Returns:
            The object id of ``<remote>/<branch>``
        """
        branch = self.remote_branch(record.path)
        sub_gm = self.gm.submodule_manager(record.path)

        if not self.options.no_fetch:
            try:
                sub_gm.fetch(depth=self.options.depth, quiet=self.options.quiet)
            except GitRepositoryError as e:
                raise RemoteResolutionError(
                    f"Unable to fetch in submodule path '{record.path}'"
                ) from e

        try:
            remote_name = sub_gm.default_remote_name()
        except GitRepositoryError as e:
            logger.error(f"Unable to determine default remote of {record.path}: {e}")
            raise RemoteResolutionError(
                f"Unable to find default remote in submodule path '{record.path}'"
            ) from e

        try:
            oid = sub_gm.resolve_ref(f"{remote_name}/{branch}")
        except GitRepositoryError as e:
            raise RemoteResolutionError(
                f"Unable to find current {remote_name}/{branch} revision in submodule path '{record.path}'"
            ) from e

        logger.info(f"Tracking {remote_name}/{branch} at {oid} for {record.path}")
        record.target_oid = oid
        return oid
