"""
Data models for the submodule update tool.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Optional


STATUS_OK = 0
STATUS_SOFT_FAILURE = 1
STATUS_SUBCOMMAND_DIED = 2
STATUS_NO_OP = 3
STATUS_DIE = 128

# Exit codes of the update procedure that abort the whole batch
FATAL_STATUSES = frozenset({STATUS_SUBCOMMAND_DIED, STATUS_DIE})

# A nested run is only fatal for its parent when it returns exactly this code
RECURSION_FATAL_STATUS = STATUS_SUBCOMMAND_DIED

SEVERITY_MARKER = "fatal: "


def relative_path(path: str, base: str) -> str:
    """Express ``path`` relative to ``base`` (both relative to the same root).

    Mirrors ``git submodule--helper relative-path``: an empty base leaves the
    path untouched, and a trailing separator on ``path`` is preserved so that
    composed prefixes can be concatenated directly. A path equal to the base
    becomes ``./``.
    """
    if not base:
        return path
    rel = posixpath.relpath(path, base.rstrip("/") or ".")
    if rel == "." or (path.endswith("/") and not rel.endswith("/")):
        rel += "/"
    return rel


class UpdateStrategy(Enum):
    """How a submodule working copy is moved to its target commit."""

    CHECKOUT = "checkout"
    MERGE = "merge"
    REBASE = "rebase"
    NONE = "none"
    COMMAND = "command"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional[UpdateStrategy]:
        """Parse a ``submodule.<name>.update`` value; ``!cmd`` is a custom command."""
        if value is None or not value.strip():
            return None
        value = value.strip()
        if value.startswith("!"):
            return cls.COMMAND
        try:
            return cls(value)
        except ValueError as e:
            raise UsageError(f"Invalid update mode '{value}'") from e


# Strategies that may be requested on the command line
SELECTABLE_STRATEGIES = frozenset(
    {UpdateStrategy.CHECKOUT, UpdateStrategy.MERGE, UpdateStrategy.REBASE}
)


@dataclass(frozen=True)
class UpdateOptions:
    """Options of one top-level update invocation.

    A single instance is shared by every level of the recursion and is never
    mutated after construction.
    """

    init: bool = False
    require_init: bool = False
    remote: bool = False
    no_fetch: bool = False
    force: bool = False
    strategy: Optional[UpdateStrategy] = None
    recursive: bool = False
    reference: Optional[str] = None
    dissociate: bool = False
    depth: Optional[int] = None
    jobs: Optional[int] = None
    single_branch: Optional[bool] = None
    recommend_shallow: Optional[bool] = None
    quiet: bool = False
    progress: bool = False
    max_depth: int = 32

    def __post_init__(self) -> None:
        if self.require_init and not self.init:
            # --require-init implies --init
            object.__setattr__(self, "init", True)
        if self.depth is not None and self.depth <= 0:
            raise UsageError(f"depth must be a positive number, got {self.depth}")
        if self.jobs is not None and self.jobs < 0:
            raise UsageError(f"jobs must be zero or positive, got {self.jobs}")
        if self.max_depth < 1:
            raise UsageError(f"max_depth must be at least 1, got {self.max_depth}")
        if self.dissociate and not self.reference:
            raise UsageError("--dissociate requires --reference")
        if self.strategy is not None and self.strategy not in SELECTABLE_STRATEGIES:
            raise UsageError(
                f"update strategy '{self.strategy.value}' cannot be requested on the command line"
            )


@dataclass(frozen=True)
class PathContext:
    """Path prefixes carried through the recursion.

    ``super_prefix`` is the logical path of the current repository from the
    top-level superproject (always ends with ``/`` when non-empty).
    ``worktree_prefix`` is the offset of the user's directory inside the
    top-level worktree; it is only non-empty at the top level.
    """

    super_prefix: str = ""
    worktree_prefix: str = ""

    def display_path(self, path: str) -> str:
        return relative_path(f"{self.super_prefix}{path}", self.worktree_prefix)

    def child(self, path: str) -> PathContext:
        """Context for a descent into the submodule at ``path``."""
        return PathContext(
            super_prefix=relative_path(f"{self.super_prefix}{path}/", self.worktree_prefix),
            worktree_prefix="",
        )


@dataclass
class SubmoduleRecord:
    """One submodule as reported by the clone phase."""

    path: str
    target_oid: str
    just_created: bool = False
    current_oid: Optional[str] = None
    display_path: str = ""

    def __post_init__(self) -> None:
        if not self.display_path:
            self.display_path = self.path


@dataclass
class SubmoduleEntry:
    """Configuration of one submodule in a superproject."""

    name: str
    path: str
    # Registered in the superproject's .git/config; None until initialized
    url: Optional[str] = None
    gitmodules_url: Optional[str] = None
    branch: Optional[str] = None
    update: Optional[str] = None
    shallow: bool = False
    gitlink_oid: Optional[str] = None

    @property
    def strategy(self) -> Optional[UpdateStrategy]:
        return UpdateStrategy.parse(self.update)

    @property
    def custom_command(self) -> Optional[str]:
        if self.update and self.update.strip().startswith("!"):
            return self.update.strip()[1:]
        return None


class OutcomeKind(Enum):
    """Classification of an update procedure result."""

    SUCCESS = "success"
    SOFT_FAILURE = "soft_failure"
    FATAL_FAILURE = "fatal_failure"
    NO_OP = "no_op"


@dataclass(frozen=True)
class UpdateOutcome:
    """Result of updating a single submodule."""

    kind: OutcomeKind
    message: str = ""
    status: int = STATUS_OK

    @classmethod
    def success(cls, message: str) -> UpdateOutcome:
        return cls(OutcomeKind.SUCCESS, message, STATUS_OK)

    @classmethod
    def soft_failure(cls, message: str) -> UpdateOutcome:
        return cls(OutcomeKind.SOFT_FAILURE, message, STATUS_SOFT_FAILURE)

    @classmethod
    def fatal(cls, status: int, message: str) -> UpdateOutcome:
        return cls(OutcomeKind.FATAL_FAILURE, message, status)

    @classmethod
    def no_op(cls) -> UpdateOutcome:
        return cls(OutcomeKind.NO_OP, "", STATUS_NO_OP)


class SubmoduleSyncError(Exception):
    """Base exception for submodule update operations."""

    def __init__(self, message: str = "", status: int = STATUS_SOFT_FAILURE) -> None:
        super().__init__(message)
        self.status = status


class UsageError(SubmoduleSyncError):
    """Exception raised for malformed options."""

    pass


class GitRepositoryError(SubmoduleSyncError):
    """Exception raised for Git repository related errors."""

    pass


class UnmatchedPathError(SubmoduleSyncError):
    """The clone phase terminated with an unmatched-path status."""

    def __init__(self, status: int) -> None:
        super().__init__(f"clone phase terminated with status {status}", status)


class RecordFormatError(SubmoduleSyncError):
    """A clone phase line could not be parsed."""

    pass


class SubmoduleInitError(SubmoduleSyncError):
    """Registering a submodule in the superproject configuration failed."""

    pass


class WorktreeLinkError(SubmoduleSyncError):
    """The link between a submodule worktree and its git dir could not be repaired."""

    pass


class RevisionReadError(SubmoduleSyncError):
    """The currently checked out revision of a submodule could not be read."""

    pass


class RemoteResolutionError(SubmoduleSyncError):
    """Fetching or resolving a remote tracking reference failed."""

    pass


class FatalUpdateError(SubmoduleSyncError):
    """The update procedure died; the batch must stop."""

    pass


class RecursionLimitError(SubmoduleSyncError):
    """Descent refused because of a path cycle or the depth limit."""

    pass
