"""
Git repository management and operations.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union
from git import Repo, InvalidGitRepositoryError, NoSuchPathError
from git.config import GitConfigParser
from git.exc import GitCommandError, GitError

from .models import GitRepositoryError, WorktreeLinkError


logger = logging.getLogger(__name__)

GITLINK_MODE = "160000"

# Tell git that URLs handed to clone/fetch come from configuration, not the user
PROTOCOL_ENV = {"GIT_PROTOCOL_FROM_USER": "0"}


class GitManager:
    """Git operations on a single repository (a superproject or a submodule)."""

    def __init__(self, repo_path: Optional[Path] = None, search_parents: bool = True) -> None:
        """Initialize Git manager with optional repository path.

        With ``search_parents`` false the path must itself be the top of a
        worktree; submodule managers use this so that an unpopulated
        submodule never resolves to its superproject.
        """
        self.repo_path = Path(repo_path or Path.cwd()).resolve()
        self.search_parents = search_parents
        self._repo: Optional[Repo] = None

    @property
    def repo(self) -> Repo:
        """Get the Git repository instance."""
        if self._repo is None:
            self._repo = self._discover_repository()
        return self._repo

    @property
    def working_dir(self) -> Path:
        return Path(self.repo.working_dir)

    @property
    def git_dir(self) -> Path:
        return Path(self.repo.git_dir)

    def _discover_repository(self) -> Repo:
        """Discover the Git repository from current or specified path."""
        search_path = self.repo_path

        logger.debug(f"Discovering repository in: {search_path}")
        if not self.search_parents:
            try:
                return Repo(search_path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise GitRepositoryError(f"No Git repository found at {search_path}") from e

        # Walk up the directory tree to find a Git repository
        while search_path != search_path.parent:
            try:
                repo = Repo(search_path)
                logger.debug(f"Found Git repository at: {search_path}")
                return repo
            except (InvalidGitRepositoryError, NoSuchPathError):
                search_path = search_path.parent

        raise GitRepositoryError(
            f"No Git repository found at {self.repo_path} or any parent directory"
        )

    def worktree_prefix(self, cwd: Optional[Path] = None) -> str:
        """Return the offset of ``cwd`` inside the worktree (``git rev-parse --show-prefix``)."""
        cwd = Path(cwd or Path.cwd()).resolve()
        try:
            rel = cwd.relative_to(self.working_dir.resolve())
        except ValueError:
            return ""
        posix = rel.as_posix()
        return "" if posix == "." else f"{posix}/"

    def submodule_manager(self, path: Union[str, Path]) -> GitManager:
        """Return a manager for the submodule checked out at ``path``."""
        return GitManager(self.working_dir / path, search_parents=False)

    # --- Revisions ---
    def resolve_ref(self, ref: str) -> str:
        """Resolve a ref name (branch, remote ref, HEAD) to a full object id."""
        try:
            return self.repo.git.rev_parse("--verify", "-q", f"{ref}^{{commit}}").strip()
        except GitCommandError as e:
            logger.error(f"Unable to resolve {ref} in {self.repo_path}: {e}")
            raise GitRepositoryError(f"Unable to resolve {ref}: {e}")

    def read_head_oid(self) -> str:
        """Return the object id currently checked out."""
        try:
            return self.repo.git.rev_parse("--verify", "HEAD").strip()
        except (GitCommandError, InvalidGitRepositoryError, NoSuchPathError) as e:
            logger.error(f"Unable to read HEAD in {self.repo_path}: {e}")
            raise GitRepositoryError(f"Unable to read HEAD: {e}")

    def is_tip_reachable(self, oid: str) -> bool:
        """Return True if ``oid`` exists and is reachable from some ref."""
        try:
            output = self.repo.git.rev_list("-n", "1", oid, "--not", "--all")
        except GitCommandError:
            return False
        return not output.strip()

    def get_current_branch(self) -> str:
        """Get the current branch name."""
        try:
            return self.repo.active_branch.name
        except TypeError as e:
            # GitPython raises TypeError on a detached HEAD
            logger.error(f"Error getting current branch: {e}")
            raise GitRepositoryError(f"Could not determine current branch: {e}")

    # --- Remote synchronization helpers ---
    def default_remote_name(self) -> str:
        """Remote of the current branch's upstream, else the only remote, else origin."""
        try:
            branch = self.repo.active_branch.name
        except TypeError:
            branch = None
        if branch:
            remote = self.config_value(f'branch "{branch}"', "remote")
            if remote:
                return remote
        try:
            remotes = [r.name for r in self.repo.remotes]
        except (GitError, ValueError) as e:
            logger.error(f"Unable to list remotes of {self.repo_path}: {e}")
            raise GitRepositoryError(f"Unable to list remotes: {e}")
        if len(remotes) == 1:
            return remotes[0]
        return "origin"

    def remote_url(self, remote_name: str) -> Optional[str]:
        return self.config_value(f'remote "{remote_name}"', "url")

    def fetch(
        self,
        remote_name: Optional[str] = None,
        depth: Optional[int] = None,
        quiet: bool = False,
        refspecs: Sequence[str] = (),
    ) -> None:
        """Fetch from a remote, optionally depth-limited or restricted to refspecs."""
        args: List[str] = []
        if quiet:
            args.append("--quiet")
        if depth:
            args.append(f"--depth={depth}")
        if remote_name or refspecs:
            args.append(remote_name or self.default_remote_name())
        args.extend(refspecs)
        try:
            with self.repo.git.custom_environment(**PROTOCOL_ENV):
                self.repo.git.fetch(*args)
            logger.info(f"Fetched {' '.join(args) or 'default remote'} in {self.repo.working_dir}")
        except GitCommandError as e:
            logger.error(f"Failed to fetch in {self.repo_path}: {e}")
            raise GitRepositoryError(f"Failed to fetch: {e}")

    # --- Configuration ---
    def config_value(self, section: str, option: str, default: Optional[str] = None) -> Optional[str]:
        """Read a value from the repository configuration (all levels)."""
        try:
            reader = self.repo.config_reader()
            value = reader.get_value(section, option, default)
        except Exception as e:
            logger.debug(f"Config {section}.{option} unavailable in {self.repo_path}: {e}")
            return default
        return None if value is None else str(value)

    def set_config_value(self, section: str, option: str, value: str) -> None:
        """Write a value into the repository-local configuration."""
        try:
            with self.repo.config_writer("repository") as writer:
                writer.set_value(section, option, value)
        except Exception as e:
            logger.error(f"Failed to set {section}.{option} in {self.repo_path}: {e}")
            raise GitRepositoryError(f"Failed to set {section}.{option}: {e}")

    def gitmodules_parser(self) -> Optional[GitConfigParser]:
        """Return a read-only parser for ``.gitmodules`` in the worktree, if present."""
        path = self.working_dir / ".gitmodules"
        if not path.is_file():
            return None
        return GitConfigParser(str(path), read_only=True)

    # --- Index ---
    def gitlink_oids(self) -> Dict[str, str]:
        """Return ``{path: oid}`` for every gitlink recorded in the index."""
        try:
            output = self.repo.git.ls_files("--stage")
        except GitCommandError as e:
            logger.error(f"Error reading index of {self.repo_path}: {e}")
            raise GitRepositoryError(f"Failed to read index: {e}")

        gitlinks: Dict[str, str] = {}
        for line in output.splitlines():
            # Expected format: "160000 <sha> <stage>\t<path>"
            meta, _, path = line.partition("\t")
            parts = meta.split()
            if len(parts) >= 3 and parts[0] == GITLINK_MODE and parts[2] == "0":
                gitlinks[path] = parts[1]
        return gitlinks

    # --- Submodule worktree linkage ---
    def is_populated(self, path: Union[str, Path]) -> bool:
        """Return True if the submodule directory holds a git checkout."""
        return (self.working_dir / path / ".git").exists()

    def modules_dir(self, name: str) -> Path:
        """Location of a submodule's git dir inside the superproject."""
        return Path(self.repo.common_dir) / "modules" / name

    def ensure_core_worktree(self, path: Union[str, Path]) -> None:
        """Make sure the submodule's git dir points back at its worktree."""
        worktree = (self.working_dir / path).resolve()
        try:
            sub_repo = Repo(worktree)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            logger.error(f"No repository handle for submodule {path}: {e}")
            raise WorktreeLinkError(f"could not get a repository handle for submodule '{path}'")

        try:
            with sub_repo.config_reader("repository") as reader:
                if reader.has_option("core", "worktree"):
                    return
            core_worktree = os.path.relpath(worktree, Path(sub_repo.git_dir).resolve())
            with sub_repo.config_writer("repository") as writer:
                writer.set_value("core", "worktree", Path(core_worktree).as_posix())
            logger.info(f"Set core.worktree of {sub_repo.git_dir} to {core_worktree}")
        except Exception as e:
            logger.error(f"Failed to link worktree of submodule {path}: {e}")
            raise WorktreeLinkError(f"could not set core.worktree for submodule '{path}': {e}")
        finally:
            sub_repo.close()

    def connect_worktree(self, path: Union[str, Path], git_dir: Path) -> None:
        """Point an empty submodule directory at an existing git dir."""
        worktree = (self.working_dir / path).resolve()
        worktree.mkdir(parents=True, exist_ok=True)
        rel_git_dir = os.path.relpath(git_dir.resolve(), worktree)
        (worktree / ".git").write_text(f"gitdir: {Path(rel_git_dir).as_posix()}\n", encoding="utf-8")
        with Repo(git_dir) as sub_repo, sub_repo.config_writer("repository") as writer:
            writer.set_value(
                "core", "worktree", Path(os.path.relpath(worktree, git_dir.resolve())).as_posix()
            )
        logger.info(f"Reconnected {worktree} to existing git dir {git_dir}")

    def clone_submodule(
        self,
        url: str,
        path: Union[str, Path],
        git_dir: Path,
        *,
        reference: Optional[str] = None,
        dissociate: bool = False,
        depth: Optional[int] = None,
        single_branch: Optional[bool] = None,
        quiet: bool = False,
        progress: bool = False,
    ) -> None:
        """Clone ``url`` into the submodule path with its git dir under ``.git/modules``."""
        worktree = self.working_dir / path
        options: List[str] = ["--no-checkout", f"--separate-git-dir={git_dir}"]
        if quiet:
            options.append("--quiet")
        if progress:
            options.append("--progress")
        if reference:
            options.append(f"--reference={reference}")
        if dissociate:
            options.append("--dissociate")
        if depth:
            options.append(f"--depth={depth}")
        if single_branch is True:
            options.append("--single-branch")
        elif single_branch is False:
            options.append("--no-single-branch")

        git_dir.parent.mkdir(parents=True, exist_ok=True)
        try:
            # --separate-git-dir is computed from the superproject, never user input
            Repo.clone_from(
                url,
                str(worktree),
                multi_options=options,
                env=PROTOCOL_ENV,
                allow_unsafe_options=True,
            ).close()
            logger.info(f"Cloned {url} into {worktree}")
        except GitError as e:
            logger.error(f"Failed to clone {url} into {worktree}: {e}")
            raise GitRepositoryError(f"Clone of '{url}' into submodule path '{path}' failed: {e}")

    # --- Working tree updates ---
    def run_update_command(self, *args: str) -> None:
        """Run a porcelain update command (checkout, merge, rebase) in this repository."""
        try:
            self.repo.git.execute(["git", *args])
            logger.info(f"Ran 'git {' '.join(args)}' in {self.repo.working_dir}")
        except GitCommandError as e:
            logger.error(f"'git {' '.join(args)}' failed in {self.repo.working_dir}: {e}")
            raise GitRepositoryError(f"'git {' '.join(args)}' failed: {e}")

    def run_shell_command(self, command: str) -> None:
        """Run a user-configured shell command inside the worktree."""
        try:
            self.repo.git.execute(["sh", "-c", command], shell=False)
            logger.info(f"Ran '{command}' in {self.repo.working_dir}")
        except GitCommandError as e:
            logger.error(f"'{command}' failed in {self.repo.working_dir}: {e}")
            raise GitRepositoryError(f"'{command}' failed: {e}")
