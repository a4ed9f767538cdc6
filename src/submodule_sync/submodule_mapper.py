"""
Submodule discovery, path matching and registration.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Dict, List, Optional, Sequence, Tuple

from git.config import GitConfigParser

from .git_manager import GitManager
from .models import (
    GitRepositoryError,
    SubmoduleEntry,
    SubmoduleInitError,
    relative_path,
)
from .reporter_interface import NoOpReporter, UpdateReporter


logger = logging.getLogger(__name__)

SECTION_PREFIX = 'submodule "'


def submodule_section(name: str) -> str:
    return f'{SECTION_PREFIX}{name}"'


def is_relative_url(url: str) -> bool:
    return url.startswith("./") or url.startswith("../")


def resolve_relative_url(url: str, base_url: str) -> str:
    """Resolve a ``./`` or ``../`` submodule URL against the superproject's URL.

    Handles plain paths and URLs (``host/a/b``) as well as scp-like
    ``host:path`` remotes, where stepping above the path keeps the colon.
    """
    base = base_url.rstrip("/")
    colon_joined = False
    while True:
        if url.startswith("./"):
            url = url[2:]
        elif url.startswith("../"):
            url = url[3:]
            cut = max(base.rfind("/"), base.rfind(":"))
            if cut < 0:
                base = "."
            elif base[cut] == ":":
                base = base[: cut + 1]
                colon_joined = True
            else:
                base = base[:cut]
        else:
            break
    if colon_joined and base.endswith(":"):
        return f"{base}{url}"
    return f"{base}/{url}"


def _read_option(parser: Optional[GitConfigParser], section: str, option: str) -> Optional[str]:
    """Return a raw string value; GitConfigParser.get_value would coerce types."""
    if parser is None or not parser.has_option(section, option):
        return None
    value = parser.get(section, option)
    return None if value is None else str(value).strip()


def _is_true(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("true", "yes", "on", "1")


class SubmoduleMapper:
    """Maps the submodules of one superproject."""

    def __init__(self, git_manager: GitManager, reporter: UpdateReporter = None) -> None:
        """Initialize with the manager of the superproject.

        Args:
            git_manager: GitManager of the superproject whose submodules are mapped
            reporter: Sink for user-facing messages (registration notices)
        """
        self.gm = git_manager
        self.reporter = reporter or NoOpReporter()
        self._by_path: Optional[Dict[str, SubmoduleEntry]] = None

    def discover_submodules(self) -> List[SubmoduleEntry]:
        """
        Return every submodule recorded in the index, ordered by path.

        Returns:
            SubmoduleEntry list combining .gitmodules, .git/config and the index
        """
        gitlinks = self.gm.gitlink_oids()
        parser = self.gm.gitmodules_parser()

        names_by_path: Dict[str, str] = {}
        if parser is not None:
            for section in parser.sections():
                if not section.startswith(SECTION_PREFIX) or not section.endswith('"'):
                    continue
                name = section[len(SECTION_PREFIX) : -1]
                path = _read_option(parser, section, "path")
                if path:
                    names_by_path[path.rstrip("/")] = name

        entries: List[SubmoduleEntry] = []
        for path in sorted(gitlinks):
            name = names_by_path.get(path)
            if name is None:
                logger.warning(f"No .gitmodules entry for gitlink at {path}")
                entries.append(SubmoduleEntry(name=path, path=path, gitlink_oid=gitlinks[path]))
                continue
            entries.append(self._build_entry(name, path, gitlinks[path], parser))

        logger.debug(f"Discovered {len(entries)} submodule(s) in {self.gm.working_dir}")
        return entries

    def _build_entry(
        self, name: str, path: str, oid: str, parser: Optional[GitConfigParser]
    ) -> SubmoduleEntry:
        section = submodule_section(name)

        update = self.gm.config_value(section, "update")
        if update is None:
            update = _read_option(parser, section, "update")
            if update and update.startswith("!"):
                # Custom commands are only honored from the local configuration
                logger.warning(
                    f"Ignoring submodule.{name}.update=!command from .gitmodules"
                )
                update = None

        branch = self.gm.config_value(section, "branch") or _read_option(parser, section, "branch")

        return SubmoduleEntry(
            name=name,
            path=path,
            url=self.gm.config_value(section, "url"),
            gitmodules_url=_read_option(parser, section, "url"),
            branch=branch,
            update=update,
            shallow=_is_true(_read_option(parser, section, "shallow")),
            gitlink_oid=oid,
        )

    def find_by_path(self, path: str) -> Optional[SubmoduleEntry]:
        """Look up a submodule by path; entries are discovered once per mapper."""
        if self._by_path is None:
            self._by_path = {entry.path: entry for entry in self.discover_submodules()}
        return self._by_path.get(path)

    @staticmethod
    def match_paths(
        entries: Sequence[SubmoduleEntry], paths: Sequence[str], prefix: str = ""
    ) -> Tuple[List[SubmoduleEntry], List[str]]:
        """
        Select the entries named by ``paths`` (relative to ``prefix``).

        A path selects a submodule when it names the submodule itself or a
        directory containing it.

        Returns:
            Tuple of (selected entries in discovery order, paths that matched nothing)
        """
        if not paths:
            return list(entries), []

        selected_paths = set()
        unmatched: List[str] = []
        for spec in paths:
            normalized = posixpath.normpath(posixpath.join(prefix, spec))
            if normalized == ".":
                normalized = ""
            if normalized.startswith("../") or normalized == "..":
                unmatched.append(spec)
                continue
            hits = [
                e.path
                for e in entries
                if not normalized or e.path == normalized or e.path.startswith(f"{normalized}/")
            ]
            if not hits:
                unmatched.append(spec)
            selected_paths.update(hits)

        return [e for e in entries if e.path in selected_paths], unmatched

    def superproject_base_url(self) -> str:
        """URL relative submodule URLs are resolved against."""
        remote = self.gm.default_remote_name()
        url = self.gm.remote_url(remote)
        if url:
            return url
        logger.debug(f"No URL for remote {remote}; resolving relative to {self.gm.working_dir}")
        return self.gm.working_dir.as_posix()

    def init_submodules(
        self, paths: Sequence[str] = (), prefix: str = "", quiet: bool = False
    ) -> List[SubmoduleEntry]:
        """
        Register submodules in the superproject configuration.

        Copies the URL (resolved when relative) and update mode from
        .gitmodules into .git/config and marks each submodule active.

        Returns:
            The entries that were selected, with their registered URLs
        """
        entries = self.discover_submodules()
        selected, unmatched = self.match_paths(entries, paths, prefix)
        if unmatched:
            for spec in unmatched:
                self.reporter.error_line(
                    f"error: pathspec '{spec}' did not match any file(s) known to git"
                )
            raise SubmoduleInitError(
                f"{len(unmatched)} path(s) did not match any submodule"
            )

        for entry in selected:
            self._init_submodule(entry, prefix, quiet)
        return selected

    def _init_submodule(self, entry: SubmoduleEntry, prefix: str, quiet: bool) -> None:
        section = submodule_section(entry.name)
        display = relative_path(entry.path, prefix)

        try:
            if self.gm.config_value(section, "active") is None:
                self.gm.set_config_value(section, "active", "true")

            if entry.url is None:
                url = entry.gitmodules_url
                if not url:
                    raise SubmoduleInitError(
                        f"No url found for submodule path '{display}' in .gitmodules"
                    )
                if is_relative_url(url):
                    url = resolve_relative_url(url, self.superproject_base_url())
                self.gm.set_config_value(section, "url", url)
                entry.url = url
                if not quiet:
                    self.reporter.info(
                        f"Submodule '{entry.name}' ({url}) registered for path '{display}'"
                    )

            if self.gm.config_value(section, "update") is None and entry.update:
                self.gm.set_config_value(section, "update", entry.update)
        except GitRepositoryError as e:
            logger.error(f"Failed to register submodule {entry.name}: {e}")
            raise SubmoduleInitError(
                f"Failed to register url for submodule path '{display}'"
            ) from e
