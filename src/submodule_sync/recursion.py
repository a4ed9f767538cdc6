"""
Descent into nested submodules: path context, process environment and the
guard against runaway recursion.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from .models import PathContext, RecursionLimitError


logger = logging.getLogger(__name__)

# Variables that tie git to one particular repository. They must not leak from
# a superproject into commands run inside its submodules.
LOCAL_REPO_ENV_VARS = (
    "GIT_ALTERNATE_OBJECT_DIRECTORIES",
    "GIT_COMMON_DIR",
    "GIT_CONFIG",
    "GIT_CONFIG_COUNT",
    "GIT_DIR",
    "GIT_GRAFT_FILE",
    "GIT_IMPLICIT_WORK_TREE",
    "GIT_INDEX_FILE",
    "GIT_INTERNAL_SUPER_PREFIX",
    "GIT_NO_REPLACE_OBJECTS",
    "GIT_OBJECT_DIRECTORY",
    "GIT_PREFIX",
    "GIT_REPLACE_REF_BASE",
    "GIT_SHALLOW_FILE",
    "GIT_WORK_TREE",
)


def child_context(context: PathContext, path: str) -> PathContext:
    """Path context of the submodule at ``path`` below ``context``."""
    return context.child(path)


@contextmanager
def submodule_environment(path: Union[str, Path]) -> Iterator[Path]:
    """
    Run the body inside the submodule at ``path`` with a clean git environment.

    The working directory and every cleared variable are restored on exit,
    whether the body returns or raises. ``GIT_CONFIG_PARAMETERS`` is kept so
    that ``-c`` overrides given to the top-level command reach nested ones.
    """
    target = Path(path).resolve()
    saved_cwd = os.getcwd()
    saved_env: Dict[str, str] = {
        name: os.environ[name] for name in LOCAL_REPO_ENV_VARS if name in os.environ
    }
    try:
        for name in saved_env:
            del os.environ[name]
        os.chdir(target)
        logger.debug(f"Entered {target}")
        yield target
    finally:
        os.chdir(saved_cwd)
        os.environ.update(saved_env)
        logger.debug(f"Returned to {saved_cwd}")


class RecursionGuard:
    """Tracks the chain of submodule directories currently being descended.

    A descent is refused when its directory is already part of the chain
    (a cycle through symlinks or shared git dirs) or when the chain would
    exceed ``max_depth`` levels below the top-level superproject.
    """

    def __init__(self, max_depth: int = 32, root: Optional[Union[str, Path]] = None) -> None:
        self.max_depth = max_depth
        self.root = Path(root).resolve() if root is not None else None
        self._chain: List[Path] = []

    @property
    def depth(self) -> int:
        return len(self._chain)

    @property
    def chain(self) -> List[Path]:
        return list(self._chain)

    @contextmanager
    def descend(self, path: Union[str, Path], display_path: Optional[str] = None) -> Iterator[None]:
        """Hold ``path`` in the active chain for the duration of the body."""
        resolved = Path(path).resolve()
        shown = display_path or str(path)
        if resolved in self._chain or resolved == self.root:
            logger.error(f"Submodule cycle detected at {resolved}")
            raise RecursionLimitError(f"Submodule path '{shown}' is already being updated (cycle)")
        if len(self._chain) >= self.max_depth:
            logger.error(f"Recursion depth {self.max_depth} reached at {resolved}")
            raise RecursionLimitError(
                f"Submodule path '{shown}' exceeds the maximum recursion depth of {self.max_depth}"
            )

        self._chain.append(resolved)
        try:
            yield
        finally:
            self._chain.pop()
