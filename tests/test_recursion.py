"""
Tests for descent into nested submodules.
"""

import os
from pathlib import Path

import pytest

from submodule_sync.models import PathContext, RecursionLimitError
from submodule_sync.recursion import RecursionGuard, child_context, submodule_environment


class TestChildContext:
    def test_composes_super_prefix(self):
        assert child_context(PathContext(super_prefix="a/"), "b") == PathContext("a/b/", "")

    def test_worktree_prefix_applied_once(self):
        child = child_context(PathContext(worktree_prefix="docs/"), "childX")
        assert child.super_prefix == "../childX/"
        assert child.worktree_prefix == ""


class TestSubmoduleEnvironment:
    """Test working directory and environment handling."""

    def test_enters_directory_and_clears_local_vars(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
        monkeypatch.setenv("GIT_INDEX_FILE", "/elsewhere/index")
        monkeypatch.setenv("GIT_CONFIG_PARAMETERS", "'core.quotepath'='false'")
        start = os.getcwd()

        with submodule_environment(tmp_path) as target:
            assert Path(os.getcwd()).resolve() == tmp_path.resolve()
            assert target == tmp_path.resolve()
            assert "GIT_DIR" not in os.environ
            assert "GIT_INDEX_FILE" not in os.environ
            assert os.environ["GIT_CONFIG_PARAMETERS"] == "'core.quotepath'='false'"

        assert os.getcwd() == start
        assert os.environ["GIT_DIR"] == "/elsewhere/.git"
        assert os.environ["GIT_INDEX_FILE"] == "/elsewhere/index"

    def test_restores_on_error(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GIT_WORK_TREE", "/elsewhere")
        start = os.getcwd()

        with pytest.raises(RuntimeError):
            with submodule_environment(tmp_path):
                raise RuntimeError("boom")

        assert os.getcwd() == start
        assert os.environ["GIT_WORK_TREE"] == "/elsewhere"


class TestRecursionGuard:
    """Test cycle and depth protection."""

    def test_tracks_chain(self, tmp_path):
        guard = RecursionGuard(max_depth=4)
        with guard.descend(tmp_path / "a"):
            with guard.descend(tmp_path / "a" / "b"):
                assert guard.depth == 2
            assert guard.depth == 1
        assert guard.chain == []

    def test_depth_limit(self, tmp_path):
        guard = RecursionGuard(max_depth=1)
        with guard.descend(tmp_path / "a"):
            with pytest.raises(RecursionLimitError) as exc_info:
                with guard.descend(tmp_path / "a" / "b", "a/b"):
                    pass
        assert "maximum recursion depth of 1" in str(exc_info.value)
        assert guard.depth == 0

    def test_cycle_through_symlink(self, tmp_path):
        real = tmp_path / "real"
        real.mkdir()
        link = tmp_path / "link"
        link.symlink_to(real, target_is_directory=True)
        guard = RecursionGuard()
        with guard.descend(real):
            with pytest.raises(RecursionLimitError):
                with guard.descend(link):
                    pass

    def test_cycle_back_to_root(self, tmp_path):
        guard = RecursionGuard(root=tmp_path)
        with pytest.raises(RecursionLimitError):
            with guard.descend(tmp_path):
                pass
